from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models.db import application as application_model
from ..models.db.application import JobApplication, JobStatus
from ..utils.datetime_utils import as_utc, utcnow
from .. import schemas


def get_application_by_id(db: Session, application_id: str, user_id: str):
    return db.query(JobApplication).filter(
        JobApplication.id == application_id,
        JobApplication.user_id == user_id,
        JobApplication.is_deleted.is_(False)
    ).first()

def get_applications_for_user(db: Session, user_id: str, skip: int = 0, limit: int = 100):
    return db.query(JobApplication).filter(
        JobApplication.user_id == user_id,
        JobApplication.is_deleted.is_(False)
    ).order_by(JobApplication.updated_at.desc()).offset(skip).limit(limit).all()

def get_changes_since(db: Session, user_id: str, since: datetime):
    """Rows touched after ``since``, deleted ones included so the board can drop them."""
    return db.query(JobApplication).filter(
        JobApplication.user_id == user_id,
        JobApplication.updated_at > as_utc(since)
    ).order_by(JobApplication.updated_at.asc()).all()

def get_all_applications(db: Session):
    return db.query(JobApplication).order_by(JobApplication.updated_at.desc()).all()

def create_application_for_user(db: Session, application: schemas.ApplicationCreate, user_id: str):
    data = application.model_dump(exclude_none=True)
    db_application = application_model.JobApplication(**data, user_id=user_id)
    db.add(db_application)
    db.commit()
    db.refresh(db_application)
    return db_application

def update_application(db: Session, application_id: str, application_update: schemas.ApplicationUpdate, user_id: str):
    db_application = get_application_by_id(db=db, application_id=application_id, user_id=user_id)
    if db_application:
        update_data = application_update.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            if key in ("company_name", "role_title", "status") and value is None:
                continue
            setattr(db_application, key, value)
        db_application.updated_at = utcnow()
        db.commit()
        db.refresh(db_application)
    return db_application

def delete_application(db: Session, application_id: str, user_id: str):
    """Soft delete: the row stays so its email is never turned into a card again."""
    db_application = get_application_by_id(db=db, application_id=application_id, user_id=user_id)
    if db_application:
        db_application.is_deleted = True
        db_application.updated_at = utcnow()
        db.commit()
        db.refresh(db_application)
    return db_application


# ---------------------------------------------------------------------------
# Email-driven updates
# ---------------------------------------------------------------------------

def email_already_processed(db: Session, user_id: str, message_id: str) -> bool:
    """Whether this mailbox message already created or updated one of the user's applications."""
    return db.query(JobApplication.id).filter(
        JobApplication.user_id == user_id,
        or_(
            JobApplication.email_id == message_id,
            JobApplication.rejection_email_id == message_id,
            JobApplication.interview_request_email_id == message_id,
        )
    ).first() is not None

def _normalized(column):
    return func.lower(func.trim(column))

def find_matching_application(db: Session, user_id: str, company_name: str, role_title: Optional[str] = None):
    """Most recent non-deleted application matching company (and role) case-insensitively."""
    query = db.query(JobApplication).filter(
        JobApplication.user_id == user_id,
        JobApplication.is_deleted.is_(False),
        _normalized(JobApplication.company_name) == company_name.strip().lower()
    )
    if role_title is not None:
        query = query.filter(_normalized(JobApplication.role_title) == role_title.strip().lower())
    return query.order_by(JobApplication.created_at.desc()).first()

def create_application_from_email(
    db: Session,
    user_id: str,
    company_name: str,
    role_title: str,
    status: JobStatus,
    email_id: str,
    applied_date: datetime,
    location: Optional[str] = None,
    **email_refs,
):
    now = utcnow()
    db_application = JobApplication(
        user_id=user_id,
        company_name=company_name,
        role_title=role_title,
        status=status,
        applied_date=applied_date,
        created_at=now,
        updated_at=now,
        email_id=email_id,
        location=location,
        **email_refs,
    )
    db.add(db_application)
    db.commit()
    db.refresh(db_application)
    return db_application

def set_status_from_email(db: Session, db_application, status: JobStatus, **email_refs):
    db_application.status = status
    for key, value in email_refs.items():
        setattr(db_application, key, value)
    db_application.updated_at = utcnow()
    db.commit()
    db.refresh(db_application)
    return db_application
