from typing import Optional

from sqlalchemy.orm import Session

from . import user as user_model
from . import email_session as session_model
from ...utils.datetime_utils import utcnow


def get_user_by_email(db: Session, email: str):
    return db.query(user_model.User).filter(user_model.User.email == email.lower()).first()


def get_or_create_user(db: Session, email: str):
    db_user = get_user_by_email(db, email)
    if db_user:
        return db_user
    db_user = user_model.User(email=email.lower())
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def get_email_session_by_email(db: Session, email: str):
    return db.query(session_model.EmailSession).filter(
        session_model.EmailSession.email == email.lower()
    ).first()


def get_email_session_for_user(db: Session, user_id: str):
    return db.query(session_model.EmailSession).filter(
        session_model.EmailSession.user_id == user_id
    ).first()


def list_email_sessions(db: Session):
    return db.query(session_model.EmailSession).order_by(session_model.EmailSession.created_at).all()


def upsert_email_session(
    db: Session,
    user_id: str,
    email: str,
    access_token: str,
    refresh_token: Optional[str] = None,
    **fields,
):
    """Create or update the session for a user; a missing refresh token keeps the stored one."""
    db_session = get_email_session_for_user(db, user_id)
    if db_session is None:
        db_session = session_model.EmailSession(user_id=user_id, email=email.lower(), access_token=access_token)
        db.add(db_session)
    db_session.email = email.lower()
    db_session.access_token = access_token
    if refresh_token:
        db_session.refresh_token = refresh_token
    for key, value in fields.items():
        setattr(db_session, key, value)
    db_session.updated_at = utcnow()
    db.commit()
    db.refresh(db_session)
    return db_session


def update_session_tokens(db: Session, db_session, access_token: str, refresh_token: Optional[str] = None):
    db_session.access_token = access_token
    if refresh_token:
        db_session.refresh_token = refresh_token
    db_session.updated_at = utcnow()
    db.commit()
    db.refresh(db_session)
    return db_session


def update_last_history_id(db: Session, db_session, history_id: int):
    db_session.last_history_id = history_id
    db.commit()
    return db_session


def delete_email_session_by_email(db: Session, email: str) -> bool:
    deleted = db.query(session_model.EmailSession).filter(
        session_model.EmailSession.email == email.lower()
    ).delete(synchronize_session=False)
    db.commit()
    return bool(deleted)
