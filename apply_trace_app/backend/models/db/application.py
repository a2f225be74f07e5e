import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String, Text
from .database import Base
from ...utils.datetime_utils import utcnow


class JobStatus(str, enum.Enum):
    APPLIED = "APPLIED"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    OFFER_RECEIVED = "OFFER_RECEIVED"
    REJECTED = "REJECTED"
    ARCHIVED = "ARCHIVED"


class JobApplication(Base):
    __tablename__ = "job_applications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    company_name = Column(String, index=True, nullable=False)
    role_title = Column(String, index=True, nullable=False)
    status = Column(Enum(JobStatus, native_enum=False, length=32), default=JobStatus.APPLIED, nullable=False)
    applied_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    # Gmail message ids that created or last moved this application
    email_id = Column(String, index=True, nullable=True)
    rejection_email_id = Column(String, nullable=True)
    interview_request_email_id = Column(String, nullable=True)

    is_deleted = Column(Boolean, default=False, nullable=False)
    location = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
