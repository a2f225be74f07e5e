import uuid

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String, Text
from .database import Base
from ...utils.datetime_utils import utcnow


class EmailSession(Base):
    """Stored Google credentials and Gmail sync cursor for one mailbox."""
    __tablename__ = "email_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    last_history_id = Column(BigInteger, nullable=True)
    watch_expiration = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
