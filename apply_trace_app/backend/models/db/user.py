import uuid

from sqlalchemy import Boolean, Column, DateTime, String
from .database import Base
from ...utils.datetime_utils import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
