import enum
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any, List

from .models.db.application import JobStatus

# Token Schemas
class TokenData(BaseModel):
    email: Optional[str] = None

# User Schemas
class UserBase(BaseModel):
    email: str

class User(UserBase):
    id: str
    is_active: bool

    class Config:
        from_attributes = True

# Email Session Schemas
class EmailSession(BaseModel):
    id: str
    user_id: str
    email: str
    access_token: str
    refresh_token: Optional[str] = None
    last_history_id: Optional[int] = None
    watch_expiration: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class WatchResult(BaseModel):
    success: bool
    expiration: Optional[datetime] = None
    history_id: Optional[int] = None
    error: Optional[str] = None

# Email Analysis Schemas
class EmailAnalysisType(str, enum.Enum):
    APPLICATION = "APPLICATION"
    REJECTION = "REJECTION"
    INTERVIEW_REQUEST = "INTERVIEW_REQUEST"
    OTHER = "OTHER"

class EmailContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str = ""
    body: str = ""
    from_address: str = Field("", alias="from")
    to: str = ""
    date: str = ""

class EmailAnalysis(BaseModel):
    """Classification of one email, as returned by the LLM (camelCase keys accepted)."""
    model_config = ConfigDict(populate_by_name=True)

    is_job_related: bool = Field(False, alias="isJobRelated")
    type: EmailAnalysisType = EmailAnalysisType.OTHER
    company_name: str = Field("Unknown", alias="companyName")
    role_title: str = Field("Unknown", alias="roleTitle")
    confidence: float = 0.0
    next_steps: Optional[str] = Field(None, alias="nextSteps")
    interview_date: Optional[str] = Field(None, alias="interviewDate")
    location: Optional[str] = None
    salary: Optional[str] = None

    @field_validator("company_name", "role_title", mode="before")
    @classmethod
    def default_unknown(cls, v):
        if v is None or not str(v).strip():
            return "Unknown"
        return str(v).strip()

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            if v not in EmailAnalysisType.__members__:
                return EmailAnalysisType.OTHER
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        return min(max(value, 0.0), 1.0)

class EmailAnalysisResponse(BaseModel):
    analysis: EmailAnalysis

# Application Tracker Schemas
class ApplicationBase(BaseModel):
    company_name: str
    role_title: str
    status: JobStatus = Field(JobStatus.APPLIED, example="APPLIED")
    location: Optional[str] = None
    notes: Optional[str] = None

class ApplicationCreate(ApplicationBase):
    applied_date: Optional[datetime] = None

class ApplicationUpdate(BaseModel):
    company_name: Optional[str] = None
    role_title: Optional[str] = None
    status: Optional[JobStatus] = None
    location: Optional[str] = None
    notes: Optional[str] = None

class Application(ApplicationBase):
    id: str
    user_id: str
    applied_date: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    email_id: Optional[str] = None
    rejection_email_id: Optional[str] = None
    interview_request_email_id: Optional[str] = None
    is_deleted: bool = False

    class Config:
        from_attributes = True

class ApplicationChanges(BaseModel):
    server_time: datetime
    applications: List[Application]

# Board Schemas
class BoardCard(BaseModel):
    id: str
    company: str
    position: str
    status: str
    last_updated: Optional[datetime] = None
    applied_date: datetime
    location: Optional[str] = None
    notes: Optional[str] = None

class BoardColumn(BaseModel):
    status: str
    title: str
    color: str
    jobs: List[BoardCard]

class Board(BaseModel):
    columns: List[BoardColumn]

# Debug Schemas
class DebugJobs(BaseModel):
    count: int
    jobs: List[Application]

class DebugSessions(BaseModel):
    count: int
    sessions: List[Dict[str, Any]]

class BoardMove(BaseModel):
    column: str = Field(..., example="interviewing")
