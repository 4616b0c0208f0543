"""Core data models for the ThiQaX application engine."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JobStatus(str, Enum):
    """Publication status of a job posting."""
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    FILLED = "filled"
    CLOSED = "closed"
    REJECTED = "rejected"


class VerificationStatus(str, Enum):
    """Verification lifecycle of an uploaded document."""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class ApplicationStatus(str, Enum):
    """Application status tracking."""
    APPLIED = "APPLIED"
    REVIEWING = "REVIEWING"
    SHORTLISTED = "SHORTLISTED"
    INTERVIEW = "INTERVIEW"
    OFFERED = "OFFERED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class NotificationType(str, Enum):
    """Kinds of notification intents emitted by the engine."""
    APPLICATION_STATUS_CHANGE = "APPLICATION_STATUS_CHANGE"
    DOCUMENT_EXPIRING = "DOCUMENT_EXPIRING"
    DOCUMENT_STATUS_CHANGE = "DOCUMENT_STATUS_CHANGE"


class JobPosting(BaseModel):
    """Represents a job posting."""
    id: str = Field(default_factory=_new_id, description="Job posting identifier")
    title: str = Field("", description="Job title")
    required_documents: List[str] = Field(default_factory=list, description="Required document type codes")
    required_skills: List[str] = Field(default_factory=list, description="Skills the posting asks for")
    status: JobStatus = Field(JobStatus.DRAFT, description="Publication status")
    expires_at: datetime = Field(..., description="Posting expiration time")

    @field_validator("expires_at")
    @classmethod
    def _utc_expires_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def is_open(self, now: datetime) -> bool:
        """Whether the posting accepts applications at ``now``."""
        return self.status == JobStatus.ACTIVE and now < self.expires_at


class Education(BaseModel):
    """Represents educational background."""
    institution: str = Field(..., description="Educational institution")
    degree: Optional[str] = Field(None, description="Degree type")
    field_of_study: Optional[str] = Field(None, description="Field of study")
    graduation_date: Optional[date] = Field(None, description="Graduation date")


class Profile(BaseModel):
    """Job seeker profile scored by the completeness calculator."""
    job_seeker_id: str = Field(..., description="Owning job seeker")
    full_name: Optional[str] = Field(None, description="Full name")
    date_of_birth: Optional[date] = Field(None, description="Date of birth")
    gender: Optional[str] = Field(None, description="Gender")
    nationality: Optional[str] = Field(None, description="Nationality")
    phone_number: Optional[str] = Field(None, description="Phone number")
    address: Optional[str] = Field(None, description="Postal address")
    education: List[Education] = Field(default_factory=list, description="Educational background")
    skills: List[str] = Field(default_factory=list, description="Skills")
    languages: List[str] = Field(default_factory=list, description="Spoken languages")
    preferred_locations: List[str] = Field(default_factory=list, description="Preferred work locations")


class Document(BaseModel):
    """Identity or supporting document uploaded by a job seeker."""
    id: str = Field(default_factory=_new_id, description="Document identifier")
    owner_id: str = Field(..., description="Owning job seeker")
    type: str = Field(..., description="Document type code, e.g. PASSPORT")
    name: Optional[str] = Field(None, description="Display name")
    verification_status: VerificationStatus = Field(
        VerificationStatus.PENDING, description="Stored verification status"
    )
    expiry_date: Optional[datetime] = Field(None, description="When the document expires")
    notification_sent: bool = Field(False, description="Expiry notice sent for the current cycle")
    verified_at: Optional[datetime] = Field(None, description="Last verification decision time")
    version: int = Field(0, ge=0, description="Optimistic concurrency counter")
    uploaded_at: datetime = Field(default_factory=utc_now, description="Upload time")

    @field_validator("expiry_date", "verified_at", "uploaded_at")
    @classmethod
    def _utc_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class StatusChange(BaseModel):
    """Entry in an application's status history."""
    model_config = ConfigDict(frozen=True)

    status: ApplicationStatus = Field(..., description="Status entered")
    changed_at: datetime = Field(..., description="When the status was entered")
    note: Optional[str] = Field(None, description="Reason or comment")

    @field_validator("changed_at")
    @classmethod
    def _utc_changed_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Application(BaseModel):
    """Job application record."""
    id: str = Field(default_factory=_new_id, description="Application identifier")
    job_id: str = Field(..., description="Job posting applied to")
    job_seeker_id: str = Field(..., description="Applicant")
    status: ApplicationStatus = Field(ApplicationStatus.APPLIED, description="Current status")
    cover_letter: str = Field("", description="Cover letter text")
    documents: List[str] = Field(default_factory=list, description="Referenced document ids")
    history: List[StatusChange] = Field(default_factory=list, description="Append-only status history")
    version: int = Field(0, ge=0, description="Optimistic concurrency counter")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update time")

    @field_validator("documents")
    @classmethod
    def _dedupe_documents(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_timestamps(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CompletenessReport(BaseModel):
    """Result of scoring a profile against the tracked field schedule."""
    completion_percentage: int = Field(..., ge=0, le=100, description="Weighted completion, 0-100")
    missing_fields: List[str] = Field(default_factory=list, description="Unpopulated field codes")


class EligibilityVerdict(BaseModel):
    """Outcome of an eligibility check, with itemized reasons."""
    job_id: str = Field(..., description="Job evaluated")
    job_seeker_id: str = Field(..., description="Job seeker evaluated")
    eligible: bool = Field(..., description="Whether the job seeker may apply")
    missing_requirements: List[str] = Field(
        default_factory=list, description="Profile field codes, then document type codes"
    )
    reasons: List[str] = Field(default_factory=list, description="Human-readable failure reasons")
    missing_fields: List[str] = Field(default_factory=list, description="Profile gaps only")
    missing_documents: List[str] = Field(default_factory=list, description="Document gaps only")
    warnings: List[str] = Field(default_factory=list, description="Non-blocking observations")


class NotificationIntent(BaseModel):
    """Notification to be delivered by the external dispatcher."""
    model_config = ConfigDict(frozen=True)

    recipient: str = Field(..., description="Recipient user id")
    type: NotificationType = Field(..., description="Notification kind")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Title, message and related ids")
    dedupe_key: str = Field(..., description="Deterministic key for at-most-once delivery")
