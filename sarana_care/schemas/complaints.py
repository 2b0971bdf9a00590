"""Complaint, progress and profile schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import Field

from ..models import ComplaintStatus, UserRole
from .base import CategoryRef, SaranaBaseModel, UserRef


class ComplaintPage(str, Enum):
    """Page context a complaint list is requested for."""

    DASHBOARD = "dashboard"
    TRACKING = "tracking"
    HISTORY = "history"


class ProgressOut(SaranaBaseModel):
    """One progress log entry."""

    id: UUID
    sequence: int
    status: ComplaintStatus
    description: str
    created_at: datetime


class ComplaintOut(SaranaBaseModel):
    """A complaint with its progress log, as returned on every poll."""

    id: UUID
    title: str
    location: str
    category_id: UUID | None = None
    category: CategoryRef | None = None
    description: str
    image_url: str | None = None
    user_id: UUID
    owner: UserRef | None = None
    current_status: ComplaintStatus
    created_at: datetime
    progress: list[ProgressOut] = Field(default_factory=list)


class ComplaintCreate(SaranaBaseModel):
    """Request to file a new complaint. Status is always forced to pending."""

    title: str = Field(..., min_length=1, max_length=255)
    location: str = Field(..., min_length=1, max_length=255)
    category_id: UUID
    description: str = Field(..., min_length=1)
    image_url: str | None = Field(default=None, max_length=1000)


class StatusTransitionRequest(SaranaBaseModel):
    """Request to advance a complaint's status."""

    status: ComplaintStatus
    description: str | None = Field(
        default=None,
        max_length=2000,
        description="Progress note; a canned note is used when omitted",
    )


class ComplaintStats(SaranaBaseModel):
    """Global complaint counters."""

    total: int
    pending: int
    in_progress: int
    done: int


class ProfileOut(SaranaBaseModel):
    """User profile as seen by the client."""

    id: UUID
    auth_user_id: str
    name: str
    email: str
    role: UserRole
