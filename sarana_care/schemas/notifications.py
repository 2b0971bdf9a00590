"""Notification schemas."""

from datetime import datetime
from uuid import UUID

from ..models import ComplaintStatus
from ..services.notifications import NotificationKind
from .base import SaranaBaseModel


class NotificationOut(SaranaBaseModel):
    """A derived notification as shown to the user."""

    id: str  # The notification identity key
    complaint_id: UUID
    status: ComplaintStatus
    kind: NotificationKind
    title: str
    message: str
    time: str
    event_at: datetime
    is_read: bool


class NotificationListResponse(SaranaBaseModel):
    """Visible notifications after a fetch cycle or user action."""

    notifications: list[NotificationOut]
    unread_count: int
    fetch_count: int
    applied: bool = True
