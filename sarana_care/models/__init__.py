"""SQLAlchemy ORM Models for Sarana Care."""

from .base import Base, TimestampMixin, UUIDMixin, utcnow
from .models import (
    # Enums
    ComplaintStatus,
    UserRole,
    # Users
    Category,
    User,
    # Complaints
    Complaint,
    ComplaintProgress,
    # Notifications
    NotificationLedgerEntry,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "utcnow",
    # Enums
    "ComplaintStatus",
    "UserRole",
    # Users
    "User",
    "Category",
    # Complaints
    "Complaint",
    "ComplaintProgress",
    # Notifications
    "NotificationLedgerEntry",
]
