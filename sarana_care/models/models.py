"""SQLAlchemy ORM Models for Sarana Care.

Complaints are the authoritative record. Notifications are never stored;
only the per-user read/clear ledger about them is.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class ComplaintStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class UserRole(str, PyEnum):
    ADMIN = "admin"  # Facility staff, may advance complaints
    STUDENT = "student"


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


complaint_status_enum = Enum(
    ComplaintStatus, name="complaint_status", values_callable=_enum_values
)


# =============================================================================
# USER & CATEGORY MODELS
# =============================================================================


class User(Base, UUIDMixin):
    """Application user (profile record, identity is external)."""

    __tablename__ = "users"

    auth_user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=_enum_values),
        default=UserRole.STUDENT,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    complaints: Mapped[list["Complaint"]] = relationship(back_populates="owner")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Category(Base, UUIDMixin):
    """Facility category (lookup table)."""

    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)


# =============================================================================
# COMPLAINT MODELS (Core)
# =============================================================================


class Complaint(Base, UUIDMixin):
    """A filed facility issue.

    current_status mirrors the newest ComplaintProgress entry, or PENDING
    while the log is empty.
    """

    __tablename__ = "complaints"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[UUID | None] = mapped_column(ForeignKey("categories.id"))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(1000))
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    current_status: Mapped[ComplaintStatus] = mapped_column(
        complaint_status_enum,
        default=ComplaintStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    category: Mapped["Category | None"] = relationship()
    owner: Mapped["User"] = relationship(back_populates="complaints")
    progress: Mapped[list["ComplaintProgress"]] = relationship(
        back_populates="complaint",
        order_by="ComplaintProgress.sequence",
    )

    __table_args__ = (
        Index("idx_complaints_created_at", "created_at"),
        Index("idx_complaints_user", "user_id", "created_at"),
        Index("idx_complaints_status", "current_status"),
    )


class ComplaintProgress(Base, UUIDMixin):
    """Append-only audit entry recording one status change."""

    __tablename__ = "complaint_progress"

    complaint_id: Mapped[UUID] = mapped_column(
        ForeignKey("complaints.id"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ComplaintStatus] = mapped_column(
        complaint_status_enum,
        nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    complaint: Mapped["Complaint"] = relationship(back_populates="progress")
    actor: Mapped["User | None"] = relationship()

    __table_args__ = (
        # Two writers racing for the same log position: one of them loses
        UniqueConstraint("complaint_id", "sequence"),
        Index("idx_complaint_progress_complaint", "complaint_id", "created_at"),
    )


# =============================================================================
# NOTIFICATION LEDGER
# =============================================================================


class NotificationLedgerEntry(Base, UUIDMixin, TimestampMixin):
    """Durable per-user read/cleared flags for one notification key.

    Flags are only ever raised. A cleared key must stay excluded forever,
    so rows are pruned only once their key can no longer be derived.
    """

    __tablename__ = "notification_ledger"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    notification_key: Mapped[str] = mapped_column(String(191), nullable=False)
    complaint_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[ComplaintStatus] = mapped_column(
        complaint_status_enum,
        nullable=False,
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_cleared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column()
    cleared_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        UniqueConstraint("user_id", "notification_key"),
        Index("idx_notification_ledger_user", "user_id"),
        Index("idx_notification_ledger_complaint", "complaint_id"),
    )
