"""
Notification Derivation: turns a complaint list into notifications.

Nothing here is stored. Each notification is identified by the key
``notif-{complaint_id}-{status}``, so a status change is a new event with
a new identity while re-fetching an unchanged complaint yields the same key.

Everything in this module is pure: no I/O, no clock, no shared state. The
reconciler feeds it the fetched complaints plus the ledger's read/cleared
sets and commits whatever comes out.
"""

from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Literal
from uuid import UUID
from zoneinfo import ZoneInfo

from ..models import ComplaintStatus
from ..schemas.complaints import ComplaintOut


KEY_PREFIX = "notif-"
DEFAULT_WINDOW = 5
DEFAULT_TIME_FORMAT = "%H:%M"

TimeSource = Literal["transition", "filed"]


class NotificationKind(str, Enum):
    NEW_REPORT = "new_report"
    STATUS_CHANGE = "status_change"


class InvalidNotificationKeyError(ValueError):
    """Key is not of the form notif-{complaint_id}-{status}."""


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class Notification:
    """A visible notification. Immutable; state changes produce a copy."""
    key: str
    complaint_id: UUID
    status: ComplaintStatus
    kind: NotificationKind
    title: str
    message: str
    time: str
    event_at: datetime
    is_read: bool = False

    def mark_read(self) -> "Notification":
        if self.is_read:
            return self
        return replace(self, is_read=True)


@dataclass(frozen=True)
class NotificationCandidate:
    """A complaint from the newest window that survived the cleared filter."""
    key: str
    complaint: ComplaintOut


# =============================================================================
# IDENTITY
# =============================================================================


def notification_key(complaint_id: UUID | str, status: ComplaintStatus | str) -> str:
    """Identity key for the (complaint, status) pair."""
    return f"{KEY_PREFIX}{complaint_id}-{ComplaintStatus(status).value}"


def parse_notification_key(key: str) -> tuple[UUID, ComplaintStatus]:
    """Split a key back into its complaint id and status.

    Statuses never contain a hyphen, so the last hyphen separates them
    from the (hyphenated) UUID.
    """
    if not key.startswith(KEY_PREFIX):
        raise InvalidNotificationKeyError(f"Not a notification key: {key!r}")
    body = key[len(KEY_PREFIX):]
    complaint_part, _, status_part = body.rpartition("-")
    try:
        return UUID(complaint_part), ComplaintStatus(status_part)
    except ValueError as e:
        raise InvalidNotificationKeyError(f"Not a notification key: {key!r}") from e


# =============================================================================
# DERIVATION
# =============================================================================


def derive_candidates(
    complaints: Sequence[ComplaintOut],
    cleared_keys: Collection[str],
    window: int = DEFAULT_WINDOW,
) -> list[NotificationCandidate]:
    """Key the newest ``window`` complaints and drop cleared keys.

    ``complaints`` must already be ordered newest-first; the window is taken
    before filtering, so clearing never pulls an older complaint in.
    """
    candidates: list[NotificationCandidate] = []
    seen: set[str] = set()
    for complaint in complaints[:window]:
        key = notification_key(complaint.id, complaint.current_status)
        if key in cleared_keys or key in seen:
            continue
        seen.add(key)
        candidates.append(NotificationCandidate(key=key, complaint=complaint))
    return candidates


def merge_notifications(
    previous: Mapping[str, Notification],
    candidates: Iterable[NotificationCandidate],
    read_keys: Collection[str],
    *,
    time_source: TimeSource = "transition",
    tz: ZoneInfo | None = None,
) -> dict[str, Notification]:
    """Combine fresh candidates with the previously visible notifications.

    An existing entry with the same key is kept verbatim (read flag and
    display time included). New keys are built from the complaint, with the
    read flag seeded from the ledger. Keys absent from ``candidates`` drop
    out. The result preserves candidate order.
    """
    merged: dict[str, Notification] = {}
    for candidate in candidates:
        existing = previous.get(candidate.key)
        if existing is not None:
            merged[candidate.key] = existing
            continue
        merged[candidate.key] = build_notification(
            candidate,
            is_read=candidate.key in read_keys,
            time_source=time_source,
            tz=tz,
        )
    return merged


def build_notification(
    candidate: NotificationCandidate,
    is_read: bool = False,
    *,
    time_source: TimeSource = "transition",
    tz: ZoneInfo | None = None,
) -> Notification:
    """Synthesize a notification for a key seen for the first time."""
    complaint = candidate.complaint
    status = ComplaintStatus(complaint.current_status)

    if status == ComplaintStatus.PENDING:
        kind = NotificationKind.NEW_REPORT
        title = "New Report"
        message = f'Report "{complaint.title}" has been received.'
    else:
        kind = NotificationKind.STATUS_CHANGE
        title = "Status Update"
        message = (
            f'Status of report "{complaint.title}" changed to '
            f"{status.value.upper()}."
        )

    event_at = event_time(complaint, time_source)
    return Notification(
        key=candidate.key,
        complaint_id=complaint.id,
        status=status,
        kind=kind,
        title=title,
        message=message,
        time=format_display_time(event_at, tz),
        event_at=event_at,
        is_read=is_read,
    )


def event_time(complaint: ComplaintOut, time_source: TimeSource = "transition") -> datetime:
    """Timestamp a notification's display time is formatted from.

    ``filed`` always uses the filing time, which makes status-change
    notifications show when the report was filed rather than when it
    changed. ``transition`` uses the newest progress entry that moved the
    complaint into its current status and falls back to the filing time.
    """
    if time_source == "transition" and complaint.progress:
        current = ComplaintStatus(complaint.current_status)
        for entry in sorted(complaint.progress, key=lambda p: p.sequence, reverse=True):
            if entry.status == current:
                return entry.created_at
    return complaint.created_at


def format_display_time(
    moment: datetime,
    tz: ZoneInfo | None = None,
    fmt: str = DEFAULT_TIME_FORMAT,
) -> str:
    """Format as wall-clock time in the display timezone.

    Naive timestamps (SQLite drops offsets) are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if tz is not None:
        moment = moment.astimezone(tz)
    return moment.strftime(fmt)
