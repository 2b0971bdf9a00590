"""Business logic services for Sarana Care."""

from .complaints import (
    ALLOWED_TRANSITIONS,
    STAFF_ACTION_NOTES,
    CategoryNotFoundError,
    ComplaintError,
    ComplaintFilter,
    ComplaintNotFoundError,
    ComplaintService,
    ComplaintStatsResult,
    ConcurrencyError,
    DatabaseComplaintSource,
    FileComplaintInput,
    InvalidTransitionError,
    StatusInconsistencyError,
    allowed_transitions,
    default_progress_note,
    expected_status,
)
from .notification_ledger import (
    InMemoryLedgerStore,
    JsonFileLedgerStore,
    LedgerFlags,
    LedgerStoreError,
    NotificationLedgerStore,
    SqlLedgerStore,
)
from .notifications import (
    Notification,
    NotificationCandidate,
    NotificationKind,
    derive_candidates,
    merge_notifications,
    notification_key,
    parse_notification_key,
)
from .reconciler import (
    ComplaintSource,
    ComplaintSourceError,
    NotificationContext,
    NotificationContextRegistry,
    NotificationNotFoundError,
    NotificationReconciler,
    RefreshResult,
)

__all__ = [
    # Complaint lifecycle
    "ComplaintService",
    "ComplaintError",
    "ComplaintNotFoundError",
    "CategoryNotFoundError",
    "InvalidTransitionError",
    "ConcurrencyError",
    "StatusInconsistencyError",
    "ComplaintFilter",
    "ComplaintStatsResult",
    "FileComplaintInput",
    "DatabaseComplaintSource",
    "ALLOWED_TRANSITIONS",
    "STAFF_ACTION_NOTES",
    "allowed_transitions",
    "default_progress_note",
    "expected_status",
    # Derivation
    "Notification",
    "NotificationCandidate",
    "NotificationKind",
    "notification_key",
    "parse_notification_key",
    "derive_candidates",
    "merge_notifications",
    # Ledger
    "NotificationLedgerStore",
    "LedgerFlags",
    "LedgerStoreError",
    "InMemoryLedgerStore",
    "JsonFileLedgerStore",
    "SqlLedgerStore",
    # Reconciler
    "ComplaintSource",
    "ComplaintSourceError",
    "NotificationContext",
    "NotificationContextRegistry",
    "NotificationNotFoundError",
    "NotificationReconciler",
    "RefreshResult",
]
