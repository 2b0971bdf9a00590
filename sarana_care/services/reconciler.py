"""
Notification Reconciler: the per-user fetch/merge/act cycle.

All mutable per-user state lives in a ``NotificationContext`` that is passed
into every call, so multiple fetch cycles can be driven deterministically
without timers or a network. The reconciler itself holds only its
collaborators: a ``ComplaintSource`` to fetch from and a
``NotificationLedgerStore`` to write read/cleared flags through to.

Rules:
- A failed fetch changes nothing; the last good list stays visible
- User actions change the visible list immediately, then hit the ledger
- Ledger failures are logged and the unflushed flags retried on the next
  action or refresh
"""

import logging
from collections import OrderedDict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol
from zoneinfo import ZoneInfo

from ..core.config import Settings, get_settings
from ..schemas.complaints import ComplaintOut
from .notification_ledger import (
    LedgerFlags,
    LedgerStoreError,
    NotificationLedgerStore,
    merge_entries,
)
from .notifications import (
    DEFAULT_WINDOW,
    Notification,
    TimeSource,
    derive_candidates,
    merge_notifications,
)


logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS & COLLABORATORS
# =============================================================================


class ComplaintSourceError(Exception):
    """Complaints could not be fetched."""
    pass


class NotificationNotFoundError(KeyError):
    """No visible notification has the given key."""
    pass


class ComplaintSource(Protocol):
    """Anything that can return the complaint list, newest first."""

    async def fetch_complaints(self) -> Sequence[ComplaintOut]:
        ...


# =============================================================================
# SESSION STATE
# =============================================================================


@dataclass
class NotificationContext:
    """Notification state for one user session."""
    user_id: str
    notifications: dict[str, Notification] = field(default_factory=dict)
    read_keys: set[str] = field(default_factory=set)
    cleared_keys: set[str] = field(default_factory=set)
    pending: dict[str, LedgerFlags] = field(default_factory=dict)
    loaded: bool = False
    fetch_count: int = 0
    complaints: list[ComplaintOut] = field(default_factory=list)
    last_fetch_at: datetime | None = None

    @property
    def visible(self) -> list[Notification]:
        return list(self.notifications.values())

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications.values() if not n.is_read)

    @property
    def has_unflushed_changes(self) -> bool:
        return bool(self.pending)


@dataclass
class RefreshResult:
    """Outcome of one fetch cycle."""
    applied: bool
    cycle: int
    notifications: list[Notification]
    error: str | None = None


# =============================================================================
# RECONCILER
# =============================================================================


class NotificationReconciler:
    """Merges fetched complaints with the ledger into visible notifications."""

    def __init__(
        self,
        store: NotificationLedgerStore,
        source: ComplaintSource,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self._store = store
        self._source = source
        self._window: int = settings.notification_window or DEFAULT_WINDOW
        self._time_source: TimeSource = settings.notification_time_source
        self._tz = ZoneInfo(settings.display_timezone)

    # =========================================================================
    # LOAD & REFRESH
    # =========================================================================

    async def load(self, ctx: NotificationContext) -> None:
        """Seed read/cleared sets from the ledger.

        Flags already held in memory are kept (they are monotonic), and
        visible entries are brought in line: read keys become read, cleared
        keys disappear. Raises ``LedgerStoreError`` if the ledger is
        unreadable.
        """
        entries = await self._store.load(ctx.user_id)

        ctx.read_keys.update(k for k, f in entries.items() if f.read)
        ctx.cleared_keys.update(k for k, f in entries.items() if f.cleared)
        ctx.notifications = {
            key: notification.mark_read() if key in ctx.read_keys else notification
            for key, notification in ctx.notifications.items()
            if key not in ctx.cleared_keys
        }
        ctx.loaded = True
        logger.debug(
            f"Ledger loaded for {ctx.user_id}: {len(ctx.read_keys)} read, "
            f"{len(ctx.cleared_keys)} cleared"
        )

    async def refresh(self, ctx: NotificationContext) -> RefreshResult:
        """Run one fetch cycle and commit the derived notifications."""
        ctx.fetch_count += 1
        cycle = ctx.fetch_count

        await self._flush(ctx)

        if not ctx.loaded:
            try:
                await self.load(ctx)
            except LedgerStoreError as e:
                logger.warning(
                    f"Ledger unavailable for {ctx.user_id}, "
                    f"continuing with in-memory state: {e}"
                )

        try:
            complaints = list(await self._source.fetch_complaints())
        except ComplaintSourceError as e:
            logger.warning(f"Fetch cycle {cycle} for {ctx.user_id} failed: {e}")
            return RefreshResult(
                applied=False,
                cycle=cycle,
                notifications=ctx.visible,
                error=str(e),
            )

        # Cleared keys are read after the await so a clear that happened
        # while this cycle was in flight still applies.
        candidates = derive_candidates(complaints, ctx.cleared_keys, self._window)
        ctx.notifications = merge_notifications(
            ctx.notifications,
            candidates,
            ctx.read_keys,
            time_source=self._time_source,
            tz=self._tz,
        )
        ctx.complaints = complaints
        ctx.last_fetch_at = datetime.now(timezone.utc)

        logger.debug(
            f"Fetch cycle {cycle} for {ctx.user_id}: {len(complaints)} complaints, "
            f"{len(ctx.notifications)} visible, {ctx.unread_count} unread"
        )
        return RefreshResult(applied=True, cycle=cycle, notifications=ctx.visible)

    # =========================================================================
    # USER ACTIONS
    # =========================================================================

    async def mark_read(self, ctx: NotificationContext, key: str) -> Notification:
        notification = self._require(ctx, key)
        updated = notification.mark_read()
        ctx.notifications[key] = updated
        ctx.read_keys.add(key)
        await self._record(ctx, {key: LedgerFlags(read=True)})
        return updated

    async def mark_all_read(self, ctx: NotificationContext) -> int:
        """Mark every visible notification read. Returns how many changed."""
        changed = [k for k, n in ctx.notifications.items() if not n.is_read]
        ctx.notifications = {
            key: notification.mark_read()
            for key, notification in ctx.notifications.items()
        }
        ctx.read_keys.update(ctx.notifications)
        await self._record(
            ctx, {key: LedgerFlags(read=True) for key in ctx.notifications}
        )
        return len(changed)

    async def delete(self, ctx: NotificationContext, key: str) -> None:
        self._require(ctx, key)
        del ctx.notifications[key]
        ctx.cleared_keys.add(key)
        await self._record(ctx, {key: LedgerFlags(cleared=True)})

    async def clear_all(self, ctx: NotificationContext) -> int:
        """Clear every visible notification. Returns how many were removed."""
        keys = list(ctx.notifications)
        ctx.notifications = {}
        ctx.cleared_keys.update(keys)
        await self._record(ctx, {key: LedgerFlags(cleared=True) for key in keys})
        return len(keys)

    def unread_count(self, ctx: NotificationContext) -> int:
        return ctx.unread_count

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _require(self, ctx: NotificationContext, key: str) -> Notification:
        notification = ctx.notifications.get(key)
        if notification is None:
            raise NotificationNotFoundError(key)
        return notification

    async def _record(
        self,
        ctx: NotificationContext,
        updates: dict[str, LedgerFlags],
    ) -> None:
        if updates:
            ctx.pending = merge_entries(ctx.pending, updates)
        await self._flush(ctx)

    async def _flush(self, ctx: NotificationContext) -> bool:
        """Write unflushed flags through. False if they remain pending."""
        if not ctx.pending:
            return True
        batch = dict(ctx.pending)
        try:
            await self._store.persist(ctx.user_id, batch)
        except LedgerStoreError as e:
            logger.warning(
                f"Ledger write for {ctx.user_id} failed, "
                f"{len(batch)} keys kept for retry: {e}"
            )
            return False
        for key in batch:
            if ctx.pending.get(key) == batch[key]:
                del ctx.pending[key]
        return True


# =============================================================================
# CONTEXT REGISTRY
# =============================================================================


class NotificationContextRegistry:
    """One ``NotificationContext`` per user id, least recently used evicted.

    A context evicted with unflushed flags loses them; otherwise the next
    request for that user starts unloaded and reseeds from the ledger.
    """

    def __init__(self, limit: int = 1000):
        self._limit = limit
        self._contexts: OrderedDict[str, NotificationContext] = OrderedDict()

    def get(self, user_id: str) -> NotificationContext:
        ctx = self._contexts.get(user_id)
        if ctx is None:
            ctx = NotificationContext(user_id=user_id)
            self._contexts[user_id] = ctx
            while len(self._contexts) > self._limit:
                evicted, _ = self._contexts.popitem(last=False)
                logger.debug(f"Evicted notification context for {evicted}")
        else:
            self._contexts.move_to_end(user_id)
        return ctx

    def discard(self, user_id: str) -> None:
        self._contexts.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._contexts
