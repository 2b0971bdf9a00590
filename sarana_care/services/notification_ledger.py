"""
Read/Clear Ledger: durable per-user notification flags.

The server has no notion of a notification, only of complaints. What must
survive polls, reloads and restarts is which notification keys a user has
read and which they have cleared. Stores hold exactly that, one pair of
monotonic flags per (user, key):

- ``load`` of an unknown user is an empty mapping, never an error
- ``persist`` merges; a flag that is already raised stays raised
- any I/O problem surfaces as ``LedgerStoreError``
"""

import asyncio
import hashlib
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Complaint, NotificationLedgerEntry
from .notifications import parse_notification_key


logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS & VALUE TYPES
# =============================================================================


class LedgerStoreError(Exception):
    """The ledger could not be read or written."""
    pass


@dataclass(frozen=True)
class LedgerFlags:
    """Read/cleared facts for one notification key."""
    read: bool = False
    cleared: bool = False

    def merge(self, other: "LedgerFlags") -> "LedgerFlags":
        return LedgerFlags(
            read=self.read or other.read,
            cleared=self.cleared or other.cleared,
        )


def merge_entries(
    base: Mapping[str, LedgerFlags],
    updates: Mapping[str, LedgerFlags],
) -> dict[str, LedgerFlags]:
    """Union of two ledger mappings, flags OR-ed per key."""
    merged = dict(base)
    for key, flags in updates.items():
        merged[key] = merged[key].merge(flags) if key in merged else flags
    return merged


# =============================================================================
# STORE INTERFACE
# =============================================================================


class NotificationLedgerStore(ABC):
    """Abstract base for ledger persistence backends."""

    @abstractmethod
    async def load(self, user_id: str) -> dict[str, LedgerFlags]:
        """Return every known key for the user (empty if none)."""
        pass

    @abstractmethod
    async def persist(self, user_id: str, entries: Mapping[str, LedgerFlags]) -> None:
        """Merge ``entries`` into the user's ledger."""
        pass


class InMemoryLedgerStore(NotificationLedgerStore):
    """Process-local store. Used in tests and for anonymous sessions."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, LedgerFlags]] = {}

    async def load(self, user_id: str) -> dict[str, LedgerFlags]:
        return dict(self._data.get(user_id, {}))

    async def persist(self, user_id: str, entries: Mapping[str, LedgerFlags]) -> None:
        self._data[user_id] = merge_entries(self._data.get(user_id, {}), entries)


# =============================================================================
# JSON FILE STORE (client side)
# =============================================================================


_SAFE_USER_ID = re.compile(r"[^A-Za-z0-9_.-]")
_READABLE_PREFIX = 32


class JsonFileLedgerStore(NotificationLedgerStore):
    """One JSON document per user under ``directory``.

    Layout: ``{"read": [keys...], "cleared": [keys...]}``. Writes go to a
    temporary file that is then renamed over the original, so a crash
    mid-write leaves the previous ledger intact. Read-merge-write cycles for
    one user are serialised so overlapping persists cannot drop each
    other's keys.
    """

    def __init__(self, directory: str | os.PathLike):
        self._directory = Path(directory)
        self._locks: dict[str, asyncio.Lock] = {}

    def path_for(self, user_id: str) -> Path:
        """File for ``user_id``: a readable prefix plus a digest of the full id."""
        readable = _SAFE_USER_ID.sub("_", user_id)[:_READABLE_PREFIX]
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:16]
        return self._directory / f"ledger_{readable}_{digest}.json"

    async def load(self, user_id: str) -> dict[str, LedgerFlags]:
        return await asyncio.to_thread(self._read, user_id)

    async def persist(self, user_id: str, entries: Mapping[str, LedgerFlags]) -> None:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            await asyncio.to_thread(self._merge_and_write, user_id, dict(entries))

    def _read(self, user_id: str) -> dict[str, LedgerFlags]:
        path = self.path_for(user_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise LedgerStoreError(f"Cannot read ledger {path}: {e}") from e

        try:
            document = json.loads(raw)
        except ValueError as e:
            raise LedgerStoreError(f"Corrupt ledger {path}: {e}") from e
        if not isinstance(document, dict):
            raise LedgerStoreError(f"Corrupt ledger {path}: expected an object")

        read = set(document.get("read", []))
        cleared = set(document.get("cleared", []))
        return {
            key: LedgerFlags(read=key in read, cleared=key in cleared)
            for key in read | cleared
        }

    def _merge_and_write(self, user_id: str, entries: dict[str, LedgerFlags]) -> None:
        merged = merge_entries(self._read(user_id), entries)
        document = {
            "read": sorted(k for k, f in merged.items() if f.read),
            "cleared": sorted(k for k, f in merged.items() if f.cleared),
        }

        path = self.path_for(user_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise LedgerStoreError(f"Cannot write ledger {path}: {e}") from e


# =============================================================================
# SQL STORE (server side)
# =============================================================================


class SqlLedgerStore(NotificationLedgerStore):
    """Ledger rows in the ``notification_ledger`` table.

    ``persist`` commits the caller's session: the reconciler forgets a flag
    once persist returns, so the write must be durable by then. Rows are
    upserted on ``(user_id, notification_key)`` so two first writes for the
    same key merge instead of colliding.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def load(self, user_id: str) -> dict[str, LedgerFlags]:
        try:
            result = await self._session.execute(
                select(NotificationLedgerEntry)
                .where(NotificationLedgerEntry.user_id == UUID(user_id))
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise LedgerStoreError(f"Failed to load ledger for {user_id}: {e}") from e

        return {
            row.notification_key: LedgerFlags(read=row.is_read, cleared=row.is_cleared)
            for row in result.scalars()
        }

    async def persist(self, user_id: str, entries: Mapping[str, LedgerFlags]) -> None:
        if not entries:
            return
        owner_id = UUID(user_id)
        now = datetime.now(timezone.utc)

        rows = []
        for key, flags in entries.items():
            complaint_id, status = parse_notification_key(key)
            rows.append({
                "id": uuid4(),
                "user_id": owner_id,
                "notification_key": key,
                "complaint_id": complaint_id,
                "status": status,
                "is_read": flags.read,
                "is_cleared": flags.cleared,
                "read_at": now if flags.read else None,
                "cleared_at": now if flags.cleared else None,
                "created_at": now,
            })

        try:
            insert = _upsert_insert(self._session)
            stmt = insert(NotificationLedgerEntry).values(rows)
            table = NotificationLedgerEntry.__table__
            # Flags only ever rise; the first read/clear timestamp is kept
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "notification_key"],
                set_={
                    "is_read": or_(table.c.is_read, stmt.excluded.is_read),
                    "is_cleared": or_(table.c.is_cleared, stmt.excluded.is_cleared),
                    "read_at": func.coalesce(table.c.read_at, stmt.excluded.read_at),
                    "cleared_at": func.coalesce(
                        table.c.cleared_at, stmt.excluded.cleared_at
                    ),
                    "updated_at": now,
                },
            )
            await self._session.execute(stmt)
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise LedgerStoreError(f"Failed to persist ledger for {user_id}: {e}") from e

    async def prune(self, older_than: timedelta) -> int:
        """Delete stale rows whose key can no longer be derived.

        A key is derivable while its complaint is still in the recorded
        status; those rows are kept regardless of age, otherwise a cleared
        notification could come back. This relies on statuses only moving
        forward, so callers must not prune while the transition guard is
        off.
        """
        cutoff = datetime.now(timezone.utc) - older_than
        stale_ids = (
            select(NotificationLedgerEntry.id)
            .join(Complaint, Complaint.id == NotificationLedgerEntry.complaint_id)
            .where(
                and_(
                    Complaint.current_status != NotificationLedgerEntry.status,
                    func.coalesce(
                        NotificationLedgerEntry.updated_at,
                        NotificationLedgerEntry.created_at,
                    ) < cutoff,
                )
            )
        )
        try:
            result = await self._session.execute(
                delete(NotificationLedgerEntry)
                .where(NotificationLedgerEntry.id.in_(stale_ids))
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise LedgerStoreError(f"Failed to prune ledger: {e}") from e
        return result.rowcount or 0


def _upsert_insert(session: AsyncSession):
    """Dialect ``insert`` supporting ``ON CONFLICT DO UPDATE``."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise LedgerStoreError(f"Ledger upsert not supported on {dialect}")
