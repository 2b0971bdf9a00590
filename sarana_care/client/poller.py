"""
Notification Poller: drives fetch cycles for one client session.

Cycles start on a fixed interval and whenever ``trigger()`` is called
(manual refresh, page or filter change). Every trigger bumps a counter and
starts its own cycle; a cycle already in flight is left to finish, so two
cycles may complete in either order. The reconciler's merge makes that
safe.
"""

import asyncio
import logging
from collections.abc import Callable

from ..services.reconciler import (
    NotificationContext,
    NotificationReconciler,
    RefreshResult,
)


logger = logging.getLogger(__name__)

RefreshListener = Callable[[RefreshResult], None]


class NotificationPoller:
    """Runs ``NotificationReconciler.refresh`` on a timer and on demand."""

    def __init__(
        self,
        reconciler: NotificationReconciler,
        ctx: NotificationContext,
        interval_seconds: float = 30.0,
        on_refresh: RefreshListener | None = None,
    ):
        self._reconciler = reconciler
        self._ctx = ctx
        self._interval = interval_seconds
        self._on_refresh = on_refresh
        self._trigger_count = 0
        self._in_flight: set[asyncio.Task] = set()
        self._stopping = asyncio.Event()

    @property
    def trigger_count(self) -> int:
        return self._trigger_count

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def trigger(self) -> "asyncio.Task[RefreshResult | None]":
        """Start a new fetch cycle without waiting for earlier ones."""
        self._trigger_count += 1
        task = asyncio.create_task(self._cycle(self._trigger_count))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def run(self) -> None:
        """Poll until ``stop()`` is called."""
        logger.info(
            f"Polling notifications for {self._ctx.user_id} "
            f"every {self._interval:.0f}s"
        )
        while not self._stopping.is_set():
            await self.trigger()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        await self.drain()

    def stop(self) -> None:
        self._stopping.set()

    async def drain(self) -> None:
        """Wait for every in-flight cycle to finish."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def _cycle(self, trigger_id: int) -> RefreshResult | None:
        try:
            result = await self._reconciler.refresh(self._ctx)
        except Exception as e:
            # A broken cycle must not take the poll loop down with it
            logger.error(f"Fetch cycle for trigger {trigger_id} crashed: {e}", exc_info=True)
            return None

        if not result.applied:
            logger.info(f"Trigger {trigger_id}: fetch failed, keeping previous list")
        if self._on_refresh is not None:
            self._on_refresh(result)
        return result
