"""
Terminal notification watcher.

Polls the API as the token's user and prints the visible notifications
after every cycle. Read/cleared state is kept in a JSON ledger on disk, so
restarting the watcher reproduces the same list.

    python -m sarana_care.client --token $TOKEN
    python -m sarana_care.client --token $TOKEN --once --mark-all-read
"""

import argparse
import asyncio
import logging
import os

import jwt

from ..core.config import get_settings
from ..services.notification_ledger import JsonFileLedgerStore
from ..services.reconciler import (
    NotificationContext,
    NotificationReconciler,
    RefreshResult,
)
from .api_client import SaranaClient
from .poller import NotificationPoller


logger = logging.getLogger(__name__)


def token_subject(token: str) -> str:
    """User id the token was issued for. The server verifies the signature."""
    claims = jwt.decode(token, options={"verify_signature": False})
    return claims["sub"]


def print_notifications(result: RefreshResult) -> None:
    if not result.applied:
        print(f"[cycle {result.cycle}] fetch failed: {result.error}")
    unread = sum(1 for n in result.notifications if not n.is_read)
    print(f"[cycle {result.cycle}] {len(result.notifications)} notifications, {unread} unread")
    for n in result.notifications:
        marker = " " if n.is_read else "*"
        print(f"  {marker} {n.time}  {n.title}: {n.message}")


async def watch(args: argparse.Namespace) -> None:
    settings = get_settings()
    user_id = token_subject(args.token)
    store = JsonFileLedgerStore(args.ledger_dir)

    async with SaranaClient(args.token, base_url=args.server_url) as client:
        reconciler = NotificationReconciler(store, client, settings)
        ctx = NotificationContext(user_id=user_id)

        if args.once:
            result = await reconciler.refresh(ctx)
            if args.mark_all_read:
                changed = await reconciler.mark_all_read(ctx)
                logger.info(f"Marked {changed} notifications read")
                result = RefreshResult(
                    applied=result.applied,
                    cycle=result.cycle,
                    notifications=ctx.visible,
                    error=result.error,
                )
            print_notifications(result)
            return

        poller = NotificationPoller(
            reconciler,
            ctx,
            interval_seconds=args.interval,
            on_refresh=print_notifications,
        )
        try:
            await poller.run()
        finally:
            poller.stop()


def main():
    """CLI entry point for the notification watcher."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Watch Sarana Care notifications")
    parser.add_argument(
        "--token",
        default=os.environ.get("SARANA_TOKEN"),
        help="Bearer token issued by the identity provider",
    )
    parser.add_argument(
        "--server-url",
        default=settings.server_url,
        help="API server base URL",
    )
    parser.add_argument(
        "--ledger-dir",
        default=settings.notification_ledger_dir,
        help="Directory holding the read/cleared ledger files",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.notification_poll_interval_seconds,
        help="Seconds between polls",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single fetch cycle and exit",
    )
    parser.add_argument(
        "--mark-all-read",
        action="store_true",
        help="With --once, mark every visible notification read",
    )

    args = parser.parse_args()

    if not args.token:
        print("Error: --token or SARANA_TOKEN is required")
        exit(1)

    # Configure logging
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(watch(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
