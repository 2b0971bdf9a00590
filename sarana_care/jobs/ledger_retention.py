"""
Ledger Retention Job: prunes notification ledger rows nobody can see again.

A ledger row only matters while its key is still derivable, i.e. while the
complaint is still in the status the key names. Once the complaint has moved
on, the key can never come back and the row is dead weight. Rows are pruned
only when they are both dead and older than the retention window.
That only holds while statuses move forward, so the job does nothing when
the transition guard is switched off.

Typical cron schedule: 0 3 * * 0 (weekly, Sunday 3 AM)
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.config import get_settings
from ..core.database import build_engine
from ..services.notification_ledger import SqlLedgerStore


logger = logging.getLogger(__name__)


async def run_ledger_retention_job(
    database_url: str | None = None,
    retention_days: int | None = None,
) -> dict[str, Any]:
    """
    Main entry point for the ledger retention job.

    Args:
        database_url: Database connection string (defaults to settings)
        retention_days: Minimum age of prunable rows (defaults to settings)

    Returns:
        Job result summary
    """
    settings = get_settings()
    if database_url:
        settings = settings.model_copy(update={"database_url": database_url})
    retention_days = retention_days or settings.notification_ledger_retention_days

    start_time = datetime.now(timezone.utc)
    logger.info(
        f"Starting ledger retention job at {start_time.isoformat()} "
        f"(retention {retention_days} days)"
    )

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "retention_days": retention_days,
        "pruned_count": 0,
        "skipped": False,
    }

    # A complaint moved back to an earlier status would make a pruned key
    # derivable again
    if not settings.enforce_status_transitions:
        logger.warning(
            "Status transitions are not enforced; skipping ledger retention"
        )
        results["skipped"] = True
        results["completed_at"] = datetime.now(timezone.utc).isoformat()
        return results

    engine = build_engine(settings)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with session_factory() as session:
            async with session.begin():
                store = SqlLedgerStore(session)
                results["pruned_count"] = await store.prune(
                    timedelta(days=retention_days)
                )
    except Exception as e:
        logger.error(f"Ledger retention job failed: {e}")
        raise
    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Ledger retention job completed in {results['duration_seconds']:.2f}s: "
        f"{results['pruned_count']} rows pruned"
    )
    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the ledger retention job."""
    import argparse

    parser = argparse.ArgumentParser(description="Prune stale notification ledger rows")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="Database connection string",
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Only prune rows older than this many days",
    )

    args = parser.parse_args()

    if not args.database_url:
        print("Error: DATABASE_URL is required")
        exit(1)

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_ledger_retention_job(
            database_url=args.database_url,
            retention_days=args.retention_days,
        ))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        exit(1)


if __name__ == "__main__":
    main()
