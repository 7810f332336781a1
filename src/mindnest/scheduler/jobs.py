"""
APScheduler jobs for background sync.

The nightly reconciliation catches anything the post-review sync missed
(server down, laptop offline, token expired at the time).
"""
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from mindnest.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the sync service.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        _nightly_sync,
        trigger="cron",
        hour=settings.sync_hour,
        minute=0,
        id="nightly_sync",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _nightly_sync(engine) -> None:
    """
    Nightly job: push everything that is stale or failed last time.

    Idempotent: a run with nothing pending makes no requests.
    """
    from mindnest.sync.errors import SyncNotConfiguredError
    from mindnest.sync.service import SyncService

    logger.info("Nightly sync starting at %s", datetime.now(timezone.utc).isoformat())

    try:
        service = SyncService(engine, settings=get_settings())
        result = await service.sync_all()
    except SyncNotConfiguredError:
        logger.info("Nightly sync skipped: sync is not configured")
        return
    except Exception as exc:
        logger.error("Nightly sync failed: %s", exc)
        return

    if result.success:
        logger.info("Nightly sync done: %d items", result.success_items)
    else:
        logger.warning(
            "Nightly sync done with %d/%d failures (first: %s %s)",
            result.failed_items,
            result.total_items,
            result.error_type.value if result.error_type else "unknown",
            result.error_message,
        )
