# equiplend/scheduler/jobs.py
import logging
from datetime import datetime, timezone

from equiplend.services.notifications import NotificationDispatcher

logger = logging.getLogger("scheduler_jobs")


async def retry_failed_notifications(dispatcher: NotificationDispatcher):
    """Deliver outbox entries that are still pending or failed below the attempt limit."""
    now_utc = datetime.now(timezone.utc)
    logger.info(f"Running retry_failed_notifications job at {now_utc}")
    try:
        summary = await dispatcher.retry_failed()
    except Exception:
        # the next run picks the same entries up again
        logger.error("Notification retry job failed.", exc_info=True)
        return None
    logger.info(f"Job finished. Delivered: {summary['delivered']}, Failed: {summary['failed']}, "
                f"Skipped: {summary['skipped']}")
    return summary
