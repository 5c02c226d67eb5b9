"""ARQ worker for bestowal reconciliation, payout retries and notifications."""

from arq import cron
from libs.common.arq_config import BESTOWALS_QUEUE, get_redis_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


async def task_reconcile_stale_pending(ctx: dict):
    from services.bestowals_service.tasks import reconcile_stale_pending_bestowals

    logger.info("Running: reconcile_stale_pending_bestowals")
    await reconcile_stale_pending_bestowals()


async def task_retry_distributions(ctx: dict):
    from services.bestowals_service.tasks import retry_incomplete_distributions

    logger.info("Running: retry_incomplete_distributions")
    await retry_incomplete_distributions()


async def task_flush_notifications(ctx: dict):
    from services.bestowals_service.tasks import flush_notification_outbox

    logger.info("Running: flush_notification_outbox")
    await flush_notification_outbox()


class WorkerSettings:
    redis_settings = get_redis_settings()
    queue_name = BESTOWALS_QUEUE
    max_tries = 1
    job_timeout = 300

    functions = [
        task_reconcile_stale_pending,
        task_retry_distributions,
        task_flush_notifications,
    ]

    cron_jobs = [
        cron(
            task_reconcile_stale_pending,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
        cron(
            task_retry_distributions,
            minute={2, 7, 12, 17, 22, 27, 32, 37, 42, 47, 52, 57},
            run_at_startup=True,
        ),
        cron(
            task_flush_notifications,
            minute=set(range(60)),
            run_at_startup=True,
        ),
    ]
