"""ARQ worker for settlement background tasks.

Run with: arq services.settlement_service.worker.WorkerSettings
"""

from arq import cron
from libs.common.arq_config import get_redis_settings, service_queue
from libs.common.logging import get_logger

logger = get_logger(__name__)


async def task_reconcile_tds_ledger(ctx: dict):
    """Remove TDS ledger rows left behind by failed settlement batches."""
    from services.settlement_service.tasks import reconcile_tds_ledger

    logger.info("Running: reconcile_tds_ledger")
    removed = await reconcile_tds_ledger()
    return {"removed": removed}


class WorkerSettings:
    """ARQ worker settings with cron job schedules."""

    redis_settings = get_redis_settings()
    queue_name = service_queue("settlement")

    functions = [task_reconcile_tds_ledger]

    cron_jobs = [
        # Hourly, at minute 15
        cron(task_reconcile_tds_ledger, minute=15, run_at_startup=True),
    ]
