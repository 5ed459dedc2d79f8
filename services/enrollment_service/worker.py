"""ARQ worker for enrollment background tasks.

Run with: arq services.enrollment_service.worker.WorkerSettings
"""

from arq import cron
from libs.common.arq_config import get_redis_settings, service_queue
from libs.common.logging import get_logger

logger = get_logger(__name__)


async def task_sweep_enrollment_risk(ctx: dict):
    """Recompute risk categories for all active enrollments."""
    from services.enrollment_service.tasks import sweep_enrollment_risk

    logger.info("Running: sweep_enrollment_risk")
    await sweep_enrollment_risk()


class WorkerSettings:
    """ARQ worker settings with cron job schedules."""

    redis_settings = get_redis_settings()
    queue_name = service_queue("enrollment")

    functions = [task_sweep_enrollment_risk]

    cron_jobs = [
        # Daily, 02:30 UTC (08:00 IST) before operators start their day
        cron(
            task_sweep_enrollment_risk,
            hour=2,
            minute=30,
            run_at_startup=False,
        ),
    ]
