"""ARQ worker configuration shared by the service workers.

Each service runs its own worker on its own queue so the enrollment sweep
and the settlement reconciliation never pick up each other's jobs.
"""

from arq.connections import RedisSettings
from libs.common.config import get_settings


def get_redis_settings() -> RedisSettings:
    """RedisSettings from REDIS_URL; ``rediss://`` enables TLS."""
    return RedisSettings.from_dsn(get_settings().REDIS_URL)


def service_queue(service: str) -> str:
    return f"arq:{service}"
