"""Datetime utilities for timezone-aware UTC timestamps and business dates.

Usage:
    from libs.common.datetime_utils import utc_now

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
"""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from libs.common.config import get_settings


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime.

    This replaces the deprecated datetime.utcnow() which returns naive datetimes.
    Always use this for timestamps in the database.
    """
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def business_date(now: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar date of ``now`` in the business timezone (``Settings.TIMEZONE``)."""
    tz = ZoneInfo(tz_name or get_settings().TIMEZONE)
    return ensure_aware(now).astimezone(tz).date()
