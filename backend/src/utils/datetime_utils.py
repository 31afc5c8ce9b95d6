"""
Datetime utilities for consistent timezone handling across the ledger.

All persisted timestamps are timezone-aware UTC. Business dates (issue dates,
due dates, installment schedules) are plain `date` values.
"""

import logging
from datetime import datetime, timezone, timedelta, date
from typing import Optional

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime with UTC timezone
    """
    return datetime.now(timezone.utc)


def today() -> date:
    """Current business date (UTC)."""
    return utc_now().date()


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware UTC.

    Naive datetimes are assumed to already be UTC (SQLite drops tzinfo on
    round-trip).
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def add_days(start: date, days: int) -> date:
    """Return `start` shifted by a whole number of days."""
    return start + timedelta(days=days)


def add_months(start: date, months: int) -> date:
    """
    Return `start` shifted by calendar months.

    Days past the end of the target month are clamped to its last day, so
    2024-01-31 + 1 month is 2024-02-29. Always offset from the original start
    date rather than chaining, otherwise a clamped day would drift.
    """
    return start + relativedelta(months=months)
