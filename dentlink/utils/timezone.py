# FILE: dentlink/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date
from zoneinfo import ZoneInfo

from dentlink.core.config import settings

LOCAL_TZ = ZoneInfo(settings.TIMEZONE)


def now_local() -> datetime:
    """
    Returns a *naive* datetime in the platform timezone.
    Used for document numbers and deadlines shown to users.
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()


def now_db() -> datetime:
    """Always store naive UTC in DATETIME columns."""
    return datetime.utcnow()
