# FILE: carelog/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date
from zoneinfo import ZoneInfo

from carelog.core.config import settings

FACILITY_TZ = ZoneInfo(settings.FACILITY_TZ)


def now_facility() -> datetime:
    """
    Returns a *naive* datetime representing facility-local wall time,
    truncated to whole seconds.
    Naive because the DATETIME columns are naive; whole seconds because MySQL
    DATETIME drops fractions and the slot writes compare stamps for equality.
    """
    return datetime.now(FACILITY_TZ).replace(tzinfo=None, microsecond=0)


def today_facility() -> date:
    return now_facility().date()
