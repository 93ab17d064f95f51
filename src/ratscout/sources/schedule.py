"""
Schedule derivation — which pickup bucket applies today (or tomorrow).

Computed locally from settings; nothing is fetched. Weekdays use Python's
numbering, Monday = 0.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from ratscout.models.snapshot import ScheduleInfo
from ratscout.settings import DEFAULTS
from ratscout.sources.base import FetchContext

logger = logging.getLogger("ratscout.sources.schedule")

BUCKET_KEYS = (("A", "schedule_days_a"), ("B", "schedule_days_b"), ("C", "schedule_days_c"))
BUCKET_LABELS = {"A": "organic", "B": "recycling", "C": "residual"}


def parse_days(csv: str) -> frozenset[int]:
    days = set()
    for token in csv.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            day = int(token)
        except ValueError:
            logger.warning("Ignoring non-numeric weekday %r", token)
            continue
        if 0 <= day <= 6:
            days.add(day)
        else:
            logger.warning("Ignoring out-of-range weekday %d", day)
    return frozenset(days)


def derive_schedule(
    buckets: Sequence[tuple[str, frozenset[int]]],
    cutoff_hour: int,
    local_time: datetime,
) -> Optional[ScheduleInfo]:
    """Return the first bucket containing the evaluated weekday.

    At or after ``cutoff_hour`` today's pickup is considered done and
    tomorrow is evaluated instead.
    """
    if local_time.hour >= cutoff_hour:
        day, weekday = "tomorrow", (local_time + timedelta(days=1)).weekday()
    else:
        day, weekday = "today", local_time.weekday()
    for code, days in buckets:
        if weekday in days:
            return ScheduleInfo(code=code, day=day)
    return None


class ScheduleDeriver:
    def derive(self, context: FetchContext) -> Optional[ScheduleInfo]:
        settings = context.settings
        buckets = [(code, parse_days(settings.get(key))) for code, key in BUCKET_KEYS]
        cutoff = settings.get_int("schedule_cutoff_hour")
        if cutoff is None:
            logger.warning("Invalid schedule_cutoff_hour, using %s", DEFAULTS["schedule_cutoff_hour"])
            cutoff = int(DEFAULTS["schedule_cutoff_hour"])
        return derive_schedule(buckets, cutoff, context.local_time)
