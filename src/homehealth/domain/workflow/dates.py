from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from src.homehealth.domain.models.task import TaskStatus

# Statuses in which a visit still has to happen.
OPEN_VISIT_STATUSES = frozenset({TaskStatus.SCHEDULED, TaskStatus.IN_PROGRESS})


def local_date(now: datetime, tz: Optional[str] = None) -> date:
    """Return the calendar day of ``now`` in the agency timezone.

    Naive datetimes are treated as UTC.
    """

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if tz:
        now = now.astimezone(ZoneInfo(tz))
    return now.date()


def is_overdue(scheduled_date: date, status: TaskStatus, now: datetime, tz: Optional[str] = None) -> bool:
    """A visit is overdue when its day has passed and it has not been executed."""

    if status not in OPEN_VISIT_STATUSES:
        return False
    return scheduled_date < local_date(now, tz)


def is_due_today(scheduled_date: date, status: TaskStatus, now: datetime, tz: Optional[str] = None) -> bool:
    if status != TaskStatus.SCHEDULED:
        return False
    return scheduled_date == local_date(now, tz)


def is_missed(
    scheduled_date: date,
    status: TaskStatus,
    actual_start_time: Optional[datetime],
    now: datetime,
    *,
    grace_days: int,
    tz: Optional[str] = None,
) -> bool:
    """True when a never-started visit is more than ``grace_days`` past due."""

    if status != TaskStatus.SCHEDULED or actual_start_time is not None:
        return False
    return scheduled_date + timedelta(days=grace_days) < local_date(now, tz)


def minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    if start is None or end is None:
        return None
    return max(0, int((end - start).total_seconds() // 60))
