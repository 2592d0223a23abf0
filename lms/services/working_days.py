"""
Working-day calculator

Counts the days of a leave span that are charged against a balance: every
calendar day in [start, end] except weekend weekdays and holidays.
"""
from datetime import date, timedelta
from typing import AbstractSet, Iterable, Optional

from sqlalchemy.orm import Session

from lms.core.config import settings
from lms.core.exceptions import InvalidRangeError
from lms.services.holiday_service import get_holidays_in_range

WEEKEND_DAYS = settings.get_weekend_days()


def working_days(
    start: date,
    end: date,
    holidays: Iterable[date] = (),
    weekend: Optional[AbstractSet[int]] = None,
) -> int:
    """
    Inclusive count of working days between start and end.

    Raises:
        InvalidRangeError: end is before start
    """
    if end < start:
        raise InvalidRangeError(
            f"end date {end} is before start date {start}",
            details={"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
    weekend = WEEKEND_DAYS if weekend is None else weekend
    holiday_set = set(holidays)

    count = 0
    current = start
    while current <= end:
        if current.weekday() not in weekend and current not in holiday_set:
            count += 1
        current += timedelta(days=1)
    return count


def count_working_days(db: Session, start: date, end: date) -> int:
    """working_days() against the active holiday calendar."""
    return working_days(start, end, get_holidays_in_range(db, start, end))
