"""Recurrence arithmetic and occurrence expansion.

Everything here is pure: no sessions, no clocks.  Stepping is calendar
aware.  Monthly and yearly steps clamp to the last day of a shorter month
and always step from the previous occurrence, so a series starting on
January 31st continues on February 29th (in a leap year) and then on the
29th of each following month.
"""

from __future__ import annotations

import calendar as cal
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, TypeVar

from .errors import RangeTooLargeError, ValidationError
from .models import EventOccurrence, EventRecord, OccurrenceKind, RecurringType

logger = logging.getLogger(__name__)

# Safety bounds against degenerate patterns.  The generator bound is well
# above the most occurrences a validated range can hold (366 daily ones).
GENERATION_MAX_ITERATIONS = 1000
VALIDATION_MAX_ITERATIONS = 10000

MAX_RANGE_DAYS = {
    RecurringType.DAILY: 365,
    RecurringType.WEEKLY: 730,
    RecurringType.MONTHLY: 1095,
    RecurringType.YEARLY: 3650,
}

DEFAULT_HORIZON_YEARS = {
    RecurringType.DAILY: 1,
    RecurringType.WEEKLY: 2,
    RecurringType.MONTHLY: 3,
    RecurringType.YEARLY: 10,
}

D = TypeVar("D", date, datetime)


def add_months(value: D, months: int) -> D:
    """Add months to a date or datetime, clamping to the month's last day."""
    year = value.year + (value.month - 1 + months) // 12
    month = (value.month - 1 + months) % 12 + 1
    day = min(value.day, cal.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_occurrence(current: D, rtype: RecurringType, interval: int = 1) -> D:
    if rtype == RecurringType.DAILY:
        return current + timedelta(days=interval)
    if rtype == RecurringType.WEEKLY:
        return current + timedelta(weeks=interval)
    if rtype == RecurringType.MONTHLY:
        return add_months(current, interval)
    if rtype == RecurringType.YEARLY:
        return add_months(current, 12 * interval)
    raise ValueError(f"Unsupported recurring type: {rtype}")


def _interval(event: EventRecord) -> int:
    interval = 1 if event.recurring_interval is None else event.recurring_interval
    if interval < 1:
        raise ValidationError(f"Recurring interval must be at least 1, got {interval}")
    return interval


def default_end_date(rtype: RecurringType, start: date) -> date:
    """Return the bounded end date given to a series created without one."""
    return add_months(start, 12 * DEFAULT_HORIZON_YEARS[rtype])


def validate_range(
    rtype: Optional[RecurringType], range_start: datetime, range_end: datetime
) -> None:
    """Reject ranges longer than ``rtype`` allows."""
    if rtype is None:
        return
    requested = (range_end - range_start).days
    max_days = MAX_RANGE_DAYS.get(rtype, 365)
    if requested > max_days:
        raise RangeTooLargeError(rtype, max_days, requested)


def _fast_forward(
    current: datetime, rtype: RecurringType, interval: int, target: datetime
) -> Optional[datetime]:
    """Return the first occurrence at or after ``target``.

    Fixed-length steps are skipped arithmetically.  Month based steps are
    walked one at a time because clamping makes them path dependent.
    ``None`` means the iteration cap ran out first.
    """
    if rtype in (RecurringType.DAILY, RecurringType.WEEKLY):
        step = timedelta(days=interval * (7 if rtype == RecurringType.WEEKLY else 1))
        steps = -((current - target) // step)
        return current + steps * step
    for _ in range(GENERATION_MAX_ITERATIONS):
        if current >= target:
            return current
        current = next_occurrence(current, rtype, interval)
    return current if current >= target else None


def _instance_of(base: EventRecord, start: datetime, end: Optional[datetime]) -> EventOccurrence:
    data = base.model_dump()
    data.update(
        start_datetime=start,
        end_datetime=end,
        recurring_type=None,
        recurring_interval=None,
        recurring_end_date=None,
        recurring_end_count=None,
        occurrence_date=start.date(),
        series_id=base.id,
        kind=OccurrenceKind.INSTANCE,
    )
    return EventOccurrence.model_validate(data)


def generate_instances(
    base: EventRecord,
    range_start: datetime,
    range_end: datetime,
    excluded_dates: Iterable[date] = (),
) -> List[EventOccurrence]:
    """Expand ``base`` into its instances within ``[range_start, range_end]``.

    Occurrences on ``excluded_dates`` are skipped and do not count towards
    ``recurring_end_count``.  The caller is expected to have checked the
    range length with :func:`validate_range`.
    """
    rtype = base.recurring_type
    if rtype is None:
        raise ValueError("generate_instances requires a recurring event")
    interval = _interval(base)
    excluded = set(excluded_dates)
    duration = (
        base.end_datetime - base.start_datetime if base.end_datetime is not None else None
    )

    current: Optional[datetime] = base.start_datetime
    if current < range_start:
        current = _fast_forward(current, rtype, interval, range_start)
        if current is None:
            logger.warning(
                "Gave up fast-forwarding event %s to %s after %d steps",
                base.id,
                range_start,
                GENERATION_MAX_ITERATIONS,
            )
            return []

    instances: List[EventOccurrence] = []
    for _ in range(GENERATION_MAX_ITERATIONS):
        if current > range_end:
            break
        if base.recurring_end_date is not None and current.date() > base.recurring_end_date:
            break
        if base.recurring_end_count is not None and len(instances) >= base.recurring_end_count:
            break
        if current.date() not in excluded:
            end = current + duration if duration is not None else None
            instances.append(_instance_of(base, current, end))
        current = next_occurrence(current, rtype, interval)
    else:
        logger.warning(
            "Stopped expanding event %s after %d iterations",
            base.id,
            GENERATION_MAX_ITERATIONS,
        )
    return instances


def validate_occurrence_date(event: EventRecord, occurrence_date: date) -> None:
    """Raise :class:`ValidationError` unless ``occurrence_date`` is on the
    event's pattern."""
    if occurrence_date is None:
        raise ValidationError("Occurrence date cannot be null")
    start = event.start_datetime.date()
    if event.recurring_type is None:
        if occurrence_date != start:
            raise ValidationError(
                f"Occurrence date {occurrence_date} does not match event start date {start}"
            )
        return

    end_date = event.recurring_end_date
    if end_date is not None and occurrence_date > end_date:
        raise ValidationError(
            f"Occurrence date {occurrence_date} is after recurring end date {end_date}"
        )

    interval = _interval(event)
    current = start
    for _ in range(VALIDATION_MAX_ITERATIONS):
        if current == occurrence_date:
            return
        if current > occurrence_date:
            break
        current = next_occurrence(current, event.recurring_type, interval)
        if end_date is not None and current > end_date:
            break
    else:
        logger.warning(
            "Occurrence validation for event %s stopped after %d steps",
            event.id,
            VALIDATION_MAX_ITERATIONS,
        )
    raise ValidationError(
        f"Occurrence date {occurrence_date} does not match the recurring pattern "
        f"for event starting {start}"
    )


def is_valid_occurrence(event: EventRecord, occurrence_date: date) -> bool:
    try:
        validate_occurrence_date(event, occurrence_date)
    except ValidationError:
        return False
    return True
