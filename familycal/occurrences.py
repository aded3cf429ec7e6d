from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List

from sqlmodel import Session

from .calendar import CalendarEventStore, EventExceptionStore
from .errors import ValidationError
from .models import CalendarEvent, EventOccurrence, OccurrenceKind
from .recurrence import generate_instances, validate_range

# Within one series, what wins when two entries claim the same occurrence.
PRECEDENCE = {
    OccurrenceKind.MODIFIED: 3,
    OccurrenceKind.INSTANCE: 2,
    OccurrenceKind.BASE: 1,
}


def as_occurrence(
    event: CalendarEvent,
    kind: OccurrenceKind,
    occurrence_date: date | None = None,
    series_id: int | None = None,
) -> EventOccurrence:
    data = event.model_dump()
    data.update(
        occurrence_date=occurrence_date or event.start_datetime.date(),
        series_id=series_id,
        kind=kind,
    )
    return EventOccurrence.model_validate(data)


def _offer(slots: Dict[date, EventOccurrence], occurrence: EventOccurrence) -> None:
    current = slots.get(occurrence.occurrence_date)
    if current is None or PRECEDENCE[occurrence.kind] > PRECEDENCE[current.kind]:
        slots[occurrence.occurrence_date] = occurrence


def _in_range(value: datetime, range_start: datetime, range_end: datetime) -> bool:
    return range_start <= value <= range_end


def occurrences_in_range(
    session: Session, family_id: int, range_start: datetime, range_end: datetime
) -> List[EventOccurrence]:
    """Return every occurrence of the family's events in the range, sorted
    by start time.

    Single events overlapping the range are passed through.  Replacements
    of edited occurrences that start in range are included whether or not
    their series still reaches the range.  Each recurring series also
    contributes its generated instances and its base event when the base
    event starts in range but no instance covers that date.
    """
    if range_end < range_start:
        raise ValidationError("Range end cannot be before range start")

    events = CalendarEventStore(session)
    exceptions = EventExceptionStore(session)

    candidates = events.recurring_candidates(family_id, range_start, range_end)
    for base in candidates:
        validate_range(base.recurring_type, range_start, range_end)

    result = [
        as_occurrence(e, OccurrenceKind.SINGLE)
        for e in events.single_events_in_range(family_id, range_start, range_end)
    ]

    series: Dict[int, Dict[date, EventOccurrence]] = {}
    for exc, modified in exceptions.replacements_in_range(family_id, range_start, range_end):
        _offer(
            series.setdefault(exc.event_id, {}),
            as_occurrence(modified, OccurrenceKind.MODIFIED, exc.occurrence_date, exc.event_id),
        )

    excluded_by_event = exceptions.excluded_dates_for_events([base.id for base in candidates])
    for base in candidates:
        excluded = excluded_by_event.get(base.id, set())
        slots = series.setdefault(base.id, {})
        for instance in generate_instances(base, range_start, range_end, excluded):
            _offer(slots, instance)

        base_date = base.start_datetime.date()
        if (
            _in_range(base.start_datetime, range_start, range_end)
            and base_date not in excluded
            and (base.recurring_end_date is None or base_date <= base.recurring_end_date)
        ):
            _offer(slots, as_occurrence(base, OccurrenceKind.BASE, base_date, base.id))

    for slots in series.values():
        result.extend(slots.values())
    result.sort(key=lambda occurrence: occurrence.start_datetime)
    return result
