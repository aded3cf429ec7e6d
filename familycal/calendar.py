from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Generic, Iterable, List, Optional, Set, Tuple, TypeVar, Union

from sqlmodel import Session, select
from sqlalchemy import delete, func, or_
from sqlalchemy.exc import IntegrityError

from .errors import ConcurrencyConflict, NotFoundError, ValidationError
from .members import Family
from .models import (
    CalendarEvent,
    EventCreate,
    EventException,
    EventFields,
    EventUpdate,
)
from .recurrence import default_end_date
from .time_utils import get_now

logger = logging.getLogger(__name__)

DEFAULT_TASK_XP = 1

T = TypeVar("T")


@dataclass
class Inserted(Generic[T]):
    row: T


@dataclass
class AlreadyExists(Generic[T]):
    row: T


InsertResult = Union[Inserted[T], AlreadyExists[T]]


def _validate_fields(fields: EventFields) -> None:
    if not fields.title or not fields.title.strip():
        raise ValidationError("Title is required")
    if fields.start_datetime is None:
        raise ValidationError("start_datetime is required")
    if fields.end_datetime is not None and fields.end_datetime < fields.start_datetime:
        raise ValidationError("end_datetime cannot be before start_datetime")
    if fields.recurring_type is None:
        return
    if fields.recurring_interval is not None and fields.recurring_interval < 1:
        raise ValidationError("recurring_interval must be at least 1")
    if fields.recurring_end_count is not None and fields.recurring_end_count < 1:
        raise ValidationError("recurring_end_count must be at least 1")
    if (
        fields.recurring_end_date is not None
        and fields.recurring_end_date < fields.start_datetime.date()
    ):
        raise ValidationError("recurring_end_date cannot be before the start date")


def _apply_recurrence(event: CalendarEvent, fields: EventFields) -> None:
    """Copy the recurrence from ``fields`` onto ``event``.

    A series given neither an end date nor an end count is bounded by the
    default horizon for its type, on update as well as on creation.
    """
    if fields.recurring_type is None:
        event.recurring_type = None
        event.recurring_interval = None
        event.recurring_end_date = None
        event.recurring_end_count = None
        return
    end_date = fields.recurring_end_date
    if end_date is None and fields.recurring_end_count is None:
        end_date = default_end_date(fields.recurring_type, fields.start_datetime.date())
    event.recurring_type = fields.recurring_type
    event.recurring_interval = fields.recurring_interval or 1
    event.recurring_end_date = end_date
    event.recurring_end_count = fields.recurring_end_count


def _participants(ids: Optional[Iterable[int]]) -> List[int]:
    return sorted(set(ids or ()))


class CalendarEventStore:
    """CRUD helper for :class:`CalendarEvent` rows within one session."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, event_id: int) -> Optional[CalendarEvent]:
        return self.session.get(CalendarEvent, event_id)

    def require(self, event_id: int) -> CalendarEvent:
        event = self.get(event_id)
        if event is None:
            raise NotFoundError(f"Calendar event not found: {event_id}")
        return event

    def create(self, data: EventCreate) -> CalendarEvent:
        _validate_fields(data)
        if self.session.get(Family, data.family_id) is None:
            raise NotFoundError(f"Family not found: {data.family_id}")
        is_task = bool(data.is_task)
        if not is_task and data.xp_points:
            raise ValidationError("xp_points can only be set when is_task is true")
        if not is_task:
            xp_points = None
        elif data.xp_points is None:
            xp_points = DEFAULT_TASK_XP
        else:
            xp_points = data.xp_points

        now = get_now()
        event = CalendarEvent(
            family_id=data.family_id,
            category_id=data.category_id,
            title=data.title.strip(),
            description=data.description,
            start_datetime=data.start_datetime,
            end_datetime=data.end_datetime,
            is_all_day=data.is_all_day,
            location=data.location,
            created_by_id=data.created_by_id,
            participant_ids=_participants(data.participant_ids),
            is_task=is_task,
            xp_points=xp_points,
            is_required=True if data.is_required is None else data.is_required,
            created_at=now,
            updated_at=now,
        )
        _apply_recurrence(event, data)
        self.session.add(event)
        self.session.flush()
        logger.info("Created calendar event %s (%s)", event.id, event.title)
        return event

    def update(self, event_id: int, data: EventUpdate) -> CalendarEvent:
        event = self.require(event_id)
        _validate_fields(data)
        is_task = data.is_task if data.is_task is not None else event.is_task
        if not is_task and data.xp_points:
            raise ValidationError("xp_points can only be set when is_task is true")

        event.category_id = data.category_id
        event.title = data.title.strip()
        event.description = data.description
        event.start_datetime = data.start_datetime
        event.end_datetime = data.end_datetime
        event.is_all_day = data.is_all_day
        event.location = data.location
        if data.participant_ids is not None:
            event.participant_ids = _participants(data.participant_ids)
        _apply_recurrence(event, data)

        if data.is_task is not None:
            event.is_task = data.is_task
            if not data.is_task:
                event.xp_points = None
            elif data.xp_points is None and event.xp_points is None:
                event.xp_points = DEFAULT_TASK_XP
        if data.xp_points is not None:
            event.xp_points = data.xp_points if event.is_task else None
        if data.is_required is not None:
            event.is_required = data.is_required

        event.updated_at = get_now()
        self.session.add(event)
        self.session.flush()
        logger.info("Updated calendar event %s", event.id)
        return event

    def delete(self, event_id: int) -> bool:
        """Delete an event together with the replacements of its occurrences.

        Exceptions and completions go with it through ``ON DELETE CASCADE``.
        """
        event = self.get(event_id)
        if event is None:
            return False
        modified_ids = [
            mid
            for mid in self.session.exec(
                select(EventException.modified_event_id).where(
                    EventException.event_id == event_id,
                    EventException.modified_event_id.is_not(None),
                )
            ).all()
            if mid is not None
        ]
        if modified_ids:
            self.session.exec(delete(CalendarEvent).where(CalendarEvent.id.in_(modified_ids)))
        self.session.delete(event)
        self.session.flush()
        logger.info("Deleted calendar event %s", event_id)
        return True

    def truncate(self, event: CalendarEvent, occurrence_date: date) -> None:
        """End ``event``'s series on the day before ``occurrence_date``.

        Exceptions from ``occurrence_date`` on, and the replacements they
        point to, go with the cut-off occurrences.
        """
        later = self.session.exec(
            select(EventException).where(
                EventException.event_id == event.id,
                EventException.occurrence_date >= occurrence_date,
            )
        ).all()
        modified_ids = [exc.modified_event_id for exc in later if not exc.is_exclusion]
        for exc in later:
            self.session.delete(exc)
        self.session.flush()
        if modified_ids:
            self.session.exec(delete(CalendarEvent).where(CalendarEvent.id.in_(modified_ids)))

        event.recurring_end_date = occurrence_date - timedelta(days=1)
        event.updated_at = get_now()
        self.session.add(event)
        self.session.flush()

    def single_events_in_range(
        self, family_id: int, range_start: datetime, range_end: datetime
    ) -> List[CalendarEvent]:
        """Non-recurring events overlapping the range, minus replacements of
        single occurrences."""
        replacements = select(EventException.modified_event_id).where(
            EventException.modified_event_id.is_not(None)
        )
        stmt = (
            select(CalendarEvent)
            .where(
                CalendarEvent.family_id == family_id,
                CalendarEvent.recurring_type.is_(None),
                CalendarEvent.start_datetime <= range_end,
                func.coalesce(CalendarEvent.end_datetime, CalendarEvent.start_datetime)
                >= range_start,
                CalendarEvent.id.not_in(replacements),
            )
            .order_by(CalendarEvent.start_datetime)
        )
        return list(self.session.exec(stmt).all())

    def recurring_candidates(
        self, family_id: int, range_start: datetime, range_end: datetime
    ) -> List[CalendarEvent]:
        """Recurring events whose series could produce an occurrence in range."""
        stmt = (
            select(CalendarEvent)
            .where(
                CalendarEvent.family_id == family_id,
                CalendarEvent.recurring_type.is_not(None),
                CalendarEvent.start_datetime <= range_end,
                or_(
                    CalendarEvent.recurring_end_date.is_(None),
                    CalendarEvent.recurring_end_date >= range_start.date(),
                ),
            )
            .order_by(CalendarEvent.start_datetime)
        )
        return list(self.session.exec(stmt).all())


class EventExceptionStore:
    """Lookups and writes for :class:`EventException` rows.

    Range reads are batched so that a range query costs a fixed number
    of statements however many series it touches.
    """

    def __init__(self, session: Session):
        self.session = session

    def find(self, event_id: int, occurrence_date: date) -> Optional[EventException]:
        return self.session.exec(
            select(EventException).where(
                EventException.event_id == event_id,
                EventException.occurrence_date == occurrence_date,
            )
        ).first()

    def replacements_in_range(
        self, family_id: int, range_start: datetime, range_end: datetime
    ) -> List[Tuple[EventException, CalendarEvent]]:
        """Exceptions whose replacement event starts within the range, paired
        with that event.

        Found through the replacement, not the series, so a replacement
        moved past the end of its series still shows.
        """
        stmt = (
            select(EventException, CalendarEvent)
            .join(CalendarEvent, CalendarEvent.id == EventException.modified_event_id)
            .where(
                CalendarEvent.family_id == family_id,
                CalendarEvent.start_datetime >= range_start,
                CalendarEvent.start_datetime <= range_end,
            )
            .order_by(CalendarEvent.start_datetime)
        )
        return list(self.session.exec(stmt).all())

    def excluded_dates_for_events(self, event_ids: List[int]) -> Dict[int, Set[date]]:
        result: Dict[int, Set[date]] = {}
        if not event_ids:
            return result
        rows = self.session.exec(
            select(EventException.event_id, EventException.occurrence_date).where(
                EventException.event_id.in_(event_ids)
            )
        ).all()
        for event_id, occurrence_date in rows:
            result.setdefault(event_id, set()).add(occurrence_date)
        return result

    def try_insert(
        self,
        event_id: int,
        occurrence_date: date,
        modified_event_id: Optional[int] = None,
    ) -> InsertResult[EventException]:
        """Insert an exception, or report the one a concurrent writer stored.

        The insert runs in a savepoint so that losing the uniqueness race
        leaves the surrounding transaction usable.
        """
        exception = EventException(
            event_id=event_id,
            occurrence_date=occurrence_date,
            modified_event_id=modified_event_id,
            created_at=get_now(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(exception)
        except IntegrityError as exc:
            existing = self.find(event_id, occurrence_date)
            if existing is None:
                raise ConcurrencyConflict(
                    f"Failed to create exception for event {event_id} on "
                    f"{occurrence_date} and could not find an existing one"
                ) from exc
            logger.warning(
                "Exception for event %s on %s already existed; reusing it",
                event_id,
                occurrence_date,
            )
            return AlreadyExists(existing)
        return Inserted(exception)

    def save(self, exception: EventException) -> None:
        self.session.add(exception)
        self.session.flush()

    def delete(self, exception: EventException) -> None:
        self.session.delete(exception)
        self.session.flush()
