"""Edits and deletes applied to part of a recurring series.

``THIS`` touches one occurrence through an :class:`EventException`,
``THIS_AND_FOLLOWING`` ends the series the day before the occurrence (and,
for edits, starts a new series there), ``ALL`` acts on the base event.
Events that do not recur ignore the scope.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlmodel import Session

from .calendar import AlreadyExists, CalendarEventStore, EventExceptionStore
from .errors import ValidationError
from .models import (
    CalendarEvent,
    EventCreate,
    EventException,
    EventUpdate,
    OccurrenceScope,
)

logger = logging.getLogger(__name__)

_TASK_FIELDS = {"participant_ids", "is_task", "xp_points", "is_required"}


def _require_args(
    event_id: Optional[int],
    occurrence_date: Optional[date],
    scope: Optional[OccurrenceScope],
) -> OccurrenceScope:
    if event_id is None:
        raise ValidationError("event_id cannot be null")
    if occurrence_date is None:
        raise ValidationError("occurrence_date cannot be null")
    if scope is None:
        raise ValidationError("scope cannot be null")
    return OccurrenceScope(scope)


def _derived_event(base: CalendarEvent, data: EventUpdate, recurring: bool) -> EventCreate:
    """Build the new event an edit of part of ``base``'s series creates."""
    fields = data.model_dump(exclude=_TASK_FIELDS)
    if not recurring:
        fields.update(
            recurring_type=None,
            recurring_interval=None,
            recurring_end_date=None,
            recurring_end_count=None,
        )
    is_task = base.is_task if data.is_task is None else data.is_task
    xp_points = data.xp_points
    if xp_points is None and is_task:
        xp_points = base.xp_points
    return EventCreate(
        **fields,
        family_id=base.family_id,
        created_by_id=base.created_by_id,
        participant_ids=(
            base.participant_ids if data.participant_ids is None else data.participant_ids
        ),
        is_task=is_task,
        xp_points=xp_points,
        is_required=base.is_required if data.is_required is None else data.is_required,
    )


class ScopedMutationEngine:
    def __init__(self, session: Session):
        self.events = CalendarEventStore(session)
        self.exceptions = EventExceptionStore(session)

    def delete(
        self, event_id: int, occurrence_date: date, scope: OccurrenceScope
    ) -> CalendarEvent:
        """Apply a scoped delete and return the event it targeted."""
        scope = _require_args(event_id, occurrence_date, scope)
        base = self.events.require(event_id)
        if not base.is_recurring:
            self.events.delete(event_id)
            return base

        if scope == OccurrenceScope.THIS:
            self._exclude(base, occurrence_date)
        elif scope == OccurrenceScope.THIS_AND_FOLLOWING:
            self.events.truncate(base, occurrence_date)
        else:
            self.events.delete(event_id)
        logger.info(
            "Deleted %s of event %s at %s", scope.value, event_id, occurrence_date
        )
        return base

    def update(
        self,
        event_id: int,
        occurrence_date: date,
        scope: OccurrenceScope,
        data: EventUpdate,
    ) -> CalendarEvent:
        """Apply a scoped edit and return the event now holding the edit."""
        scope = _require_args(event_id, occurrence_date, scope)
        base = self.events.require(event_id)
        if not base.is_recurring:
            return self.events.update(event_id, data)

        if scope != OccurrenceScope.THIS and data.recurring_type is None:
            raise ValidationError(f"recurring_type is required for scope {scope.value}")

        if scope == OccurrenceScope.THIS:
            result = self._replace(base, occurrence_date, data)
        elif scope == OccurrenceScope.THIS_AND_FOLLOWING:
            self.events.truncate(base, occurrence_date)
            result = self.events.create(_derived_event(base, data, recurring=True))
        else:
            result = self.events.update(event_id, data)
        logger.info(
            "Updated %s of event %s at %s -> event %s",
            scope.value,
            event_id,
            occurrence_date,
            result.id,
        )
        return result

    def _exception_for(self, base: CalendarEvent, occurrence_date: date) -> EventException:
        existing = self.exceptions.find(base.id, occurrence_date)
        if existing is not None:
            return existing
        return self.exceptions.try_insert(base.id, occurrence_date).row

    def _replace(
        self, base: CalendarEvent, occurrence_date: date, data: EventUpdate
    ) -> CalendarEvent:
        exception = self._exception_for(base, occurrence_date)
        old_modified_id = exception.modified_event_id

        replacement = self.events.create(_derived_event(base, data, recurring=False))
        exception.modified_event_id = replacement.id
        self.exceptions.save(exception)

        # Only now that the exception points at the replacement.
        if old_modified_id is not None:
            self.events.delete(old_modified_id)
        return replacement

    def _exclude(self, base: CalendarEvent, occurrence_date: date) -> None:
        existing = self.exceptions.find(base.id, occurrence_date)
        if existing is not None:
            modified_id = existing.modified_event_id
            self.exceptions.delete(existing)
            if modified_id is not None:
                self.events.delete(modified_id)

        result = self.exceptions.try_insert(base.id, occurrence_date)
        if isinstance(result, AlreadyExists) and not result.row.is_exclusion:
            exception = result.row
            modified_id = exception.modified_event_id
            exception.modified_event_id = None
            self.exceptions.save(exception)
            self.events.delete(modified_id)
