from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Callable, Iterator, List, Optional

from sqlmodel import Session

from .calendar import CalendarEventStore
from .completions import CompletionTracker, TaskCompletionStore
from .members import MemberStore
from .models import (
    CalendarEvent,
    EventCreate,
    EventOccurrence,
    EventUpdate,
    OccurrenceScope,
    TaskCompletion,
)
from .occurrences import occurrences_in_range
from .recurrence import add_months
from .rewards import FoodRewardStore, RewardService
from .scoped import ScopedMutationEngine
from .time_utils import get_now

logger = logging.getLogger(__name__)

UPCOMING_MONTHS = 3

RewardFactory = Callable[[Session], RewardService]
ChangeListener = Callable[[int], None]


class CalendarService:
    """Entry point for calendar reads and writes.

    Every call is one unit of work: it opens a session, commits once at the
    end and rolls back if anything raises.  After a write commits, every
    ``on_change`` listener is called with the affected family id so cached
    views of that family can be dropped.
    """

    def __init__(
        self,
        engine,
        rewards: RewardFactory = FoodRewardStore,
        on_change: Optional[ChangeListener] = None,
    ):
        self.engine = engine
        self.rewards = rewards
        self.listeners: List[ChangeListener] = [on_change] if on_change else []

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as session:
            yield session
            session.commit()

    def _changed(self, family_id: int) -> None:
        for listener in self.listeners:
            listener(family_id)

    # Reads

    def occurrences_in_range(
        self, family_id: int, start: datetime, end: datetime
    ) -> List[EventOccurrence]:
        with Session(self.engine) as session:
            return occurrences_in_range(session, family_id, start, end)

    def upcoming_occurrences(
        self, family_id: int, now: Optional[datetime] = None
    ) -> List[EventOccurrence]:
        start = now or get_now().replace(tzinfo=None)
        return self.occurrences_in_range(family_id, start, add_months(start, UPCOMING_MONTHS))

    def get_event(self, event_id: int) -> CalendarEvent:
        with Session(self.engine) as session:
            return CalendarEventStore(session).require(event_id)

    # Plain event writes

    def create_event(self, data: EventCreate) -> CalendarEvent:
        with self._unit_of_work() as session:
            event = CalendarEventStore(session).create(data)
        self._changed(event.family_id)
        return event

    def update_event(self, event_id: int, data: EventUpdate) -> CalendarEvent:
        with self._unit_of_work() as session:
            event = CalendarEventStore(session).update(event_id, data)
        self._changed(event.family_id)
        return event

    def delete_event(self, event_id: int) -> None:
        with self._unit_of_work() as session:
            store = CalendarEventStore(session)
            family_id = store.require(event_id).family_id
            store.delete(event_id)
        self._changed(family_id)

    # Scoped writes

    def update_event_with_scope(
        self,
        event_id: int,
        occurrence_date: date,
        scope: OccurrenceScope,
        data: EventUpdate,
    ) -> CalendarEvent:
        with self._unit_of_work() as session:
            event = ScopedMutationEngine(session).update(event_id, occurrence_date, scope, data)
        self._changed(event.family_id)
        return event

    def delete_event_with_scope(
        self, event_id: int, occurrence_date: date, scope: OccurrenceScope
    ) -> None:
        with self._unit_of_work() as session:
            target = ScopedMutationEngine(session).delete(event_id, occurrence_date, scope)
            family_id = target.family_id
        self._changed(family_id)

    # Task completion

    def _tracker(self, session: Session) -> CompletionTracker:
        return CompletionTracker(session, MemberStore(session), self.rewards(session))

    def mark_task_completed(
        self, event_id: int, member_id: int, occurrence_date: date
    ) -> TaskCompletion:
        with self._unit_of_work() as session:
            completion = self._tracker(session).mark(event_id, member_id, occurrence_date)
        return completion

    def unmark_task_completed(
        self, event_id: int, member_id: int, occurrence_date: date
    ) -> None:
        with self._unit_of_work() as session:
            self._tracker(session).unmark(event_id, member_id, occurrence_date)

    def is_task_completed(self, event_id: int, occurrence_date: date) -> bool:
        with Session(self.engine) as session:
            return self._tracker(session).is_completed(event_id, occurrence_date)

    def task_completions(self, event_id: int) -> List[TaskCompletion]:
        with Session(self.engine) as session:
            return TaskCompletionStore(session).list_for_event(event_id)

    def task_completions_for_member(self, member_id: int) -> List[TaskCompletion]:
        with Session(self.engine) as session:
            return TaskCompletionStore(session).list_for_member(member_id)
