from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from sqlmodel import Session, select
from sqlalchemy.exc import IntegrityError

from .calendar import AlreadyExists, CalendarEventStore, Inserted, InsertResult
from .errors import ConcurrencyConflict, NotFoundError, ValidationError
from .members import MemberDirectory
from .models import TaskCompletion
from .recurrence import validate_occurrence_date
from .rewards import RewardService, RewardServiceError
from .time_utils import ensure_tz, get_now

logger = logging.getLogger(__name__)


def _localize(completion: Optional[TaskCompletion]) -> Optional[TaskCompletion]:
    if completion is not None:
        completion.completed_at = ensure_tz(completion.completed_at)
    return completion


class TaskCompletionStore:
    """CRUD helper for :class:`TaskCompletion` rows."""

    def __init__(self, session: Session):
        self.session = session

    def get(
        self, event_id: int, member_id: int, occurrence_date: date
    ) -> Optional[TaskCompletion]:
        stmt = select(TaskCompletion).where(
            (TaskCompletion.event_id == event_id)
            & (TaskCompletion.member_id == member_id)
            & (TaskCompletion.occurrence_date == occurrence_date)
        )
        return _localize(self.session.exec(stmt).first())

    def exists_for_occurrence(self, event_id: int, occurrence_date: date) -> bool:
        stmt = select(TaskCompletion.id).where(
            (TaskCompletion.event_id == event_id)
            & (TaskCompletion.occurrence_date == occurrence_date)
        )
        return self.session.exec(stmt).first() is not None

    def try_insert(
        self, event_id: int, member_id: int, occurrence_date: date
    ) -> InsertResult[TaskCompletion]:
        completion = TaskCompletion(
            event_id=event_id,
            member_id=member_id,
            occurrence_date=occurrence_date,
            completed_at=get_now(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(completion)
        except IntegrityError as exc:
            existing = self.get(event_id, member_id, occurrence_date)
            if existing is None:
                raise ConcurrencyConflict(
                    f"Could not record completion of event {event_id} on {occurrence_date}"
                ) from exc
            return AlreadyExists(existing)
        return Inserted(completion)

    def delete(self, completion: TaskCompletion) -> None:
        self.session.delete(completion)
        self.session.flush()

    def list_for_event(self, event_id: int) -> List[TaskCompletion]:
        stmt = (
            select(TaskCompletion)
            .where(TaskCompletion.event_id == event_id)
            .order_by(TaskCompletion.occurrence_date, TaskCompletion.id)
        )
        return [_localize(c) for c in self.session.exec(stmt).all()]

    def list_for_member(self, member_id: int) -> List[TaskCompletion]:
        stmt = (
            select(TaskCompletion)
            .where(TaskCompletion.member_id == member_id)
            .order_by(TaskCompletion.occurrence_date, TaskCompletion.id)
        )
        return [_localize(c) for c in self.session.exec(stmt).all()]


class CompletionTracker:
    """Per-occurrence completion of task events.

    Completion is shared: one participant's row completes the occurrence
    for everyone, but each member can only undo their own row.
    """

    def __init__(self, session: Session, members: MemberDirectory, rewards: RewardService):
        self.session = session
        self.events = CalendarEventStore(session)
        self.completions = TaskCompletionStore(session)
        self.members = members
        self.rewards = rewards

    def mark(self, event_id: int, member_id: int, occurrence_date: date) -> TaskCompletion:
        event = self.events.require(event_id)
        if not event.is_task:
            raise ValidationError("Event is not a task (is_task=false)")
        member = self.members.find_member(member_id)
        if member is None:
            raise NotFoundError(f"Member not found: {member_id}")
        if member.family_id != event.family_id:
            raise ValidationError("Member is not in the same family as the event")
        validate_occurrence_date(event, occurrence_date)

        existing = self.completions.get(event_id, member_id, occurrence_date)
        if existing is not None:
            return existing
        result = self.completions.try_insert(event_id, member_id, occurrence_date)
        if isinstance(result, AlreadyExists):
            return result.row

        xp_points = event.xp_points or 0
        if xp_points > 0:
            try:
                with self.session.begin_nested():
                    self.rewards.grant_food_reward(member_id, event_id, xp_points)
            except Exception:
                logger.exception(
                    "Failed to grant food for task completion: event=%s member=%s xp=%s",
                    event_id,
                    member_id,
                    xp_points,
                )
        logger.info(
            "Member %s completed event %s on %s", member_id, event_id, occurrence_date
        )
        return result.row

    def unmark(self, event_id: int, member_id: int, occurrence_date: date) -> None:
        event = self.events.require(event_id)
        completion = self.completions.get(event_id, member_id, occurrence_date)
        if completion is None:
            return

        xp_points = event.xp_points or 0
        if xp_points > 0:
            try:
                self.rewards.reclaim_food_reward(member_id, event_id, xp_points)
            except RewardServiceError as exc:
                raise ValidationError(f"Cannot undo task completion: {exc}") from exc
            except Exception as exc:
                logger.exception(
                    "Failed to reclaim food for task completion: event=%s member=%s xp=%s",
                    event_id,
                    member_id,
                    xp_points,
                )
                raise ValidationError(
                    "Cannot undo task completion: the reward could not be reclaimed"
                ) from exc

        self.completions.delete(completion)
        logger.info(
            "Member %s uncompleted event %s on %s", member_id, event_id, occurrence_date
        )

    def is_completed(self, event_id: int, occurrence_date: date) -> bool:
        return self.completions.exists_for_occurrence(event_id, occurrence_date)
