"""Food rewards handed out for completed tasks.

A completed task grants one unfed food item per XP point.  Undoing a
completion has to take the same amount back out of the member's unfed
food; food that has already been fed to the pet can't be reclaimed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from sqlmodel import Field, Session, SQLModel, select
from sqlalchemy import Column, DateTime, ForeignKey, Integer, func

from .time_utils import get_now


class RewardServiceError(Exception):
    """The reward side effect of a completion could not be applied."""


class RewardService(Protocol):
    def grant_food_reward(self, member_id: int, event_id: int, xp_points: int) -> None: ...

    def reclaim_food_reward(self, member_id: int, event_id: int, xp_points: int) -> None: ...


class CollectedFood(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    member_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("familymember.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    event_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer, ForeignKey("calendarevent.id", ondelete="SET NULL"), nullable=True
        ),
    )
    xp_amount: int = 1
    is_fed: bool = False
    collected_at: datetime = Field(
        default_factory=get_now, sa_column=Column(DateTime(timezone=False), nullable=False)
    )
    fed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=False), nullable=True)
    )


class FoodRewardStore:
    """:class:`RewardService` backed by :class:`CollectedFood` rows."""

    def __init__(self, session: Session):
        self.session = session

    def grant_food_reward(self, member_id: int, event_id: int, xp_points: int) -> None:
        if xp_points <= 0:
            return
        now = get_now()
        for _ in range(xp_points):
            self.session.add(
                CollectedFood(
                    member_id=member_id, event_id=event_id, xp_amount=1, collected_at=now
                )
            )
        self.session.flush()

    def reclaim_food_reward(self, member_id: int, event_id: int, xp_points: int) -> None:
        """Remove ``xp_points`` worth of unfed food, oldest first.

        Any unfed food counts, not only food from ``event_id``.
        """
        if xp_points <= 0:
            return
        available = self.unfed_count(member_id)
        if available < xp_points:
            raise RewardServiceError(
                f"Not enough unfed food to undo this task: {xp_points} needed, "
                f"only {available} available"
            )
        remaining = xp_points
        for food in self._unfed(member_id):
            if remaining <= 0:
                break
            remaining -= food.xp_amount
            self.session.delete(food)
        self.session.flush()

    def feed(self, member_id: int, amount: int) -> int:
        """Mark up to ``amount`` XP of unfed food as fed; return XP fed."""
        fed = 0
        now = get_now()
        for food in self._unfed(member_id):
            if fed >= amount:
                break
            food.is_fed = True
            food.fed_at = now
            self.session.add(food)
            fed += food.xp_amount
        self.session.flush()
        return fed

    def unfed_count(self, member_id: int) -> int:
        total = self.session.exec(
            select(func.coalesce(func.sum(CollectedFood.xp_amount), 0)).where(
                CollectedFood.member_id == member_id,
                CollectedFood.is_fed == False,  # noqa: E712
            )
        ).one()
        return int(total)

    def _unfed(self, member_id: int):
        return self.session.exec(
            select(CollectedFood)
            .where(
                CollectedFood.member_id == member_id,
                CollectedFood.is_fed == False,  # noqa: E712
            )
            .order_by(CollectedFood.collected_at, CollectedFood.id)
        ).all()
