from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlmodel import Column, Field, SQLModel
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, UniqueConstraint

from .time_utils import get_now


class RecurringType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class OccurrenceScope(str, Enum):
    THIS = "THIS"
    THIS_AND_FOLLOWING = "THIS_AND_FOLLOWING"
    ALL = "ALL"


class OccurrenceKind(str, Enum):
    """How an :class:`EventOccurrence` came to be in a range result."""

    SINGLE = "SINGLE"
    BASE = "BASE"
    INSTANCE = "INSTANCE"
    MODIFIED = "MODIFIED"


class EventFields(SQLModel):
    """Fields an edit request may set on an event."""

    category_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    # Naive wall-clock times.
    start_datetime: datetime = Field(
        sa_column=Column(DateTime(timezone=False), index=True, nullable=False)
    )
    end_datetime: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=False), nullable=True)
    )
    is_all_day: bool = False
    location: Optional[str] = None
    recurring_type: Optional[RecurringType] = None
    recurring_interval: Optional[int] = None
    recurring_end_date: Optional[date] = None
    recurring_end_count: Optional[int] = None


class EventCreate(EventFields):
    family_id: int
    created_by_id: Optional[int] = None
    participant_ids: Optional[List[int]] = None
    is_task: bool = False
    xp_points: Optional[int] = None
    is_required: Optional[bool] = None


class EventUpdate(EventFields):
    """Replacement field set for an update.

    ``None`` for ``participant_ids``, ``is_task``, ``xp_points`` or
    ``is_required`` leaves the stored value alone; every other field is
    replaced, including clearing the recurrence when ``recurring_type`` is
    ``None``.
    """

    participant_ids: Optional[List[int]] = None
    is_task: Optional[bool] = None
    xp_points: Optional[int] = None
    is_required: Optional[bool] = None


class EventRecord(EventFields):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("family.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    created_by_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer, ForeignKey("familymember.id", ondelete="SET NULL"), nullable=True
        ),
    )
    is_task: bool = False
    xp_points: Optional[int] = None
    is_required: bool = True
    participant_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=get_now, sa_column=Column(DateTime(timezone=False), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=get_now, sa_column=Column(DateTime(timezone=False), nullable=False)
    )

    @property
    def is_recurring(self) -> bool:
        return self.recurring_type is not None


class CalendarEvent(EventRecord, table=True):
    """A stored event: a single event, a recurring base event, or the
    standalone replacement for one occurrence of a series."""


class EventOccurrence(EventRecord):
    """One entry of a range result.

    Instances are never stored; they carry the base event's ``id`` and have
    their recurrence fields cleared.  ``series_id`` names the recurring base
    event an instance, a modified occurrence or a base anchor belongs to.
    """

    occurrence_date: date
    series_id: Optional[int] = None
    kind: OccurrenceKind = OccurrenceKind.SINGLE


class EventException(SQLModel, table=True):
    """Override or exclusion of exactly one occurrence of a base event.

    Without ``modified_event_id`` the occurrence is deleted; with it the
    occurrence is replaced by that standalone event.
    """

    __table_args__ = (
        UniqueConstraint("event_id", "occurrence_date", name="uq_eventexception_occurrence"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("calendarevent.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    occurrence_date: date
    modified_event_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer, ForeignKey("calendarevent.id", ondelete="CASCADE"), nullable=True
        ),
    )
    created_at: datetime = Field(
        default_factory=get_now, sa_column=Column(DateTime(timezone=False), nullable=False)
    )

    @property
    def is_exclusion(self) -> bool:
        return self.modified_event_id is None


class TaskCompletion(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint(
            "event_id", "member_id", "occurrence_date", name="uq_taskcompletion_member"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("calendarevent.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    member_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("familymember.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    occurrence_date: date
    completed_at: datetime = Field(
        default_factory=get_now, sa_column=Column(DateTime(timezone=False), nullable=False)
    )
