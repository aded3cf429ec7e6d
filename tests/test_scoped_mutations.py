import logging
import sys
from datetime import date, datetime
from pathlib import Path

import pytest
from sqlmodel import Session, select

sys.path.append(str(Path(__file__).resolve().parents[1]))

from familycal.calendar import AlreadyExists, EventExceptionStore, Inserted
from familycal.db import create_db_engine, init_db
from familycal.errors import NotFoundError, ValidationError
from familycal.members import MemberStore
from familycal.models import (
    CalendarEvent,
    EventCreate,
    EventException,
    EventUpdate,
    OccurrenceScope,
    RecurringType,
)
from familycal.scoped import ScopedMutationEngine
from familycal.service import CalendarService

JAN_START = datetime(2024, 1, 1)
JAN_END = datetime(2024, 1, 31, 23, 59, 59)


def setup_service(tmp_path, **kwargs):
    engine = create_db_engine(tmp_path / "test.db")
    init_db(engine)
    with Session(engine) as session:
        members = MemberStore(session)
        family = members.create_family("Nyberg")
        parent = members.create_member(family.id, "Karin", role="PARENT")
        child = members.create_member(family.id, "Olle")
        session.commit()
        ids = family.id, parent.id, child.id
    return CalendarService(engine, **kwargs), engine, ids


def trash_night(family_id, **kwargs):
    data = dict(
        family_id=family_id,
        title="Take out trash",
        start_datetime=datetime(2024, 1, 1, 19, 0),
        end_datetime=datetime(2024, 1, 1, 19, 15),
        recurring_type=RecurringType.WEEKLY,
    )
    data.update(kwargs)
    return EventCreate(**data)


def edit(title, day=15, hour=20):
    return EventUpdate(title=title, start_datetime=datetime(2024, 1, day, hour, 0))


def rows(engine, model):
    with Session(engine) as session:
        return list(session.exec(select(model)).all())


def dates(service, family_id):
    return [o.start_datetime.date() for o in service.occurrences_in_range(family_id, JAN_START, JAN_END)]


def test_delete_this_records_exclusion(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    service.delete_event_with_scope(base.id, date(2024, 1, 15), OccurrenceScope.THIS)

    exceptions = rows(engine, EventException)
    assert len(exceptions) == 1
    assert exceptions[0].is_exclusion
    assert exceptions[0].occurrence_date == date(2024, 1, 15)
    assert dates(service, family_id) == [date(2024, 1, d) for d in (1, 8, 22, 29)]


def test_delete_this_after_edit_drops_replacement(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))
    modified = service.update_event_with_scope(
        base.id, date(2024, 1, 15), OccurrenceScope.THIS, edit("Trash after dinner")
    )

    service.delete_event_with_scope(base.id, date(2024, 1, 15), OccurrenceScope.THIS)

    exceptions = rows(engine, EventException)
    assert len(exceptions) == 1
    assert exceptions[0].is_exclusion
    with pytest.raises(NotFoundError):
        service.get_event(modified.id)
    assert dates(service, family_id) == [date(2024, 1, d) for d in (1, 8, 22, 29)]


def test_delete_this_twice_is_harmless(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    service.delete_event_with_scope(base.id, date(2024, 1, 8), OccurrenceScope.THIS)
    service.delete_event_with_scope(base.id, date(2024, 1, 8), OccurrenceScope.THIS)

    assert len(rows(engine, EventException)) == 1


def test_delete_this_and_following_truncates(tmp_path):
    service, _, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    service.delete_event_with_scope(base.id, date(2024, 1, 15), OccurrenceScope.THIS_AND_FOLLOWING)

    assert service.get_event(base.id).recurring_end_date == date(2024, 1, 14)
    assert dates(service, family_id) == [date(2024, 1, 1), date(2024, 1, 8)]


def test_delete_all_removes_series_and_replacements(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))
    service.update_event_with_scope(
        base.id, date(2024, 1, 8), OccurrenceScope.THIS, edit("Early trash", day=8)
    )
    service.delete_event_with_scope(base.id, date(2024, 1, 22), OccurrenceScope.THIS)

    service.delete_event_with_scope(base.id, date(2024, 1, 15), OccurrenceScope.ALL)

    assert rows(engine, CalendarEvent) == []
    assert rows(engine, EventException) == []
    assert dates(service, family_id) == []


def test_scoped_delete_of_single_event_deletes_it(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    event = service.create_event(trash_night(family_id, recurring_type=None))

    service.delete_event_with_scope(event.id, date(2024, 1, 1), OccurrenceScope.THIS)

    assert rows(engine, CalendarEvent) == []
    assert rows(engine, EventException) == []


def test_update_this_twice_replaces_modified_event(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    first = service.update_event_with_scope(
        base.id, date(2024, 1, 15), OccurrenceScope.THIS, edit("First change")
    )
    second = service.update_event_with_scope(
        base.id, date(2024, 1, 15), OccurrenceScope.THIS, edit("Second change", hour=21)
    )

    exceptions = rows(engine, EventException)
    assert len(exceptions) == 1
    assert exceptions[0].modified_event_id == second.id
    assert {e.id for e in rows(engine, CalendarEvent)} == {base.id, second.id}
    assert first.id != second.id
    assert service.get_event(base.id).title == "Take out trash"

    titles = [o.title for o in service.occurrences_in_range(family_id, JAN_START, JAN_END)]
    assert titles.count("Second change") == 1
    assert "First change" not in titles


def test_update_this_inherits_task_settings(tmp_path):
    service, _, (family_id, parent_id, child_id) = setup_service(tmp_path)
    base = service.create_event(
        trash_night(
            family_id,
            is_task=True,
            xp_points=3,
            is_required=False,
            participant_ids=[child_id],
            created_by_id=parent_id,
        )
    )

    modified = service.update_event_with_scope(
        base.id, date(2024, 1, 15), OccurrenceScope.THIS, edit("Trash with grandma")
    )

    assert modified.is_task is True
    assert modified.xp_points == 3
    assert modified.is_required is False
    assert modified.participant_ids == [child_id]
    assert modified.created_by_id == parent_id
    assert not modified.is_recurring


def test_update_this_ignores_recurrence_in_request(tmp_path):
    service, _, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    modified = service.update_event_with_scope(
        base.id,
        date(2024, 1, 15),
        OccurrenceScope.THIS,
        EventUpdate(
            title="Once",
            start_datetime=datetime(2024, 1, 15, 20, 0),
            recurring_type=RecurringType.DAILY,
        ),
    )

    assert not modified.is_recurring


@pytest.mark.parametrize(
    "scope", [OccurrenceScope.THIS_AND_FOLLOWING, OccurrenceScope.ALL]
)
def test_series_scopes_require_recurring_type(tmp_path, scope):
    service, _, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    with pytest.raises(ValidationError, match=f"recurring_type is required for scope {scope.value}"):
        service.update_event_with_scope(base.id, date(2024, 1, 15), scope, edit("Nope"))


def test_update_this_and_following_keeps_task_fields(tmp_path):
    service, _, (family_id, _, child_id) = setup_service(tmp_path)
    base = service.create_event(
        trash_night(family_id, is_task=True, xp_points=2, participant_ids=[child_id])
    )

    new_series = service.update_event_with_scope(
        base.id,
        date(2024, 1, 15),
        OccurrenceScope.THIS_AND_FOLLOWING,
        EventUpdate(
            title="Take out trash",
            start_datetime=datetime(2024, 1, 16, 19, 0),
            recurring_type=RecurringType.WEEKLY,
            recurring_end_count=3,
        ),
    )

    assert new_series.id != base.id
    assert new_series.is_task and new_series.xp_points == 2
    assert new_series.participant_ids == [child_id]
    assert new_series.recurring_end_count == 3
    assert dates(service, family_id) == [
        date(2024, 1, 1),
        date(2024, 1, 8),
        date(2024, 1, 16),
        date(2024, 1, 23),
        date(2024, 1, 30),
    ]


def test_update_all_edits_base_event(tmp_path):
    service, _, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    updated = service.update_event_with_scope(
        base.id,
        date(2024, 1, 15),
        OccurrenceScope.ALL,
        EventUpdate(
            title="Recycling",
            start_datetime=datetime(2024, 1, 2, 18, 0),
            recurring_type=RecurringType.WEEKLY,
        ),
    )

    assert updated.id == base.id
    result = service.occurrences_in_range(family_id, JAN_START, JAN_END)
    assert {o.title for o in result} == {"Recycling"}
    assert [o.start_datetime.day for o in result] == [2, 9, 16, 23, 30]


def test_scoped_update_of_single_event_updates_it(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    event = service.create_event(trash_night(family_id, recurring_type=None))

    updated = service.update_event_with_scope(
        event.id, date(2024, 1, 1), OccurrenceScope.THIS_AND_FOLLOWING, edit("Moved", day=2)
    )

    assert updated.id == event.id
    assert updated.start_datetime == datetime(2024, 1, 2, 20, 0)
    assert rows(engine, EventException) == []


def test_missing_arguments_are_rejected(tmp_path):
    service, _, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    with pytest.raises(ValidationError, match="occurrence_date cannot be null"):
        service.delete_event_with_scope(base.id, None, OccurrenceScope.THIS)
    with pytest.raises(ValidationError, match="scope cannot be null"):
        service.update_event_with_scope(base.id, date(2024, 1, 8), None, edit("x"))
    with pytest.raises(ValidationError, match="event_id cannot be null"):
        service.delete_event_with_scope(None, date(2024, 1, 8), OccurrenceScope.ALL)
    with pytest.raises(NotFoundError):
        service.delete_event_with_scope(999, date(2024, 1, 8), OccurrenceScope.ALL)


def test_scoped_writes_notify_change_listener(tmp_path):
    changes = []
    service, _, (family_id, _, _) = setup_service(tmp_path, on_change=changes.append)
    base = service.create_event(trash_night(family_id))
    changes.clear()

    service.update_event_with_scope(base.id, date(2024, 1, 8), OccurrenceScope.THIS, edit("x", day=8))
    service.delete_event_with_scope(base.id, date(2024, 1, 15), OccurrenceScope.THIS)

    assert changes == [family_id, family_id]


def test_try_insert_reports_existing_exception(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    with Session(engine) as session:
        store = EventExceptionStore(session)
        first = store.try_insert(base.id, date(2024, 1, 8))
        second = store.try_insert(base.id, date(2024, 1, 8))

        assert isinstance(first, Inserted)
        assert isinstance(second, AlreadyExists)
        assert second.row.id == first.row.id
        session.commit()

    assert len(rows(engine, EventException)) == 1


def test_this_scope_edit_reuses_concurrently_created_exception(tmp_path, monkeypatch, caplog):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))
    first = service.update_event_with_scope(
        base.id, date(2024, 1, 15), OccurrenceScope.THIS, edit("First change")
    )

    # The first lookup misses, as if another writer inserted the row
    # between our read and our insert.
    original_find = EventExceptionStore.find
    calls = []

    def racing_find(self, event_id, occurrence_date):
        calls.append(occurrence_date)
        if len(calls) == 1:
            return None
        return original_find(self, event_id, occurrence_date)

    monkeypatch.setattr(EventExceptionStore, "find", racing_find)

    with caplog.at_level(logging.WARNING, logger="familycal.calendar"):
        second = service.update_event_with_scope(
            base.id, date(2024, 1, 15), OccurrenceScope.THIS, edit("Second change")
        )

    assert len(calls) == 2
    assert "already existed" in caplog.text
    exceptions = rows(engine, EventException)
    assert len(exceptions) == 1
    assert exceptions[0].modified_event_id == second.id
    assert {e.id for e in rows(engine, CalendarEvent)} == {base.id, second.id}
    assert first.id not in {e.id for e in rows(engine, CalendarEvent)}


def test_scoped_delete_rolls_back_with_its_session(tmp_path):
    service, engine, (family_id, _, _) = setup_service(tmp_path)
    base = service.create_event(trash_night(family_id))

    with Session(engine) as session:
        ScopedMutationEngine(session).delete(base.id, date(2024, 1, 8), OccurrenceScope.THIS)
        session.rollback()

    assert rows(engine, EventException) == []
