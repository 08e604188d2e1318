import pytest

from lieutime.exceptions import InvalidTransitionError, LockedEntryError, ValidationError
from lieutime.models.timesheet import EntryStatus, EntryType, RowKey, TimesheetEntry
from lieutime.services.entry_state import (
    EntryStateMachine,
    can_delete_row,
    can_reassign_row,
    can_mutate,
    can_transition,
    ensure_row_mutable,
    transition,
    validate_hours,
    validate_row_key,
)
from lieutime.services.repositories import EntryRepository

from conftest import WEEK, week_day


def make_entry(db, user_id, day, hours=8.0, status=EntryStatus.DRAFT, **key):
    entry = TimesheetEntry(user_id=user_id, date=day, hours=hours, status=status, **key)
    db.add(entry)
    db.commit()
    return entry


def test_only_draft_is_mutable():
    assert can_mutate(TimesheetEntry(status=EntryStatus.DRAFT))
    for status in (EntryStatus.SUBMITTED, EntryStatus.APPROVED, EntryStatus.RECALLED):
        assert not can_mutate(TimesheetEntry(status=status))


def test_row_is_locked_if_any_entry_is_locked():
    entries = [
        TimesheetEntry(id="a", status=EntryStatus.DRAFT),
        TimesheetEntry(id="b", status=EntryStatus.SUBMITTED),
    ]
    assert not can_delete_row(entries)
    assert not can_reassign_row(entries)
    assert can_reassign_row(entries[:1])
    with pytest.raises(LockedEntryError) as exc:
        ensure_row_mutable(entries)
    assert exc.value.entry_ids == ["b"]


def test_legal_transitions():
    assert can_transition(EntryStatus.DRAFT, EntryStatus.SUBMITTED)
    assert can_transition(EntryStatus.SUBMITTED, EntryStatus.APPROVED)
    assert can_transition(EntryStatus.SUBMITTED, EntryStatus.RECALLED)
    assert can_transition(EntryStatus.RECALLED, EntryStatus.DRAFT)
    assert not can_transition(EntryStatus.APPROVED, EntryStatus.DRAFT)
    assert not can_transition(EntryStatus.DRAFT, EntryStatus.APPROVED)


def test_transition_rejects_illegal_move():
    entry = TimesheetEntry(status=EntryStatus.APPROVED)
    with pytest.raises(InvalidTransitionError):
        transition(entry, EntryStatus.DRAFT)
    assert transition(TimesheetEntry(status=EntryStatus.DRAFT), EntryStatus.SUBMITTED).status == EntryStatus.SUBMITTED


@pytest.mark.parametrize("value", ["abc", None, True, float("nan"), float("inf"), -1, 24.01, 1.234, "7.555"])
def test_validate_hours_rejects(value):
    with pytest.raises(ValidationError):
        validate_hours(value)


@pytest.mark.parametrize("value, expected", [(0, 0.0), (24, 24.0), ("7.5", 7.5), (8.25, 8.25)])
def test_validate_hours_accepts(value, expected):
    assert validate_hours(value) == expected


def test_validate_row_key():
    assert validate_row_key() == RowKey()
    assert validate_row_key("p1", None, None, "Admin") == RowKey(project_id="p1", entry_type=EntryType.ADMIN)
    with pytest.raises(ValidationError):
        validate_row_key(entry_type="Leave")
    with pytest.raises(ValidationError):
        validate_row_key(project_id="  ")


def test_submit_week_is_idempotent_and_scoped(db, user, other_user):
    make_entry(db, user, week_day(1))
    make_entry(db, user, week_day(2))
    make_entry(db, user, week_day(8))
    make_entry(db, other_user, week_day(1))

    machine = EntryStateMachine(db)
    assert machine.submit_week(user, WEEK) == 2
    assert machine.submit_week(user, WEEK) == 0

    repo = EntryRepository(db)
    statuses = {(e.user_id, e.date): EntryStatus(e.status) for e in repo.list_by_user(user) + repo.list_by_user(other_user)}
    assert statuses[(user, week_day(1))] == EntryStatus.SUBMITTED
    assert statuses[(user, week_day(8))] == EntryStatus.DRAFT
    assert statuses[(other_user, week_day(1))] == EntryStatus.DRAFT


def test_recall_and_reopen_week(db, user):
    make_entry(db, user, week_day(1))
    machine = EntryStateMachine(db)
    machine.submit_week(user, WEEK)
    assert machine.recall_week(user, WEEK) == 1
    assert machine.approve_week(user, WEEK) == 0
    assert machine.reopen_week(user, WEEK) == 1
    assert EntryStatus(EntryRepository(db).list_by_user(user)[0].status) == EntryStatus.DRAFT


def test_week_transition_accepts_any_day_of_week(db, user):
    make_entry(db, user, week_day(3))
    assert EntryStateMachine(db).submit_week(user, week_day(4)) == 1
