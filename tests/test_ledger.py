from types import SimpleNamespace

import pytest

from lieutime.exceptions import RecomputeTransactionError
from lieutime.models.notification import NotificationType
from lieutime.services.config_provider import ConfigProvider, WEEKLY_THRESHOLD_HOURS
from lieutime.services.ledger_service import LedgerService, compute_ledger, round2, weekly_totals
from lieutime.services.repositories import LedgerRepository
from lieutime.services.timesheet_service import TimesheetService

from conftest import WEEK, week_day


def e(day, hours):
    return SimpleNamespace(date=day, hours=hours)


def test_round2_is_half_up():
    assert round2(0.125) == 0.13
    assert round2(2.675) == 2.68
    assert round2(1.004) == 1.0


def test_weekly_totals_skip_bad_hours():
    totals = weekly_totals([e(week_day(1), 8), e(week_day(2), float("nan")), e(week_day(3), -2), e(week_day(4), 0)])
    assert totals == {WEEK: 8}


def test_compute_ledger_overtime_and_running_balance():
    entries = [e(week_day(1), 24), e(week_day(2), 21), e(week_day(8), 30), e(week_day(15), 22), e(week_day(16), 20.5)]
    rows = compute_ledger(entries, threshold=40)
    assert [(r.week_start_date, r.total_hours, r.overtime_hours, r.running_balance) for r in rows] == [
        (WEEK, 45.0, 5.0, 5.0),
        (week_day(7), 30.0, 0.0, 5.0),
        (week_day(14), 42.5, 2.5, 7.5),
    ]
    assert all(r.lieu_earned == r.overtime_hours for r in rows)
    assert rows[0].week_end_date == week_day(6)


def test_compute_ledger_skips_empty_weeks_and_seeds_initial_balance():
    rows = compute_ledger([e(week_day(1), 20), e(week_day(22), 23), e(week_day(23), 23)], threshold=40, initial_balance=3)
    assert [r.week_start_date for r in rows] == [WEEK, week_day(21)]
    assert [r.running_balance for r in rows] == [3.0, 9.0]


def test_running_balance_is_monotonic():
    entries = [e(week_day(offset), hours) for offset, hours in [(1, 24), (2, 24), (8, 10), (15, 24), (16, 24), (17, 3.33)]]
    rows = compute_ledger(entries, threshold=37.5, initial_balance=1.5)
    balances = [r.running_balance for r in rows]
    assert balances == sorted(balances)
    for previous, current in zip(rows, rows[1:]):
        assert current.running_balance == round2(previous.running_balance + current.lieu_earned)


def test_threshold_exactly_met_earns_nothing():
    rows = compute_ledger([e(week_day(1), 20), e(week_day(2), 20)], threshold=40)
    assert rows[0].overtime_hours == 0


def test_scenario_overtime_week(db, user, week_entries):
    result = TimesheetService(db).import_entries(user, week_entries)

    ledger = LedgerService(db).get_ledger(user)
    assert len(ledger) == 1
    row = ledger[0]
    assert (row.total_hours, row.overtime_hours, row.lieu_earned, row.running_balance) == (45.0, 5.0, 5.0, 5.0)
    kinds = {n.metadata_["kind"] for n in result.notifications if n.type == NotificationType.LIEU_UPDATE}
    assert "overtime-earned" in kinds


def test_scenario_undertime_week_carries_balance_quietly(db, user, week_entries):
    service = TimesheetService(db)
    service.import_entries(user, week_entries)

    result = service.import_entries(user, [{"date": week_day(8 + i).isoformat(), "hours": 6} for i in range(5)])

    row = LedgerService(db).get_ledger(user)[1]
    assert (row.total_hours, row.overtime_hours, row.running_balance) == (30.0, 0.0, 5.0)
    assert result.notifications == []


def test_scenario_initial_balance_shifts_every_week(db, user, week_entries):
    service = TimesheetService(db)
    service.import_entries(user, week_entries)
    service.import_entries(user, [{"date": week_day(8 + i).isoformat(), "hours": 6} for i in range(5)])
    before = [w.running_balance for w in LedgerService(db).get_ledger(user)]

    result = service.set_initial_balance(user, 50)

    after = [w.running_balance for w in LedgerService(db).get_ledger(user)]
    assert after == [b + 50 for b in before]
    assert any(n.type == NotificationType.LIEU_MILESTONE for n in result.notifications)


def test_recompute_is_idempotent(db, user, week_entries):
    TimesheetService(db).import_entries(user, week_entries)
    ledger = LedgerService(db)

    first = ledger.recalculate_ledger(user)
    second = ledger.recalculate_ledger(user)

    assert first.current == second.current
    assert second.previous == second.current
    assert not second.changed
    assert [r.as_dict() for r in LedgerRepository(db).list_by_user(user)] == [w.as_dict() for w in second.current]


def test_threshold_change_rederives_history(db, user, week_entries):
    service = TimesheetService(db)
    service.import_entries(user, week_entries)

    service.set_config(WEEKLY_THRESHOLD_HOURS, 37.5)

    assert ConfigProvider(db).get(WEEKLY_THRESHOLD_HOURS) == 37.5
    row = LedgerService(db).get_ledger(user)[0]
    assert (row.overtime_hours, row.running_balance) == (7.5, 7.5)


def test_failed_replace_keeps_previous_ledger(db, user, week_entries):
    TimesheetService(db).import_entries(user, week_entries)
    before = LedgerService(db).get_ledger(user)

    bad_row = {
        "id": f"{user}-broken",
        "user_id": user,
        "week_start_date": None,
        "week_end_date": None,
        "total_hours": 1.0,
        "overtime_hours": 0.0,
        "lieu_earned": 0.0,
        "running_balance": 0.0,
    }
    with pytest.raises(RecomputeTransactionError):
        LedgerRepository(db).replace_ledger(user, [bad_row])

    assert LedgerService(db).get_ledger(user) == before


def test_summary(db, user, week_entries):
    from datetime import datetime, timezone

    TimesheetService(db).import_entries(user, week_entries)
    summary = LedgerService(db).get_lieu_summary(user, now=datetime(2025, 1, 9, 12, tzinfo=timezone.utc))
    assert summary["lieu_balance"] == 5.0
    assert summary["this_week_hours"] == 45.0
    assert summary["this_week_overtime"] == 5.0
    assert summary["total_entries"] == 5
    assert summary["week_start_date"] == WEEK.isoformat()
