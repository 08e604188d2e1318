from datetime import datetime, timezone

import pytest

from lieutime.exceptions import NotificationNotFoundError
from lieutime.models.notification import Notification, NotificationType
from lieutime.models.timesheet import EntryStatus
from lieutime.services.config_provider import LedgerConfig
from lieutime.services.ledger_service import LedgerWeek
from lieutime.services.notification_service import (
    HighDayMeta,
    NotificationDraft,
    NotificationService,
    ZeroWeekMeta,
    detect_ledger_transitions,
    parse_metadata,
    should_send_reminder,
    week_transitions,
)
from lieutime.services.timesheet_service import TimesheetService

from conftest import WEEK, week_day

# Friday of the week after WEEK, after the default reminder hour
FRIDAY_EVENING = datetime(2025, 1, 17, 16, 30, tzinfo=timezone.utc)


def week(start, total=0.0, overtime=0.0, balance=0.0):
    return LedgerWeek(
        week_start_date=start,
        week_end_date=start,
        total_hours=total,
        overtime_hours=overtime,
        lieu_earned=overtime,
        running_balance=balance,
    )


def kinds(drafts):
    return sorted(d.metadata.kind for d in drafts)


def test_negative_crossing():
    drafts = week_transitions(week(WEEK, balance=1.0), week(WEEK, balance=-2.0))
    assert kinds(drafts) == ["balance-negative"]
    assert drafts[0].type == NotificationType.HOURS_DISCREPANCY


def test_large_swing_and_overtime():
    drafts = week_transitions(week(WEEK, 40, 0, 0), week(WEEK, 46, 6, 6))
    assert kinds(drafts) == ["balance-swing", "overtime-earned"]
    assert all(d.type == NotificationType.LIEU_UPDATE for d in drafts)


def test_small_change_is_quiet():
    assert week_transitions(week(WEEK, 41, 1, 1), week(WEEK, 41, 1, 1)) == []
    assert week_transitions(week(WEEK, 43, 3, 3), week(WEEK, 42, 2, 2)) == []


def test_milestone_crossing():
    drafts = week_transitions(week(WEEK, balance=38), week(WEEK, balance=41))
    assert kinds(drafts) == ["lieu-milestone"]
    assert drafts[0].key == f"lieu-milestone-{WEEK.isoformat()}-41.0"


def test_detect_compares_new_week_against_carried_balance():
    previous = [week(WEEK, 45, 5, 5)]
    current = [week(WEEK, 45, 5, 5), week(week_day(7), 30, 0, 5)]
    assert detect_ledger_transitions(previous, current) == []


def test_detect_disappearing_week():
    previous = [week(WEEK, 50, 10, 10)]
    drafts = detect_ledger_transitions(previous, [])
    assert kinds(drafts) == ["balance-swing"]
    assert drafts[0].metadata.new_balance == 0


def test_metadata_roundtrip_through_storage_format():
    draft = NotificationDraft(metadata=HighDayMeta(day_start=WEEK, total_hours=13), title="t", message="m")
    stored = draft.metadata.model_dump(mode="json")
    assert stored["key"] == f"anomaly-day-{WEEK.isoformat()}"
    assert parse_metadata(stored) == draft.metadata


def test_should_send_reminder():
    config = LedgerConfig()
    assert should_send_reminder(FRIDAY_EVENING, config)
    assert not should_send_reminder(FRIDAY_EVENING.replace(hour=15), config)
    assert not should_send_reminder(datetime(2025, 1, 16, 18, tzinfo=timezone.utc), config)


def test_emit_skips_existing_key(db, user):
    service = NotificationService(db)
    draft = NotificationDraft(metadata=ZeroWeekMeta(week_start_date=WEEK), title="t", message="m")

    assert len(service.emit(user, [draft])) == 1
    assert service.emit(user, [draft]) == []
    assert db.query(Notification).filter(Notification.user_id == user).count() == 1


def test_long_day_notifies_once(db, user):
    service = TimesheetService(db)
    day = week_day(2)

    first = service.create_entry(user, day, 13)
    second = service.create_entry(user, day, 1)

    assert [n.dedup_key for n in first.notifications if n.type == NotificationType.ANOMALY] == [f"anomaly-day-{day.isoformat()}"]
    assert [n for n in second.notifications if n.type == NotificationType.ANOMALY] == []
    assert db.query(Notification).filter(Notification.type == NotificationType.ANOMALY).count() == 1


def test_periodic_checks_on_empty_account(db, user):
    created = NotificationService(db).generate_notifications(user, FRIDAY_EVENING)
    keys = {n.dedup_key for n in created}
    assert keys == {"weekly-reminder-2025-01-12", f"zero-week-{WEEK.isoformat()}"}

    # a second run is a no-op
    assert NotificationService(db).generate_notifications(user, FRIDAY_EVENING) == []


def test_reminder_skipped_when_week_fully_submitted(db, user):
    service = TimesheetService(db)
    service.create_entry(user, week_day(8), 8)
    service.create_entry(user, week_day(1), 8)
    service.submit_week(user, week_day(7))

    created = NotificationService(db).generate_notifications(user, FRIDAY_EVENING)
    assert [n.type for n in created] == []


def test_reminder_sent_while_drafts_remain(db, user):
    service = TimesheetService(db)
    service.create_entry(user, week_day(8), 8)
    service.create_entry(user, week_day(1), 8)

    created = NotificationService(db).generate_notifications(user, FRIDAY_EVENING)
    assert [n.dedup_key for n in created] == ["weekly-reminder-2025-01-12"]
    assert created[0].metadata_["draft_count"] == 1


def test_high_day_window_is_fourteen_days(db, user):
    service = TimesheetService(db)
    # both long days are flagged at write time; clear them to look at the periodic scan alone
    service.create_entry(user, week_day(-14), 13)
    service.create_entry(user, week_day(3), 13)
    db.query(Notification).delete()
    db.commit()

    now = datetime(2025, 1, 17, 12, tzinfo=timezone.utc)
    drafts = NotificationService(db).run_periodic_checks(user, now, LedgerConfig())
    days = [d.metadata.day_start for d in drafts if d.metadata.kind == "anomaly-day"]
    assert days == [week_day(3)]


def test_unknown_user_is_skipped(db):
    assert NotificationService(db).generate_notifications("ghost", FRIDAY_EVENING) == []


def test_user_operations(db, user, other_user):
    service = NotificationService(db)
    service.emit(user, [
        NotificationDraft(metadata=ZeroWeekMeta(week_start_date=WEEK), title="a", message="a"),
        NotificationDraft(metadata=ZeroWeekMeta(week_start_date=week_day(7)), title="b", message="b"),
    ])
    assert service.unread_count(user) == 2

    first = service.list_notifications(user)[0]
    with pytest.raises(NotificationNotFoundError):
        service.mark_read(other_user, first.id)

    service.mark_read(user, first.id)
    assert service.unread_count(user) == 1
    assert len(service.list_notifications(user, unread_only=True)) == 1

    assert service.mark_all_read(user) == 1
    assert service.unread_count(user) == 0

    service.delete(user, first.id)
    assert len(service.list_notifications(user)) == 1


def test_submitted_entries_still_count_for_ledger(db, user, week_entries):
    service = TimesheetService(db)
    service.import_entries(user, week_entries)
    service.submit_week(user, WEEK)
    recomputation = service.ledger.recalculate_ledger(user)
    assert recomputation.current[0].running_balance == 5.0
    assert all(EntryStatus(e.status) == EntryStatus.SUBMITTED for e in service.entries.list_by_user(user))


def test_overtime_notified_again_after_being_undone(db, user):
    service = TimesheetService(db)
    ids = [service.create_entry(user, week_day(1 + i), 9).entry.id for i in range(5)]

    service.update_entry(user, ids[0], hours=4)
    result = service.update_entry(user, ids[0], hours=9)

    assert "overtime-earned" in {n.metadata_["kind"] for n in result.notifications}
    overtime = [n for n in db.query(Notification).all() if n.metadata_["kind"] == "overtime-earned"]
    assert len(overtime) == 2
    assert len({n.dedup_key for n in overtime}) == 2

    # recomputing an unchanged ledger stays quiet
    recomputation = service.ledger.recalculate_ledger(user)
    assert NotificationService(db).notify_ledger_changes(recomputation) == []
