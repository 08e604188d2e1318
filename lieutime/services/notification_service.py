"""
Notification / anomaly detection.

Two independent sources feed the same persistence path:

* ledger transitions, computed by comparing the ledger before and after a
  recompute week by week (edge-triggered, nothing fires when nothing moved);
* periodic checks over raw entries (weekly reminder, long days, empty weeks),
  safe to run on every page load or from the scheduler.

Every notification carries a typed metadata payload that derives a dedup key.
A notification is only inserted when no notification with the same
(user, type, key) exists.
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Annotated, ClassVar, Dict, Iterable, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, computed_field
from sqlalchemy.orm import Session
from lieutime.exceptions import NotificationNotFoundError
from lieutime.models.notification import Notification, NotificationType
from lieutime.models.timesheet import EntryStatus
from lieutime.services.config_provider import ConfigProvider, LedgerConfig
from lieutime.services.ledger_service import LedgerRecomputation, LedgerWeek, round2
from lieutime.services.repositories import EntryRepository, NotificationRepository, UserRepository
from lieutime.utils.timezone import start_of_week, sunday_based_weekday, to_utc, utc_midnight, utc_now, week_range
import logging

logger = logging.getLogger(__name__)

BALANCE_SWING_HOURS = 5
LIEU_MILESTONE_HOURS = 40
HIGH_DAY_HOURS = 12
ANOMALY_WINDOW_DAYS = 14


# ------------------------------
# metadata variants
# ------------------------------

def _with_revision(key: str, revision: str) -> str:
    # ledger transition keys are unique per recompute
    return f"{key}-{revision}" if revision else key


class BalanceNegativeMeta(BaseModel):
    notification_type: ClassVar[str] = NotificationType.HOURS_DISCREPANCY
    kind: Literal["balance-negative"] = "balance-negative"
    week_start_date: date
    old_balance: float
    lieu_balance: float
    revision: str = ""

    @computed_field
    @property
    def key(self) -> str:
        return _with_revision(f"balance-negative-{self.week_start_date.isoformat()}-{self.lieu_balance}", self.revision)


class BalanceSwingMeta(BaseModel):
    notification_type: ClassVar[str] = NotificationType.LIEU_UPDATE
    kind: Literal["balance-swing"] = "balance-swing"
    week_start_date: date
    old_balance: float
    new_balance: float
    balance_change: float
    revision: str = ""

    @computed_field
    @property
    def key(self) -> str:
        return _with_revision(f"balance-swing-{self.week_start_date.isoformat()}-{self.old_balance}-{self.new_balance}", self.revision)


class OvertimeEarnedMeta(BaseModel):
    notification_type: ClassVar[str] = NotificationType.LIEU_UPDATE
    kind: Literal["overtime-earned"] = "overtime-earned"
    week_start_date: date
    old_overtime: float
    overtime_hours: float
    lieu_balance: float
    revision: str = ""

    @computed_field
    @property
    def key(self) -> str:
        return _with_revision(f"overtime-{self.week_start_date.isoformat()}-{self.old_overtime}-{self.overtime_hours}", self.revision)


class LieuMilestoneMeta(BaseModel):
    notification_type: ClassVar[str] = NotificationType.LIEU_MILESTONE
    kind: Literal["lieu-milestone"] = "lieu-milestone"
    week_start_date: date
    milestone: float = LIEU_MILESTONE_HOURS
    lieu_balance: float
    revision: str = ""

    @computed_field
    @property
    def key(self) -> str:
        return _with_revision(f"lieu-milestone-{self.week_start_date.isoformat()}-{self.lieu_balance}", self.revision)


class WeeklyReminderMeta(BaseModel):
    notification_type: ClassVar[str] = NotificationType.WEEKLY_REMINDER
    kind: Literal["weekly-reminder"] = "weekly-reminder"
    week_start_date: date
    entry_count: int
    draft_count: int

    @computed_field
    @property
    def key(self) -> str:
        return f"weekly-reminder-{self.week_start_date.isoformat()}"


class HighDayMeta(BaseModel):
    notification_type: ClassVar[str] = NotificationType.ANOMALY
    kind: Literal["anomaly-day"] = "anomaly-day"
    day_start: date
    total_hours: float

    @computed_field
    @property
    def key(self) -> str:
        return f"anomaly-day-{self.day_start.isoformat()}"


class ZeroWeekMeta(BaseModel):
    notification_type: ClassVar[str] = NotificationType.ANOMALY
    kind: Literal["zero-week"] = "zero-week"
    week_start_date: date

    @computed_field
    @property
    def key(self) -> str:
        return f"zero-week-{self.week_start_date.isoformat()}"


NotificationMetadata = Annotated[
    Union[
        BalanceNegativeMeta,
        BalanceSwingMeta,
        OvertimeEarnedMeta,
        LieuMilestoneMeta,
        WeeklyReminderMeta,
        HighDayMeta,
        ZeroWeekMeta,
    ],
    Field(discriminator="kind"),
]

_metadata_adapter = TypeAdapter(NotificationMetadata)


def parse_metadata(payload: dict) -> NotificationMetadata:
    """Rebuild the typed metadata from a stored notification payload."""
    return _metadata_adapter.validate_python(payload)


@dataclass(frozen=True)
class NotificationDraft:
    metadata: NotificationMetadata
    title: str
    message: str

    @property
    def type(self) -> str:
        return self.metadata.notification_type

    @property
    def key(self) -> str:
        return self.metadata.key


def _fmt(hours: float) -> str:
    return f"{hours:.1f}"


# ------------------------------
# ledger transitions
# ------------------------------

def week_transitions(old: LedgerWeek, new: LedgerWeek, revision: str = "") -> List[NotificationDraft]:
    """Conditions newly crossed between two snapshots of the same week."""
    week = new.week_start_date
    drafts: List[NotificationDraft] = []

    if new.running_balance < 0 and old.running_balance >= 0:
        drafts.append(NotificationDraft(
            metadata=BalanceNegativeMeta(
                week_start_date=week,
                old_balance=old.running_balance,
                lieu_balance=new.running_balance,
                revision=revision,
            ),
            title="Negative Lieu Balance",
            message=f"Your lieu balance is now {_fmt(new.running_balance)} hours. "
                    f"You have worked fewer than standard hours recently.",
        ))

    change = round2(new.running_balance - old.running_balance)
    if abs(change) >= BALANCE_SWING_HOURS:
        sign = "+" if change > 0 else ""
        drafts.append(NotificationDraft(
            metadata=BalanceSwingMeta(
                week_start_date=week,
                old_balance=old.running_balance,
                new_balance=new.running_balance,
                balance_change=change,
                revision=revision,
            ),
            title="Lieu Balance Updated",
            message=f"Your lieu balance changed by {sign}{_fmt(change)} hours for the week of "
                    f"{week.isoformat()}. Current balance: {_fmt(new.running_balance)} hours.",
        ))

    if new.overtime_hours > old.overtime_hours and new.overtime_hours > 0:
        earned = round2(new.overtime_hours - old.overtime_hours)
        drafts.append(NotificationDraft(
            metadata=OvertimeEarnedMeta(
                week_start_date=week,
                old_overtime=old.overtime_hours,
                overtime_hours=new.overtime_hours,
                lieu_balance=new.running_balance,
                revision=revision,
            ),
            title="Overtime Earned",
            message=f"You earned {_fmt(earned)} hours of lieu time in the week of {week.isoformat()}. "
                    f"New balance: {_fmt(new.running_balance)} hours.",
        ))

    if new.running_balance >= LIEU_MILESTONE_HOURS and old.running_balance < LIEU_MILESTONE_HOURS:
        drafts.append(NotificationDraft(
            metadata=LieuMilestoneMeta(week_start_date=week, lieu_balance=new.running_balance, revision=revision),
            title="Lieu Milestone Reached",
            message=f"Congratulations! You've accumulated {_fmt(new.running_balance)} hours of lieu time "
                    f"- equivalent to a full week off!",
        ))

    return drafts


def detect_ledger_transitions(
    previous: Iterable[LedgerWeek],
    current: Iterable[LedgerWeek],
    initial_balance: float = 0.0,
    revision: str = ""
) -> List[NotificationDraft]:
    """
    Compare two full ledgers week by week.

    A week missing on either side is treated as a zero-hour week carrying the
    balance of the week before it on that side.
    """
    old_by_week = {w.week_start_date: w for w in previous}
    new_by_week = {w.week_start_date: w for w in current}

    drafts: List[NotificationDraft] = []
    old_carry = new_carry = round2(initial_balance)
    for week in sorted(set(old_by_week) | set(new_by_week)):
        old = old_by_week.get(week) or LedgerWeek.empty(week, old_carry)
        new = new_by_week.get(week) or LedgerWeek.empty(week, new_carry)
        old_carry, new_carry = old.running_balance, new.running_balance
        drafts.extend(week_transitions(old, new, revision))
    return drafts


# ------------------------------
# periodic checks
# ------------------------------

def should_send_reminder(now: datetime, config: LedgerConfig) -> bool:
    now = to_utc(now)
    return sunday_based_weekday(now) == config.reminder_day and now.hour >= config.reminder_hour


def weekly_reminder(now: datetime, week_entries: List, config: LedgerConfig) -> Optional[NotificationDraft]:
    if not should_send_reminder(now, config):
        return None
    drafts = [e for e in week_entries if EntryStatus(e.status) == EntryStatus.DRAFT]
    if week_entries and not drafts:
        return None
    return NotificationDraft(
        metadata=WeeklyReminderMeta(
            week_start_date=start_of_week(now),
            entry_count=len(week_entries),
            draft_count=len(drafts),
        ),
        title="Weekly timesheet reminder",
        message="You have not logged any hours this week."
        if not week_entries
        else "You have Draft entries that need submission.",
    )


def daily_totals(entries: Iterable) -> Dict[date, float]:
    totals: Dict[date, float] = defaultdict(float)
    for entry in entries:
        if entry.hours and entry.hours > 0:
            totals[entry.date] += entry.hours
    return {day: round2(total) for day, total in totals.items()}


def high_day_anomalies(entries: Iterable, days: Optional[Iterable[date]] = None) -> List[NotificationDraft]:
    """One anomaly per day whose total exceeds the long-day limit."""
    totals = daily_totals(entries)
    if days is not None:
        wanted = set(days)
        totals = {day: total for day, total in totals.items() if day in wanted}
    drafts = []
    for day, total in sorted(totals.items()):
        if total > HIGH_DAY_HOURS:
            drafts.append(NotificationDraft(
                metadata=HighDayMeta(day_start=day, total_hours=total),
                title="Unusually long day logged",
                message=f"You logged {total:.2f} hours on {day.isoformat()}. Please verify this is correct.",
            ))
    return drafts


def zero_week_anomaly(previous_week_start: date, previous_week_entries: Iterable) -> Optional[NotificationDraft]:
    total = round2(sum(e.hours for e in previous_week_entries if e.hours))
    if total != 0:
        return None
    return NotificationDraft(
        metadata=ZeroWeekMeta(week_start_date=previous_week_start),
        title="No hours logged last week",
        message="You logged zero hours in the previous week.",
    )


class NotificationService:
    def __init__(self, db: Session):
        self.db = db
        self.notifications = NotificationRepository(db)
        self.entries = EntryRepository(db)
        self.users = UserRepository(db)
        self.config = ConfigProvider(db)

    def emit(self, user_id: str, drafts: Iterable[NotificationDraft]) -> List[Notification]:
        """Persist drafts that are not already stored for this user."""
        created = []
        for draft in drafts:
            if self.notifications.exists_by_key(user_id, draft.type, draft.key):
                logger.debug(f"Skipping duplicate {draft.type} notification {draft.key} for {user_id}")
                continue
            notification = Notification(
                user_id=user_id,
                type=draft.type,
                title=draft.title,
                message=draft.message,
                is_read=False,
                metadata_=draft.metadata.model_dump(mode="json"),
                dedup_key=draft.key,
            )
            if self.notifications.insert(notification):
                created.append(notification)
                logger.info(f"Notification {draft.type} ({draft.key}) created for {user_id}")
        return created

    def notify_ledger_changes(self, recomputation: LedgerRecomputation) -> List[Notification]:
        if not recomputation.changed:
            return []
        drafts = detect_ledger_transitions(
            recomputation.previous,
            recomputation.current,
            recomputation.initial_balance,
            recomputation.revision,
        )
        return self.emit(recomputation.user_id, drafts)

    def check_high_days(self, user_id: str, days: Iterable[date]) -> List[Notification]:
        """Long-day check limited to the given days, run right after a write touches them."""
        days = sorted(set(days))
        if not days:
            return []
        entries = self.entries.list_in_range(user_id, days[0], days[-1] + timedelta(days=1))
        return self.emit(user_id, high_day_anomalies(entries, days))

    def run_periodic_checks(self, user_id: str, now: datetime, config: LedgerConfig) -> List[NotificationDraft]:
        now = to_utc(now)
        drafts: List[NotificationDraft] = []

        current_week_start = start_of_week(now)
        current_start, current_end = week_range(current_week_start)
        reminder = weekly_reminder(now, self.entries.list_in_range(user_id, current_start, current_end), config)
        if reminder:
            drafts.append(reminder)

        # Days whose UTC midnight lies in [now - 14 days, now)
        window_start = now - timedelta(days=ANOMALY_WINDOW_DAYS)
        recent = [
            e for e in self.entries.list_in_range(user_id, window_start.date(), now.date() + timedelta(days=1))
            if window_start <= utc_midnight(e.date) < now
        ]
        drafts.extend(high_day_anomalies(recent))

        previous_week_start = current_week_start - timedelta(days=7)
        previous = self.entries.list_in_week(user_id, previous_week_start)
        zero_week = zero_week_anomaly(previous_week_start, previous)
        if zero_week:
            drafts.append(zero_week)

        return drafts

    def generate_notifications(self, user_id: str, now: Optional[datetime] = None) -> List[Notification]:
        now = now or utc_now()
        if self.users.get(user_id) is None:
            logger.warning(f"Skipping notification checks for unknown user {user_id}")
            return []
        config = self.config.load()
        return self.emit(user_id, self.run_periodic_checks(user_id, now, config))

    def generate_for_all_users(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utc_now()
        results = {}
        for user_id in self.users.list_ids():
            results[user_id] = len(self.generate_notifications(user_id, now))
        logger.info(f"Periodic notification checks done for {len(results)} users, {sum(results.values())} created")
        return results

    # ---- user-facing operations ----

    def list_notifications(self, user_id: str, limit: int = 10, unread_only: bool = False) -> List[Notification]:
        return self.notifications.list_by_user(user_id, limit=limit, unread_only=unread_only)

    def unread_count(self, user_id: str) -> int:
        return self.notifications.unread_count(user_id)

    def _owned(self, user_id: str, notification_id: str) -> Notification:
        notification = self.notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return notification

    def mark_read(self, user_id: str, notification_id: str) -> Notification:
        return self.notifications.mark_read(self._owned(user_id, notification_id))

    def mark_all_read(self, user_id: str) -> int:
        return self.notifications.mark_all_read(user_id)

    def delete(self, user_id: str, notification_id: str) -> None:
        self.notifications.delete(self._owned(user_id, notification_id))
