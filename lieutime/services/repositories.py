"""
SQLAlchemy adapters for entries, ledger rows, users and notifications.

Entry/user/notification repositories stage changes on the session and leave
the commit to the calling service, so a service can group several writes into
one transaction. The ledger repository owns its transaction: a ledger replace
is always committed (or rolled back) on its own.
"""
from datetime import date
from typing import List, Optional, Sequence
from sqlalchemy import and_, delete, desc, func, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from lieutime.exceptions import RecomputeTransactionError
from lieutime.models.ledger import WeeklyLedgerRow
from lieutime.models.notification import Notification
from lieutime.models.timesheet import EntryStatus, RowKey, TimesheetEntry
from lieutime.models.user import User
from lieutime.utils.timezone import week_range
import logging

logger = logging.getLogger(__name__)


def _nullable_eq(column, value):
    return column.is_(None) if value is None else column == value


def row_filter(row_key: RowKey):
    return and_(
        _nullable_eq(TimesheetEntry.project_id, row_key.project_id),
        _nullable_eq(TimesheetEntry.task_id, row_key.task_id),
        _nullable_eq(TimesheetEntry.role_id, row_key.role_id),
        TimesheetEntry.entry_type == row_key.entry_type,
    )


class EntryRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, entry_id: str) -> Optional[TimesheetEntry]:
        return self.db.get(TimesheetEntry, entry_id)

    def list_by_user(self, user_id: str) -> List[TimesheetEntry]:
        return self.db.query(TimesheetEntry).filter(
            TimesheetEntry.user_id == user_id
        ).order_by(TimesheetEntry.date, TimesheetEntry.id).all()

    def list_in_range(self, user_id: str, start: date, end: date) -> List[TimesheetEntry]:
        """Entries whose date lies in [start, end)."""
        return self.db.query(TimesheetEntry).filter(
            TimesheetEntry.user_id == user_id,
            TimesheetEntry.date >= start,
            TimesheetEntry.date < end
        ).order_by(TimesheetEntry.date, TimesheetEntry.id).all()

    def list_in_week(self, user_id: str, week_start: date) -> List[TimesheetEntry]:
        start, end = week_range(week_start)
        return self.list_in_range(user_id, start, end)

    def find_by_row_and_date(self, user_id: str, row_key: RowKey, day: date) -> Optional[TimesheetEntry]:
        return self.db.query(TimesheetEntry).filter(
            TimesheetEntry.user_id == user_id,
            TimesheetEntry.date == day,
            row_filter(row_key)
        ).first()

    def list_row_in_week(self, user_id: str, row_key: RowKey, week_start: date) -> List[TimesheetEntry]:
        start, end = week_range(week_start)
        return self.db.query(TimesheetEntry).filter(
            TimesheetEntry.user_id == user_id,
            TimesheetEntry.date >= start,
            TimesheetEntry.date < end,
            row_filter(row_key)
        ).order_by(TimesheetEntry.date).all()

    def add(self, entry: TimesheetEntry) -> TimesheetEntry:
        self.db.add(entry)
        return entry

    def delete(self, entry: TimesheetEntry) -> None:
        self.db.delete(entry)

    def bulk_update_status(
        self,
        user_id: str,
        week_start: date,
        from_status: EntryStatus,
        to_status: EntryStatus
    ) -> int:
        """Move every entry of the week in `from_status` to `to_status`. Returns the row count."""
        start, end = week_range(week_start)
        return self.db.query(TimesheetEntry).filter(
            TimesheetEntry.user_id == user_id,
            TimesheetEntry.date >= start,
            TimesheetEntry.date < end,
            TimesheetEntry.status == from_status
        ).update({TimesheetEntry.status: to_status}, synchronize_session="fetch")

    def count_by_user(self, user_id: str) -> int:
        return self.db.query(func.count(TimesheetEntry.id)).filter(
            TimesheetEntry.user_id == user_id
        ).scalar() or 0


class LedgerRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_by_user(self, user_id: str) -> List[WeeklyLedgerRow]:
        return self.db.query(WeeklyLedgerRow).filter(
            WeeklyLedgerRow.user_id == user_id
        ).order_by(WeeklyLedgerRow.week_start_date).all()

    def latest(self, user_id: str) -> Optional[WeeklyLedgerRow]:
        return self.db.query(WeeklyLedgerRow).filter(
            WeeklyLedgerRow.user_id == user_id
        ).order_by(desc(WeeklyLedgerRow.week_start_date)).first()

    def replace_ledger(self, user_id: str, rows: Sequence[dict]) -> None:
        """Delete the user's ledger and insert `rows` in a single transaction."""
        try:
            self.db.execute(delete(WeeklyLedgerRow).where(WeeklyLedgerRow.user_id == user_id))
            if rows:
                self.db.execute(insert(WeeklyLedgerRow), list(rows))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Ledger replace failed for user {user_id}, previous ledger kept: {str(e)}")
            raise RecomputeTransactionError(f"Could not replace ledger for user {user_id}") from e
        # Drop cached ORM rows that were just replaced underneath the session
        self.db.expire_all()


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_or_create(self, user_id: str) -> User:
        user = self.get(user_id)
        if user is None:
            user = User(id=user_id, initial_lieu_balance=0.0, is_admin=False)
            self.db.add(user)
            self.db.flush()
            logger.info(f"Registered user {user_id}")
        return user

    def get_initial_balance(self, user_id: str) -> float:
        user = self.get(user_id)
        if user is None or user.initial_lieu_balance is None:
            return 0.0
        return float(user.initial_lieu_balance)

    def set_initial_balance(self, user_id: str, balance: float) -> User:
        user = self.get_or_create(user_id)
        user.initial_lieu_balance = balance
        self.db.commit()
        return user

    def list_all(self) -> List[User]:
        return self.db.query(User).order_by(User.id).all()

    def list_ids(self) -> List[str]:
        return [row[0] for row in self.db.query(User.id).order_by(User.id).all()]


class NotificationRepository:
    def __init__(self, db: Session):
        self.db = db

    def exists_by_key(self, user_id: str, type: str, key: str) -> bool:
        return self.db.query(Notification.id).filter(
            Notification.user_id == user_id,
            Notification.type == type,
            Notification.dedup_key == key
        ).first() is not None

    def insert(self, notification: Notification) -> bool:
        """
        Persist one notification. Returns False when a concurrent writer already
        stored the same (user, type, key).
        """
        try:
            self.db.add(notification)
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"Notification {notification.type}/{notification.dedup_key} already stored for {notification.user_id}")
            return False

    def get(self, notification_id: str) -> Optional[Notification]:
        return self.db.get(Notification, notification_id)

    def list_by_user(self, user_id: str, limit: Optional[int] = None, unread_only: bool = False) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        query = query.order_by(desc(Notification.created_at), Notification.id)
        if limit:
            query = query.limit(limit)
        return query.all()

    def unread_count(self, user_id: str) -> int:
        return self.db.query(func.count(Notification.id)).filter(
            Notification.user_id == user_id,
            Notification.is_read.is_(False)
        ).scalar() or 0

    def mark_read(self, notification: Notification) -> Notification:
        notification.is_read = True
        self.db.commit()
        return notification

    def mark_all_read(self, user_id: str) -> int:
        count = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read.is_(False)
        ).update({Notification.is_read: True}, synchronize_session="fetch")
        self.db.commit()
        return count

    def delete(self, notification: Notification) -> None:
        self.db.delete(notification)
        self.db.commit()
