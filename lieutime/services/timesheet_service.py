from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any, Optional, Tuple
import math
from lieutime.exceptions import EntryNotFoundError, ValidationError
from lieutime.models.notification import Notification
from lieutime.models.timesheet import EntryStatus, RowKey, TimesheetEntry
from lieutime.services.config_provider import ConfigProvider, WEEKLY_THRESHOLD_HOURS
from lieutime.services.entry_state import (
    EntryStateMachine,
    can_mutate,
    ensure_mutable,
    ensure_row_mutable,
    validate_hours,
    validate_row_key,
)
from lieutime.services.ledger_service import LedgerService, LedgerWeek, round2
from lieutime.services.notification_service import NotificationService
from lieutime.services.repositories import EntryRepository, UserRepository
from lieutime.utils.timezone import start_of_week, to_utc_day, week_end
import logging

logger = logging.getLogger(__name__)

DAYS_IN_WEEK = 7


@dataclass
class WriteResult:
    """Outcome of an hours-affecting write, with the ledger it produced."""
    entry: Optional[TimesheetEntry] = None
    deleted: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    ledger: List[LedgerWeek] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)


def entry_to_dict(entry: TimesheetEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "date": entry.date.isoformat(),
        "hours": entry.hours,
        "description": entry.description,
        "status": EntryStatus(entry.status).value,
        **entry.row_key.as_dict(),
    }


def row_key_from(payload: Dict[str, Any]) -> RowKey:
    return validate_row_key(
        project_id=payload.get("project_id"),
        task_id=payload.get("task_id"),
        role_id=payload.get("role_id"),
        entry_type=payload.get("entry_type") or "Work",
    )


def _parse_day(value) -> date:
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Invalid date '{value}'", field="date")
    if isinstance(value, date):
        return to_utc_day(value)
    raise ValidationError("Date is required.", field="date")


def validate_balance(value) -> float:
    try:
        balance = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("Initial balance must be a number.", field="initial_lieu_balance")
    if not balance.is_finite() or balance < 0:
        raise ValidationError("Initial balance must be zero or more.", field="initial_lieu_balance")
    return round2(float(balance))


class TimesheetService:
    """
    Entry writes for one session. Every write that can change hours goes
    through _after_write: recompute the user's ledger, then raise whatever
    notifications the new ledger and the touched days warrant.
    """

    def __init__(self, db: Session):
        self.db = db
        self.entries = EntryRepository(db)
        self.users = UserRepository(db)
        self.state = EntryStateMachine(db)
        self.ledger = LedgerService(db)
        self.notifier = NotificationService(db)
        self.config = ConfigProvider(db)

    def _commit(self, action: str, user_id: str):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"❌ Error during {action} for user {user_id}: {str(e)}")
            self.db.rollback()
            raise

    def _after_write(self, user_id: str, touched_days, result: WriteResult) -> WriteResult:
        recomputation = self.ledger.recalculate_ledger(user_id)
        result.ledger = recomputation.current
        result.notifications = self.notifier.notify_ledger_changes(recomputation)
        result.notifications += self.notifier.check_high_days(user_id, touched_days)
        return result

    def _ensure_row_open(self, user_id: str, row_key: RowKey, day: date) -> None:
        """A grid row (key + week) is writable only while every entry in it is Draft."""
        ensure_row_mutable(self.entries.list_row_in_week(user_id, row_key, start_of_week(day)))

    def _get_owned(self, user_id: str, entry_id: str) -> TimesheetEntry:
        entry = self.entries.get(entry_id)
        if entry is None or entry.user_id != user_id:
            logger.error(f"❌ Entry {entry_id} not found for user {user_id}")
            raise EntryNotFoundError(f"Entry {entry_id} not found")
        return entry

    # ---- single entries ----

    def upsert_entry(
        self,
        user_id: str,
        day,
        hours,
        row_key: Optional[RowKey] = None,
        description: Optional[str] = None
    ) -> WriteResult:
        """
        Set the hours of the grid cell (day, row_key). Zero hours removes the cell.
        """
        day = _parse_day(day)
        hours = validate_hours(hours)
        row_key = row_key or RowKey()
        self.users.get_or_create(user_id)
        self._ensure_row_open(user_id, row_key, day)

        existing = self.entries.find_by_row_and_date(user_id, row_key, day)
        result = WriteResult()

        if hours <= 0:
            if existing is None:
                self._commit("upsert", user_id)
                return result
            ensure_mutable(existing)
            self.entries.delete(existing)
            result.deleted = 1
        elif existing is not None:
            ensure_mutable(existing)
            existing.hours = hours
            if description is not None:
                existing.description = description
            result.entry = existing
            result.updated = 1
        else:
            result.entry = self.entries.add(TimesheetEntry(
                user_id=user_id,
                date=day,
                hours=hours,
                description=description,
                project_id=row_key.project_id,
                task_id=row_key.task_id,
                role_id=row_key.role_id,
                entry_type=row_key.entry_type,
                status=EntryStatus.DRAFT,
            ))
            result.imported = 1

        self._commit("upsert", user_id)
        logger.info(f"✅ Upserted {hours}h on {day} for user {user_id}")
        return self._after_write(user_id, [day], result)

    def create_entry(
        self,
        user_id: str,
        day,
        hours,
        row_key: Optional[RowKey] = None,
        description: Optional[str] = None
    ) -> WriteResult:
        day = _parse_day(day)
        hours = validate_hours(hours)
        if hours <= 0:
            raise ValidationError("Hours must be greater than 0.", field="hours")
        row_key = row_key or RowKey()
        self.users.get_or_create(user_id)
        self._ensure_row_open(user_id, row_key, day)

        entry = self.entries.add(TimesheetEntry(
            user_id=user_id,
            date=day,
            hours=hours,
            description=description,
            project_id=row_key.project_id,
            task_id=row_key.task_id,
            role_id=row_key.role_id,
            entry_type=row_key.entry_type,
            status=EntryStatus.DRAFT,
        ))
        self._commit("create", user_id)
        self.db.refresh(entry)
        logger.info(f"✅ Created entry {entry.id}: {hours}h on {day} for user {user_id}")
        return self._after_write(user_id, [day], WriteResult(entry=entry, imported=1))

    def update_entry(
        self,
        user_id: str,
        entry_id: str,
        hours=None,
        day=None,
        row_key: Optional[RowKey] = None,
        description: Optional[str] = None
    ) -> WriteResult:
        """Change a Draft entry. Setting hours to 0 deletes it."""
        logger.info(f"🔄 Attempting to update entry {entry_id} for user {user_id}")
        new_hours = validate_hours(hours) if hours is not None else None
        new_day = _parse_day(day) if day is not None else None

        entry = self._get_owned(user_id, entry_id)
        ensure_mutable(entry)
        source = (entry.row_key, start_of_week(entry.date))
        self._ensure_row_open(user_id, entry.row_key, entry.date)
        target = (row_key if row_key is not None else entry.row_key, start_of_week(new_day or entry.date))
        if target != source:
            self._ensure_row_open(user_id, target[0], target[1])

        touched = {entry.date}
        result = WriteResult()
        if new_hours is not None and new_hours <= 0:
            self.entries.delete(entry)
            result.deleted = 1
        else:
            if new_hours is not None:
                entry.hours = new_hours
            if new_day is not None:
                entry.date = new_day
                touched.add(new_day)
            if row_key is not None:
                entry.project_id = row_key.project_id
                entry.task_id = row_key.task_id
                entry.role_id = row_key.role_id
                entry.entry_type = row_key.entry_type
            if description is not None:
                entry.description = description
            result.entry = entry
            result.updated = 1

        self._commit("update", user_id)
        logger.info(f"✅ Successfully updated entry {entry_id}")
        return self._after_write(user_id, touched, result)

    def delete_entry(self, user_id: str, entry_id: str) -> WriteResult:
        logger.info(f"🗑️ Attempting to delete entry {entry_id} for user {user_id}")
        entry = self._get_owned(user_id, entry_id)
        ensure_mutable(entry)
        self._ensure_row_open(user_id, entry.row_key, entry.date)
        day = entry.date
        self.entries.delete(entry)
        self._commit("delete", user_id)
        logger.info(f"✅ Successfully deleted entry {entry_id}")
        return self._after_write(user_id, [day], WriteResult(deleted=1))

    # ---- grid rows ----

    def reassign_row(self, user_id: str, week_start, previous: RowKey, next_key: RowKey) -> int:
        """Move a whole week row to another grouping key. Hours do not change."""
        week_start = start_of_week(_parse_day(week_start))
        entries = self.entries.list_row_in_week(user_id, previous, week_start)
        ensure_row_mutable(entries)
        for entry in entries:
            entry.project_id = next_key.project_id
            entry.task_id = next_key.task_id
            entry.role_id = next_key.role_id
            entry.entry_type = next_key.entry_type
        self._commit("reassign row", user_id)
        logger.info(f"Reassigned {len(entries)} entries in week {week_start} for user {user_id}")
        return len(entries)

    def delete_row(self, user_id: str, week_start, row_key: RowKey) -> WriteResult:
        week_start = start_of_week(_parse_day(week_start))
        entries = self.entries.list_row_in_week(user_id, row_key, week_start)
        ensure_row_mutable(entries)
        if not entries:
            return WriteResult()
        touched = [e.date for e in entries]
        for entry in entries:
            self.entries.delete(entry)
        self._commit("delete row", user_id)
        logger.info(f"Deleted row of {len(entries)} entries in week {week_start} for user {user_id}")
        return self._after_write(user_id, touched, WriteResult(deleted=len(entries)))

    # ---- imports ----

    def _validate_import(self, rows: List[Dict[str, Any]]) -> List[Tuple[date, RowKey, float, Optional[str]]]:
        cells: Dict[Tuple[date, RowKey], Tuple[float, Optional[str]]] = {}
        errors = []
        for index, row in enumerate(rows, start=1):
            try:
                day = _parse_day(row.get("date"))
                hours = validate_hours(row.get("hours"))
                key = row_key_from(row)
            except ValidationError as e:
                errors.append(f"Row {index}: {e}")
                continue
            # a later row for the same cell wins
            cells[(day, key)] = (hours, row.get("description"))
        if errors:
            raise ValidationError("; ".join(errors), field="rows")
        return [(day, key, hours, description) for (day, key), (hours, description) in cells.items()]

    def _apply_import(self, user_id: str, cells, default_description: str) -> WriteResult:
        self.users.get_or_create(user_id)
        result = WriteResult()

        plan = []
        checked = set()
        for day, key, hours, description in cells:
            if hours <= 0:
                result.skipped += 1
                continue
            row = (key, start_of_week(day))
            if row not in checked:
                self._ensure_row_open(user_id, key, day)
                checked.add(row)
            existing = self.entries.find_by_row_and_date(user_id, key, day)
            if existing is not None:
                ensure_mutable(existing)
            plan.append((existing, day, key, hours, description))

        touched = []
        for existing, day, key, hours, description in plan:
            touched.append(day)
            if existing is not None:
                existing.hours = hours
                result.updated += 1
            else:
                self.entries.add(TimesheetEntry(
                    user_id=user_id,
                    date=day,
                    hours=hours,
                    description=description or default_description,
                    project_id=key.project_id,
                    task_id=key.task_id,
                    role_id=key.role_id,
                    entry_type=key.entry_type,
                    status=EntryStatus.DRAFT,
                ))
                result.imported += 1

        self._commit("import", user_id)
        if not touched:
            return result
        logger.info(f"Imported for user {user_id}: {result.imported} new, {result.updated} updated, {result.skipped} skipped")
        return self._after_write(user_id, touched, result)

    def import_entries(self, user_id: str, rows: List[Dict[str, Any]]) -> WriteResult:
        """
        Bulk import of parsed file rows (date, hours, optional grouping key).
        Either every row is applied or none is.
        """
        return self._apply_import(user_id, self._validate_import(rows), "Imported from file")

    def import_week_grid(self, user_id: str, week_start, rows: List[Dict[str, Any]]) -> WriteResult:
        """Import a reviewed week grid: one row per grouping key with seven daily hours, Sunday first."""
        week_start = start_of_week(_parse_day(week_start))
        flat = []
        for index, row in enumerate(rows, start=1):
            hours = row.get("hours") or []
            if len(hours) > DAYS_IN_WEEK:
                raise ValidationError(f"Row {index}: at most {DAYS_IN_WEEK} daily values allowed", field="rows")
            for offset, value in enumerate(hours):
                flat.append({**row, "date": week_start + timedelta(days=offset), "hours": value})
        return self._apply_import(user_id, self._validate_import(flat), "Imported from screenshot")

    # ---- workflow ----

    def submit_week(self, user_id: str, week_start) -> int:
        return self.state.submit_week(user_id, _parse_day(week_start))

    def approve_week(self, user_id: str, week_start) -> int:
        return self.state.approve_week(user_id, _parse_day(week_start))

    def recall_week(self, user_id: str, week_start) -> int:
        return self.state.recall_week(user_id, _parse_day(week_start))

    def reopen_week(self, user_id: str, week_start) -> int:
        return self.state.reopen_week(user_id, _parse_day(week_start))

    # ---- reads ----

    def get_week_data(self, user_id: str, week_start) -> Dict[str, Any]:
        week_start = start_of_week(_parse_day(week_start))
        entries = self.entries.list_in_week(user_id, week_start)

        rows: Dict[RowKey, Dict[str, Any]] = {}
        for entry in entries:
            key = entry.row_key
            row = rows.setdefault(key, {
                **key.as_dict(),
                "hours": [0.0] * DAYS_IN_WEEK,
                "locked": False,
            })
            offset = (entry.date - week_start).days
            row["hours"][offset] = round2(row["hours"][offset] + entry.hours)
            row["locked"] = row["locked"] or EntryStatus(entry.status) != EntryStatus.DRAFT

        return {
            "week_start_date": week_start.isoformat(),
            "week_end_date": week_end(week_start).isoformat(),
            "threshold": self.config.get(WEEKLY_THRESHOLD_HOURS),
            "total_hours": round2(sum(e.hours for e in entries)),
            "entries": [entry_to_dict(e) for e in entries],
            "rows": list(rows.values()),
        }

    # ---- admin ----

    def set_initial_balance(self, user_id: str, balance) -> WriteResult:
        balance = validate_balance(balance)
        self.users.set_initial_balance(user_id, balance)
        logger.info(f"Initial lieu balance of {user_id} set to {balance}")
        return self._after_write(user_id, [], WriteResult())

    def set_config(self, key: str, value) -> float:
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ValidationError("Config value must be a number.", field="value")
        if not math.isfinite(value):
            raise ValidationError("Config value must be a finite number.", field="value")
        stored = self.config.set(key, value)
        if key == WEEKLY_THRESHOLD_HOURS:
            # Threshold applies to every historical week, so every ledger is rebuilt
            for recomputation in self.ledger.recalculate_all().values():
                self.notifier.notify_ledger_changes(recomputation)
        return stored


# ------------------------------
# module-level entry points
# ------------------------------

def recalculate_ledger(db: Session, user_id: str) -> List[LedgerWeek]:
    """Recompute one user's ledger and raise the notifications it warrants."""
    recomputation = LedgerService(db).recalculate_ledger(user_id)
    NotificationService(db).notify_ledger_changes(recomputation)
    return recomputation.current


def generate_notifications(db: Session, user_id: str, now=None) -> List[Notification]:
    return NotificationService(db).generate_notifications(user_id, now)


def can_mutate_entry(entry: TimesheetEntry) -> bool:
    return can_mutate(entry)


def submit_week(db: Session, user_id: str, week_start) -> int:
    return TimesheetService(db).submit_week(user_id, week_start)
