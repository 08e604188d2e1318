"""
Entry workflow: which statuses exist, which transitions are legal, and which
writes are allowed while an entry sits in a given status.

Only Draft entries may have their hours, date or grouping key changed, and only
Draft entries may be deleted. A grid row (all entries of one week sharing a
RowKey) is only writable as a whole when every entry in it is Draft.
"""
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional
from sqlalchemy.orm import Session
from lieutime.exceptions import InvalidTransitionError, LockedEntryError, ValidationError
from lieutime.models.timesheet import EntryStatus, EntryType, RowKey, TimesheetEntry
from lieutime.services.repositories import EntryRepository
from lieutime.utils.timezone import start_of_week
import logging

logger = logging.getLogger(__name__)

MAX_DAILY_HOURS = 24

TRANSITIONS = {
    EntryStatus.DRAFT: {EntryStatus.SUBMITTED},
    EntryStatus.SUBMITTED: {EntryStatus.APPROVED, EntryStatus.RECALLED},
    EntryStatus.RECALLED: {EntryStatus.DRAFT},
    EntryStatus.APPROVED: set(),
}


def can_mutate(entry: TimesheetEntry) -> bool:
    return EntryStatus(entry.status) == EntryStatus.DRAFT


def can_delete_row(entries: Iterable[TimesheetEntry]) -> bool:
    return all(can_mutate(e) for e in entries)


def can_reassign_row(entries: Iterable[TimesheetEntry]) -> bool:
    return all(can_mutate(e) for e in entries)


def ensure_mutable(entry: TimesheetEntry) -> None:
    if not can_mutate(entry):
        logger.info(f"Rejected write to locked entry {entry.id} ({EntryStatus(entry.status).value})")
        raise LockedEntryError(
            f"Entry on {entry.date.isoformat()} is {EntryStatus(entry.status).value} and locked.",
            entry_ids=[entry.id],
        )


def ensure_row_mutable(entries: Iterable[TimesheetEntry]) -> None:
    locked = [e for e in entries if not can_mutate(e)]
    if locked:
        logger.info(f"Rejected write to row with {len(locked)} locked entries")
        raise LockedEntryError(
            "Row contains submitted entries and is locked.",
            entry_ids=[e.id for e in locked],
        )


def can_transition(current: EntryStatus, target: EntryStatus) -> bool:
    return EntryStatus(target) in TRANSITIONS[EntryStatus(current)]


def transition(entry: TimesheetEntry, target: EntryStatus) -> TimesheetEntry:
    current = EntryStatus(entry.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move entry from {current.value} to {EntryStatus(target).value}"
        )
    entry.status = EntryStatus(target)
    return entry


def validate_hours(value) -> float:
    """Hours must be a finite number in [0, 24] with at most two decimals."""
    if isinstance(value, bool):
        raise ValidationError("Hours must be a number.", field="hours")
    try:
        hours = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("Hours must be a number.", field="hours")
    if not hours.is_finite():
        raise ValidationError("Hours must be a finite number.", field="hours")
    if hours < 0 or hours > MAX_DAILY_HOURS:
        raise ValidationError(f"Hours must be between 0 and {MAX_DAILY_HOURS}.", field="hours")
    if hours != hours.quantize(Decimal("0.01")):
        raise ValidationError("Hours must have at most 2 decimal places.", field="hours")
    return float(hours)


def _validate_ref(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string or null.", field=field)
    return value.strip()


def validate_row_key(
    project_id: Optional[str] = None,
    task_id: Optional[str] = None,
    role_id: Optional[str] = None,
    entry_type="Work"
) -> RowKey:
    try:
        kind = EntryType(entry_type if entry_type is not None else EntryType.WORK)
    except ValueError:
        raise ValidationError("Entry type must be Work or Admin.", field="entry_type")
    return RowKey(
        project_id=_validate_ref(project_id, "project_id"),
        task_id=_validate_ref(task_id, "task_id"),
        role_id=_validate_ref(role_id, "role_id"),
        entry_type=kind,
    )


class EntryStateMachine:
    """Bulk week transitions. Each is idempotent: entries not in the source status are left alone."""

    def __init__(self, db: Session):
        self.db = db
        self.entries = EntryRepository(db)

    def _move_week(self, user_id: str, week_start: date, source: EntryStatus, target: EntryStatus) -> int:
        if not can_transition(source, target):
            raise InvalidTransitionError(f"Cannot move entries from {source.value} to {target.value}")
        week_start = start_of_week(week_start)
        count = self.entries.bulk_update_status(user_id, week_start, source, target)
        self.db.commit()
        logger.info(f"User {user_id} week {week_start}: {count} entries {source.value} -> {target.value}")
        return count

    def submit_week(self, user_id: str, week_start: date) -> int:
        return self._move_week(user_id, week_start, EntryStatus.DRAFT, EntryStatus.SUBMITTED)

    def approve_week(self, user_id: str, week_start: date) -> int:
        return self._move_week(user_id, week_start, EntryStatus.SUBMITTED, EntryStatus.APPROVED)

    def recall_week(self, user_id: str, week_start: date) -> int:
        return self._move_week(user_id, week_start, EntryStatus.SUBMITTED, EntryStatus.RECALLED)

    def reopen_week(self, user_id: str, week_start: date) -> int:
        return self._move_week(user_id, week_start, EntryStatus.RECALLED, EntryStatus.DRAFT)
