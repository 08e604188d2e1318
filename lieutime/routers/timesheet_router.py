from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import date
from lieutime.database import get_db
from lieutime.dependencies import current_user
from lieutime.models.user import User
from lieutime.schemas import (
    EntryUpdate,
    EntryUpsert,
    ImportRequest,
    RowDelete,
    RowReassign,
    WeekGridImport,
)
from lieutime.services.ledger_service import LedgerService
from lieutime.services.timesheet_service import TimesheetService, WriteResult, entry_to_dict, row_key_from
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/timesheet", tags=["timesheet"])


def write_response(result: WriteResult) -> dict:
    return {
        "entry": entry_to_dict(result.entry) if result.entry is not None else None,
        "imported": result.imported,
        "updated": result.updated,
        "deleted": result.deleted,
        "skipped": result.skipped,
        "ledger": [week.as_dict() for week in result.ledger],
        "notifications": [n.as_dict() for n in result.notifications],
    }


@router.get("/weeks/{week_start}")
def get_week(week_start: date, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return TimesheetService(db).get_week_data(user.id, week_start)


@router.put("/entries")
def upsert_entry(body: EntryUpsert, user: User = Depends(current_user), db: Session = Depends(get_db)):
    """Set the hours of one grid cell. Zero hours clears it."""
    result = TimesheetService(db).upsert_entry(
        user.id,
        body.date,
        body.hours,
        row_key=row_key_from(body.model_dump()),
        description=body.description,
    )
    return write_response(result)


@router.post("/entries", status_code=201)
def create_entry(body: EntryUpsert, user: User = Depends(current_user), db: Session = Depends(get_db)):
    result = TimesheetService(db).create_entry(
        user.id,
        body.date,
        body.hours,
        row_key=row_key_from(body.model_dump()),
        description=body.description,
    )
    return write_response(result)


@router.patch("/entries/{entry_id}")
def update_entry(entry_id: str, body: EntryUpdate, user: User = Depends(current_user), db: Session = Depends(get_db)):
    result = TimesheetService(db).update_entry(
        user.id,
        entry_id,
        hours=body.hours,
        day=body.date,
        row_key=row_key_from(body.row_key.model_dump()) if body.row_key else None,
        description=body.description,
    )
    return write_response(result)


@router.delete("/entries/{entry_id}")
def delete_entry(entry_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return write_response(TimesheetService(db).delete_entry(user.id, entry_id))


@router.post("/rows/reassign")
def reassign_row(body: RowReassign, user: User = Depends(current_user), db: Session = Depends(get_db)):
    count = TimesheetService(db).reassign_row(
        user.id,
        body.week_start,
        row_key_from(body.previous.model_dump()),
        row_key_from(body.next.model_dump()),
    )
    return {"updated": count}


@router.post("/rows/delete")
def delete_row(body: RowDelete, user: User = Depends(current_user), db: Session = Depends(get_db)):
    result = TimesheetService(db).delete_row(user.id, body.week_start, row_key_from(body.row_key.model_dump()))
    return write_response(result)


@router.post("/import")
def import_entries(body: ImportRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
    """Bulk import of rows parsed from an uploaded CSV file."""
    rows = [row.model_dump() for row in body.rows]
    logger.info(f"Import of {len(rows)} rows requested by {user.id}")
    return write_response(TimesheetService(db).import_entries(user.id, rows))


@router.post("/import/week-grid")
def import_week_grid(body: WeekGridImport, user: User = Depends(current_user), db: Session = Depends(get_db)):
    """Import a reviewed week grid (seven daily hours per row, Sunday first)."""
    rows = [row.model_dump() for row in body.rows]
    return write_response(TimesheetService(db).import_week_grid(user.id, body.week_start, rows))


@router.post("/weeks/{week_start}/submit")
def submit_week(week_start: date, user: User = Depends(current_user), db: Session = Depends(get_db)):
    count = TimesheetService(db).submit_week(user.id, week_start)
    return {"submitted": count}


@router.get("/ledger")
def get_ledger(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return {"ledger": [week.as_dict() for week in LedgerService(db).get_ledger(user.id)]}


@router.get("/summary")
def get_summary(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return LedgerService(db).get_lieu_summary(user.id)
