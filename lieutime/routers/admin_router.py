from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import date
from lieutime.database import get_db
from lieutime.dependencies import admin_user
from lieutime.schemas import BalanceUpdate, ConfigUpdate
from lieutime.services.config_provider import ConfigProvider
from lieutime.services.ledger_service import LedgerService
from lieutime.services.repositories import UserRepository
from lieutime.services.timesheet_service import TimesheetService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(admin_user)])


@router.get("/users")
def list_users(db: Session = Depends(get_db)):
    ledger = LedgerService(db)
    users = []
    for user in UserRepository(db).list_all():
        summary = ledger.get_lieu_summary(user.id)
        users.append({
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "is_admin": user.is_admin,
            "initial_lieu_balance": user.initial_lieu_balance,
            "lieu_balance": summary["lieu_balance"],
            "total_entries": summary["total_entries"],
        })
    return {"users": users}


@router.put("/users/{user_id}/initial-balance")
def set_initial_balance(user_id: str, body: BalanceUpdate, db: Session = Depends(get_db)):
    result = TimesheetService(db).set_initial_balance(user_id, body.initial_lieu_balance)
    return {
        "user_id": user_id,
        "ledger": [week.as_dict() for week in result.ledger],
        "notifications": len(result.notifications),
    }


@router.get("/config")
def get_config(db: Session = Depends(get_db)):
    return ConfigProvider(db).all_values()


@router.put("/config/{key}")
def set_config(key: str, body: ConfigUpdate, db: Session = Depends(get_db)):
    value = TimesheetService(db).set_config(key, body.value)
    logger.info(f"Admin updated config '{key}' to {value}")
    return {"key": key, "value": value}


@router.post("/weeks/{user_id}/{week_start}/approve")
def approve_week(user_id: str, week_start: date, db: Session = Depends(get_db)):
    return {"approved": TimesheetService(db).approve_week(user_id, week_start)}


@router.post("/weeks/{user_id}/{week_start}/recall")
def recall_week(user_id: str, week_start: date, db: Session = Depends(get_db)):
    return {"recalled": TimesheetService(db).recall_week(user_id, week_start)}


@router.post("/weeks/{user_id}/{week_start}/reopen")
def reopen_week(user_id: str, week_start: date, db: Session = Depends(get_db)):
    return {"reopened": TimesheetService(db).reopen_week(user_id, week_start)}
