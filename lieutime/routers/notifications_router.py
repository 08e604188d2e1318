from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from lieutime.database import get_db
from lieutime.dependencies import current_user, verify_cron_secret
from lieutime.models.user import User
from lieutime.services.notification_service import NotificationService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    limit: int = Query(10, ge=1, le=100),
    unread_only: bool = False,
    user: User = Depends(current_user),
    db: Session = Depends(get_db)
):
    service = NotificationService(db)
    notifications = service.list_notifications(user.id, limit=limit, unread_only=unread_only)
    return {
        "notifications": [n.as_dict() for n in notifications],
        "unread_count": service.unread_count(user.id),
    }


@router.get("/unread")
def unread_count(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return {"unread_count": NotificationService(db).unread_count(user.id)}


@router.post("/refresh")
def refresh(user: User = Depends(current_user), db: Session = Depends(get_db)):
    """Run the periodic checks for the caller. Safe to call on every page load."""
    created = NotificationService(db).generate_notifications(user.id)
    return {"created": [n.as_dict() for n in created]}


@router.post("/run", dependencies=[Depends(verify_cron_secret)])
def run_for_all_users(db: Session = Depends(get_db)):
    results = NotificationService(db).generate_for_all_users()
    logger.info(f"Cron notification run: {sum(results.values())} created for {len(results)} users")
    return {"users": len(results), "created": sum(results.values())}


@router.put("/mark-all-read")
def mark_all_read(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return {"updated": NotificationService(db).mark_all_read(user.id)}


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return NotificationService(db).mark_read(user.id, notification_id).as_dict()


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    NotificationService(db).delete(user.id, notification_id)
    return {"deleted": notification_id}
