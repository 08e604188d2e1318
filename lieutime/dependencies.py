from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from lieutime.config import get_settings
from lieutime.database import get_db
from lieutime.exceptions import PermissionDeniedError
from lieutime.models.user import User
from lieutime.services.repositories import UserRepository
import hmac
import logging

logger = logging.getLogger(__name__)


def current_user(
    x_user_id: str = Header(..., min_length=1, max_length=64),
    db: Session = Depends(get_db)
) -> User:
    """The caller, identified by the X-User-Id header. First contact registers the user."""
    user = UserRepository(db).get_or_create(x_user_id.strip())
    db.commit()
    return user


def admin_user(user: User = Depends(current_user)) -> User:
    if not user.is_admin:
        logger.warning(f"Admin endpoint refused for user {user.id}")
        raise PermissionDeniedError("Admin rights required")
    return user


def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    secret = get_settings().notifications_cron_secret
    if not secret:
        return
    if not x_cron_secret or not hmac.compare_digest(secret.encode(), x_cron_secret.encode()):
        raise HTTPException(status_code=403, detail="Invalid cron secret")
