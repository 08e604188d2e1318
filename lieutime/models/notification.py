from sqlalchemy import Column, String, Boolean, DateTime, Text, JSON, ForeignKey, UniqueConstraint, Index
from lieutime.utils.timezone import utc_now
import uuid
from lieutime.database import Base


class NotificationType:
    HOURS_DISCREPANCY = "hours_discrepancy"
    LIEU_UPDATE = "lieu_update"
    LIEU_MILESTONE = "lieu_milestone"
    WEEKLY_REMINDER = "weekly-reminder"
    ANOMALY = "anomaly"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(40), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=True)
    # Copy of metadata["key"] so duplicates can be rejected by the database
    dedup_key = Column(String(200), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "type", "dedup_key", name="uq_notifications_user_type_key"),
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "metadata": self.metadata_,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification(user={self.user_id}, type={self.type}, key={self.dedup_key})>"
