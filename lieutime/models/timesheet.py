from sqlalchemy import Column, String, Float, Date, DateTime, Text, ForeignKey, Index, Enum as SQLEnum
from dataclasses import dataclass
from lieutime.utils.timezone import utc_now
from typing import Optional
import enum
import uuid
from lieutime.database import Base


class EntryStatus(str, enum.Enum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    RECALLED = "Recalled"


class EntryType(str, enum.Enum):
    WORK = "Work"
    ADMIN = "Admin"


@dataclass(frozen=True)
class RowKey:
    """
    Identity of one row in the weekly entry grid.
    None ids mean "Unassigned"; two keys are equal iff all four parts are equal.
    """
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    role_id: Optional[str] = None
    entry_type: EntryType = EntryType.WORK

    @classmethod
    def of(cls, entry: "TimesheetEntry") -> "RowKey":
        return cls(
            project_id=entry.project_id,
            task_id=entry.task_id,
            role_id=entry.role_id,
            entry_type=EntryType(entry.entry_type),
        )

    def as_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "task_id": self.task_id,
            "role_id": self.role_id,
            "entry_type": self.entry_type.value,
        }


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class TimesheetEntry(Base):
    __tablename__ = "timesheet_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)  # UTC calendar day
    hours = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    project_id = Column(String(64), nullable=True)
    task_id = Column(String(64), nullable=True)
    role_id = Column(String(64), nullable=True)
    entry_type = Column(
        SQLEnum(EntryType, native_enum=False, values_callable=_enum_values, length=10),
        nullable=False,
        default=EntryType.WORK,
    )
    status = Column(
        SQLEnum(EntryStatus, native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=EntryStatus.DRAFT,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_timesheet_entries_user_date", "user_id", "date"),
    )

    @property
    def row_key(self) -> RowKey:
        return RowKey.of(self)

    def __repr__(self):
        return f"<TimesheetEntry(user={self.user_id}, date={self.date}, hours={self.hours}, status={self.status})>"
