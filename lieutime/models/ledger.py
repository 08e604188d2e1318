from sqlalchemy import Column, String, Float, Date, ForeignKey, UniqueConstraint
from lieutime.database import Base


class WeeklyLedgerRow(Base):
    """Derived weekly lieu snapshot. Rows are only ever written by the ledger engine."""
    __tablename__ = "lieu_ledger"

    id = Column(String(100), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    week_start_date = Column(Date, nullable=False)
    week_end_date = Column(Date, nullable=False)
    total_hours = Column(Float, nullable=False)
    overtime_hours = Column(Float, nullable=False)
    lieu_earned = Column(Float, nullable=False)
    running_balance = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "week_start_date", name="uq_lieu_ledger_user_week"),
    )

    def as_dict(self) -> dict:
        return {
            "week_start_date": self.week_start_date.isoformat(),
            "week_end_date": self.week_end_date.isoformat(),
            "total_hours": self.total_hours,
            "overtime_hours": self.overtime_hours,
            "lieu_earned": self.lieu_earned,
            "running_balance": self.running_balance,
        }

    def __repr__(self):
        return f"<WeeklyLedgerRow(user={self.user_id}, week={self.week_start_date}, total={self.total_hours}, balance={self.running_balance})>"
