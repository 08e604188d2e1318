from sqlalchemy import Column, String, Float, Boolean, DateTime
from lieutime.utils.timezone import utc_now
from lieutime.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=True)
    email = Column(String(200), nullable=True, unique=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    # Lieu hours carried in from before the first logged week
    initial_lieu_balance = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    def __repr__(self):
        return f"<User(id={self.id}, admin={self.is_admin}, initial_lieu_balance={self.initial_lieu_balance})>"
