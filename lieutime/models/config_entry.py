from sqlalchemy import Column, String, Float, DateTime
from lieutime.utils.timezone import utc_now
from lieutime.database import Base


class ConfigEntry(Base):
    __tablename__ = "config"

    key = Column(String(100), primary_key=True)
    value = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<ConfigEntry({self.key}={self.value})>"
