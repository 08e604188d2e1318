"""
Key/value configuration read from the `config` table, with documented defaults.
"""
from dataclasses import dataclass
from sqlalchemy.orm import Session
from lieutime.models.config_entry import ConfigEntry
from lieutime.exceptions import ConfigMissingError, ValidationError
import logging

logger = logging.getLogger(__name__)

WEEKLY_THRESHOLD_HOURS = "weekly_threshold_hours"
REMINDER_DAY = "notifications_weekly_reminder_day"
REMINDER_HOUR = "notifications_weekly_reminder_hour"

DEFAULTS = {
    WEEKLY_THRESHOLD_HOURS: 40.0,
    REMINDER_DAY: 5,   # Friday, Sunday=0
    REMINDER_HOUR: 16,
}


@dataclass(frozen=True)
class LedgerConfig:
    weekly_threshold_hours: float = DEFAULTS[WEEKLY_THRESHOLD_HOURS]
    reminder_day: int = DEFAULTS[REMINDER_DAY]
    reminder_hour: int = DEFAULTS[REMINDER_HOUR]


def _validate(key: str, value: float) -> float:
    if key not in DEFAULTS:
        raise ValidationError(f"Unknown config key '{key}'", field="key")
    if key == WEEKLY_THRESHOLD_HOURS and not 0 < value <= 168:
        raise ValidationError("Weekly threshold must be between 0 and 168 hours", field="value")
    if key == REMINDER_DAY and (value != int(value) or not 0 <= value <= 6):
        raise ValidationError("Reminder day must be an integer 0-6 (Sunday=0)", field="value")
    if key == REMINDER_HOUR and (value != int(value) or not 0 <= value <= 23):
        raise ValidationError("Reminder hour must be an integer 0-23", field="value")
    return value


class ConfigProvider:
    def __init__(self, db: Session):
        self.db = db

    def require(self, key: str) -> float:
        row = self.db.get(ConfigEntry, key)
        if row is None or row.value is None:
            raise ConfigMissingError(key)
        return row.value

    def get(self, key: str) -> float:
        """Stored value, or the documented default when the key is absent."""
        try:
            return self.require(key)
        except ConfigMissingError:
            logger.debug(f"Config '{key}' not set, using default {DEFAULTS.get(key)}")
            return DEFAULTS[key]

    def load(self) -> LedgerConfig:
        return LedgerConfig(
            weekly_threshold_hours=float(self.get(WEEKLY_THRESHOLD_HOURS)),
            reminder_day=int(self.get(REMINDER_DAY)),
            reminder_hour=int(self.get(REMINDER_HOUR)),
        )

    def all_values(self) -> dict:
        return {key: self.get(key) for key in DEFAULTS}

    def set(self, key: str, value: float) -> float:
        value = _validate(key, float(value))
        row = self.db.get(ConfigEntry, key)
        if row is None:
            self.db.add(ConfigEntry(key=key, value=value))
        else:
            row.value = value
        self.db.commit()
        logger.info(f"Config '{key}' set to {value}")
        return value
