from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./lieutime.db"
    database_echo: bool = False

    # Notifications
    # Shared secret expected in the X-Cron-Secret header of POST /notifications/run.
    # Leave empty to allow unauthenticated calls (local development only).
    notifications_cron_secret: str = ""
    # The reminder day/hour live in the config table; the job only decides how
    # often the detector gets a chance to look at the clock.
    scheduler_enabled: bool = True
    notifications_job_minute: int = 5

    # Application
    app_env: str = "development"
    log_level: str = "INFO"
    logs_dir: str = "logs"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
