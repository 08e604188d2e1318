import logging
import logging.handlers
import time
from datetime import datetime
from pathlib import Path
from lieutime.config import get_settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'

# logger name -> file, for components that get a log of their own
COMPONENT_LOGS = {
    'lieutime.services.ledger_service': "ledger.log",
    'lieutime.services.notification_service': "notifications.log",
    'lieutime.utils.scheduler': "scheduler.log",
}


def _logs_dir(logs_dir=None) -> Path:
    return Path(logs_dir or get_settings().logs_dir)


def _rotating_handler(path: Path, level, formatter, max_mb=5, backups=3):
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_mb*1024*1024,
        backupCount=backups,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(logs_dir=None, level=None):
    """
    Configure logging for the lieu time service.

    Everything goes to the console and app.log; the ledger engine, the
    notification detector and the scheduler also write to their own files,
    and errors from anywhere are copied to errors.log.
    """
    settings = get_settings()
    logs_dir = _logs_dir(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    log_format = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    # Console handler (for Docker logs)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(log_format)
    root_logger.addHandler(console_handler)

    root_logger.addHandler(_rotating_handler(logs_dir / "app.log", level, log_format, max_mb=10, backups=5))

    for name, filename in COMPONENT_LOGS.items():
        component_logger = logging.getLogger(name)
        component_logger.handlers.clear()
        component_logger.addHandler(_rotating_handler(logs_dir / filename, logging.DEBUG, log_format))
        component_logger.setLevel(logging.DEBUG)

    root_logger.addHandler(_rotating_handler(logs_dir / "errors.log", logging.ERROR, log_format, backups=5))

    # Suppress noisy third-party loggers
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("Logging configuration completed")
    logger.info(f"Log files will be saved to: {logs_dir.absolute()}")

    return logs_dir


def get_log_files_info(logs_dir=None):
    """
    Get information about current log files for debugging.
    """
    logs_dir = _logs_dir(logs_dir)
    if not logs_dir.exists():
        return {"status": "No logs directory found"}

    log_files = {}
    for log_file in sorted(logs_dir.glob("*.log")):
        try:
            stat = log_file.stat()
            log_files[log_file.name] = {
                "size_mb": round(stat.st_size / (1024*1024), 2),
                "modified": datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S")
            }
        except OSError as e:
            log_files[log_file.name] = {"error": str(e)}

    return log_files


def cleanup_old_logs(days_to_keep=30, logs_dir=None):
    """
    Delete log files (rotated backups included) older than `days_to_keep` days.
    Returns the names of the removed files.
    """
    logs_dir = _logs_dir(logs_dir)
    if not logs_dir.exists():
        return []

    cutoff_time = time.time() - (days_to_keep * 24 * 60 * 60)

    cleaned_files = []
    for log_file in logs_dir.glob("*.log*"):
        try:
            if log_file.stat().st_mtime < cutoff_time:
                log_file.unlink()
                cleaned_files.append(log_file.name)
        except OSError as e:
            logging.getLogger(__name__).warning(f"Failed to clean up {log_file}: {e}")

    if cleaned_files:
        logging.getLogger(__name__).info(f"Cleaned up old log files: {cleaned_files}")
    return cleaned_files
