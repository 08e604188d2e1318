from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from lieutime.routers import admin_router, notifications_router, timesheet_router
from lieutime.database import init_db
from lieutime.exceptions import (
    EntryNotFoundError,
    InvalidTransitionError,
    LockedEntryError,
    NotificationNotFoundError,
    PermissionDeniedError,
    RecomputeTransactionError,
    TimesheetError,
    ValidationError,
)
from lieutime.utils.scheduler import TaskScheduler
from lieutime.utils.logging_config import setup_logging, get_log_files_info
from lieutime.config import get_settings
import logging

# Setup comprehensive logging
logs_dir = setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()
scheduler = TaskScheduler()

ERROR_STATUS = {
    ValidationError: 422,
    LockedEntryError: 409,
    InvalidTransitionError: 409,
    EntryNotFoundError: 404,
    NotificationNotFoundError: 404,
    PermissionDeniedError: 403,
    RecomputeTransactionError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting lieu time service...")
    init_db()
    if settings.scheduler_enabled:
        scheduler.start()
    logger.info("Application started successfully")

    yield

    # Shutdown
    logger.info("Shutting down...")
    scheduler.stop()
    logger.info("Application stopped")


app = FastAPI(
    title="Lieu Time Tracker",
    description="Timesheet entries, weekly lieu ledger and notifications",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TimesheetError)
async def timesheet_error_handler(request: Request, exc: TimesheetError):
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    content = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    if isinstance(exc, LockedEntryError):
        content["entry_ids"] = exc.entry_ids
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content=content)


# Include routers
app.include_router(timesheet_router.router)
app.include_router(notifications_router.router)
app.include_router(admin_router.router)


@app.get("/")
async def root():
    return {
        "message": "Lieu Time Tracker API",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.app_env,
        "scheduler": "running" if scheduler.scheduler.running else "stopped"
    }


@app.get("/logs/info")
async def logs_info():
    """Get information about current log files."""
    return {
        "logs_directory": str(logs_dir.absolute()),
        "log_files": get_log_files_info()
    }
