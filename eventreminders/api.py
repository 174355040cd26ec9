"""FastAPI application exposing the reminder scheduler trigger."""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .database import SessionLocal
from .engine import cleanup_stale_jobs, run_reminder_cycle
from .errors import (
    AuthError,
    ConfigError,
    InvalidJobTransition,
    JobNotFound,
    TransientStoreError,
)
from .jobs import list_due_jobs, transition_job
from .models import ReminderJob
from .scheduler import start_scheduler, stop_scheduler
from .storage import fetch_trigger_token, init_db
from .utils import to_naive_utc

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")

RESPONSE_COUNTERS = (
    "events_processed",
    "reminders_scheduled",
    "reminders_skipped_duplicate",
    "reminders_failed",
)


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventreminders")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Event Reminder Scheduler", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    logger.warning(
        "Rejected %s %s: %s", request.method, request.url.path, exc
    )
    return _failure(401, str(exc))


@app.exception_handler(ConfigError)
async def config_error_handler(request: Request, exc: ConfigError):
    logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc)
    return _failure(500, str(exc))


@app.exception_handler(TransientStoreError)
async def transient_store_error_handler(request: Request, exc: TransientStoreError):
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return _failure(503, str(exc))


@app.exception_handler(JobNotFound)
async def job_not_found_handler(request: Request, exc: JobNotFound):
    return _failure(404, str(exc))


@app.exception_handler(InvalidJobTransition)
async def invalid_transition_handler(request: Request, exc: InvalidJobTransition):
    return _failure(409, str(exc))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _failure(exc.status_code, detail)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        return _failure(503, "The database is busy at the moment. Try again shortly.")
    logger.error(
        "Operational database error on %s %s: %s",
        request.method,
        request.url.path,
        raw,
    )
    return _failure(500, "Database error")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"success": False, "error": "Invalid request", "detail": exc.errors()},
        status_code=422,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return _failure(500, "Internal server error")


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_trigger_token(request: Request) -> None:
    """Reject requests without the provisioned bearer token before any work runs."""
    if not request.headers.get("authorization"):
        raise AuthError("Missing authorization header")
    token = _get_bearer_token(request)
    if token is None:
        raise AuthError("Authorization header must use the Bearer scheme")
    stored = fetch_trigger_token()
    if not stored:
        raise ConfigError("Trigger token is not configured")
    if not secrets.compare_digest(token, stored):
        raise AuthError("Invalid trigger token")


def _parse_iso_datetime_param(name: str, raw: str | None) -> datetime | None:
    """Parse an ISO8601 datetime query parameter or raise a 400."""
    if not raw:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(raw))
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid {name}; use ISO8601 format"
        ) from exc


def _serialize_job(job: ReminderJob):
    return {
        "id": job.id,
        "event_id": job.event_id,
        "user_id": job.user_id,
        "tier_id": job.tier_id,
        "fire_at": job.fire_at.isoformat(),
        "dedup_key": job.dedup_key,
        "status": job.status,
        "notification_type": job.notification_type,
        "title": job.title,
        "body": job.body,
        "data": {"event_id": job.event_id, "reminder_type": job.tier_id},
        "cancel_reason": job.cancel_reason,
        "created_at": job.created_at.isoformat(),
        "status_changed_at": job.status_changed_at.isoformat(),
    }


class JobStatusPayload(BaseModel):
    status: str = Field(..., description="Either 'sent' or 'cancelled'")
    reason: str | None = Field(None, max_length=32)


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/api/reminders/schedule", dependencies=[Depends(require_trigger_token)])
def schedule_event_reminders(now: str | None = Query(None)):
    """Run one reminder scheduling cycle and report its counters."""
    stats = run_reminder_cycle(now=_parse_iso_datetime_param("now", now))
    return {"success": True, **{key: stats[key] for key in RESPONSE_COUNTERS}}


@app.post("/api/reminders/cleanup", dependencies=[Depends(require_trigger_token)])
def cleanup_reminders(now: str | None = Query(None)):
    stats = cleanup_stale_jobs(now=_parse_iso_datetime_param("now", now))
    return {"success": True, "cancelled": stats}


@app.get("/api/reminders/jobs/due", dependencies=[Depends(require_trigger_token)])
def api_due_jobs(
    now: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    jobs = list_due_jobs(db, now=_parse_iso_datetime_param("now", now), limit=limit)
    return {"success": True, "jobs": [_serialize_job(job) for job in jobs]}


@app.post(
    "/api/reminders/jobs/{job_id}/status",
    dependencies=[Depends(require_trigger_token)],
)
def api_update_job_status(
    job_id: str, payload: JobStatusPayload, db: Session = Depends(get_db)
):
    job = transition_job(db, job_id, payload.status.strip().lower(), reason=payload.reason)
    return {"success": True, "job": _serialize_job(job)}
