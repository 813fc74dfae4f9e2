import os, uuid
import logging
import traceback
from logging.handlers import RotatingFileHandler
from datetime import datetime
from typing import Optional
from collections import deque

from fastapi import FastAPI, Request, Depends
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from wandervibe.auth import init_db, require_admin, get_audit_logs
from wandervibe.itinerary import ItineraryValidationError
from wandervibe.models import User

APP_TITLE = "WanderVibe"
APP_VERSION = "1.0.0"

# ─────────────────────────── LOGGING SETUP ───────────────────────────
# In-memory log buffer for quick access via API
LOG_BUFFER_SIZE = 1000
log_buffer = deque(maxlen=LOG_BUFFER_SIZE)


class BufferHandler(logging.Handler):
    """Custom handler that stores logs in memory buffer"""
    def emit(self, record):
        try:
            msg = self.format(record)
            exc_text = None
            if record.exc_info:
                exc_text = ''.join(traceback.format_exception(*record.exc_info))
            log_buffer.append({
                "time": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "module": record.module,
                "name": record.name,
                "message": record.getMessage(),
                "formatted": msg,
                "exc_info": exc_text,
            })
        except Exception:
            self.handleError(record)


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "/data/wandervibe.log")

log_format = logging.Formatter(
    '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

# Root logger captures uvicorn and fastapi output too
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

logger = logging.getLogger("wandervibe")
logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

console_handler = logging.StreamHandler()
console_handler.setFormatter(log_format)
console_handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

buffer_handler = BufferHandler()
buffer_handler.setFormatter(log_format)
buffer_handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

root_logger.addHandler(console_handler)
root_logger.addHandler(buffer_handler)

# File handler (optional, only if writable)
try:
    log_dir = os.path.dirname(LOG_FILE)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    file_handler = RotatingFileHandler(
        LOG_FILE, maxBytes=10*1024*1024, backupCount=5  # 10MB per file, keep 5 backups
    )
    file_handler.setFormatter(log_format)
    file_handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    root_logger.addHandler(file_handler)
    logger.info(f"File logging enabled: {LOG_FILE}")
except OSError as e:
    logger.warning(f"Could not enable file logging: {e}")

logger.info(f"Logging initialized at level {LOG_LEVEL}")

# ─────────────────────────── APP ───────────────────────────

app = FastAPI(title=APP_TITLE, version=APP_VERSION)


class ExceptionLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except Exception as e:
            logger.error(
                f"Unhandled exception on {request.method} {request.url.path}: {e}",
                exc_info=True
            )
            raise


app.add_middleware(ExceptionLoggingMiddleware)


@app.exception_handler(StarletteHTTPException)
async def custom_http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Log HTTP errors and return them as JSON"""
    logger.warning(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(ItineraryValidationError)
async def itinerary_validation_handler(request: Request, exc: ItineraryValidationError):
    """Bad event data found while scheduling: reject the whole request"""
    logger.warning(f"Itinerary rejected on {request.url.path}: event {exc.event_id}: {exc.reason}")
    return JSONResponse({"detail": exc.reason, "event_id": exc.event_id}, status_code=400)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Log unexpected exceptions and return a reference id"""
    error_id = str(uuid.uuid4())[:8]
    logger.error(
        f"Unhandled exception [{error_id}] on {request.method} {request.url.path}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        {"detail": "Internal server error", "error_id": error_id},
        status_code=500,
    )


@app.on_event("startup")
def _startup():
    init_db()
    logger.info(f"{APP_TITLE} {APP_VERSION} started")


from wandervibe.plans import router as plans_router
from wandervibe.events import router as events_router
from wandervibe.invites import router as invites_router
from wandervibe.users import router as users_router

app.include_router(plans_router)
app.include_router(events_router)
app.include_router(invites_router)
app.include_router(users_router)


# ─────────────────────────── HEALTH & ADMIN ───────────────────────────

@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/admin/logs")
def get_logs(
    level: Optional[str] = None,
    limit: int = 100,
    search: Optional[str] = None,
    _: User = Depends(require_admin),
):
    """
    Get application logs (admin only)

    Query params:
    - level: Filter by log level (DEBUG, INFO, WARNING, ERROR)
    - limit: Number of logs to return (default 100)
    - search: Search text in log messages

    Returns log entries, most recent first
    """
    limit = max(1, min(limit, LOG_BUFFER_SIZE))

    logs = list(log_buffer)
    logs.reverse()

    if level:
        level = level.upper()
        logs = [l for l in logs if l["level"] == level]

    if search:
        search = search.lower()
        logs = [l for l in logs if search in l["message"].lower() or search in l.get("module", "").lower()]

    logs = logs[:limit]

    return {
        "count": len(logs),
        "total_in_buffer": len(log_buffer),
        "logs": logs,
    }


@app.get("/api/admin/audit")
def get_audit(
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    limit: int = 100,
    _: User = Depends(require_admin),
):
    """Recent audit log entries (admin only)"""
    entries = get_audit_logs(target_type=target_type, target_id=target_id, limit=max(1, min(limit, 500)))
    return {"count": len(entries), "entries": entries}
