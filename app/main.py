import os
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError as RequestBodyValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import psycopg

from app.api.dependencies import get_audit_logger, get_notifier
from app.api.routes import router as api_router
from app.config import get_settings
from app.db import DatabaseConfigurationError, DatabaseConnectionError, get_connection, ping
from app.runtime_db_guard import DB_BOOTSTRAP_STATE, apply_schema_bootstrap, database_error_detail
from app.services.errors import RequestValidationError, ServiceError, conflict_from_integrity_error
from app.services.side_effects import shutdown_executor
from app.services.term_scheduler import TERM_SCHEDULER_STATE, start_term_scheduler_from_settings, stop_term_scheduler

DEFAULT_CORS_ALLOW_ORIGINS = (
    "http://127.0.0.1:3000,"
    "http://localhost:3000,"
    "http://127.0.0.1:5173,"
    "http://localhost:5173"
)

logger = logging.getLogger(__name__)


def _resolve_cors_allow_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", DEFAULT_CORS_ALLOW_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _is_dev_env() -> bool:
    try:
        return get_settings().app_env.strip().lower() in {"dev", "development", "local"}
    except Exception:  # noqa: BLE001
        return False


app = FastAPI(title="KK Profiling Backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_cors_allow_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)


@app.on_event("startup")
def startup_database_and_scheduler():
    state = apply_schema_bootstrap()
    logger.info(
        "schema_bootstrap enabled=%s ok=%s detail=%s path=%s",
        state["enabled"],
        state["ok"],
        state["detail"],
        state["schema_path"],
    )
    try:
        start_term_scheduler_from_settings(audit=get_audit_logger(), notifier=get_notifier())
    except Exception as exc:  # noqa: BLE001
        logger.warning("term_status_scheduler_start_failed error=%s", exc)


@app.on_event("shutdown")
def shutdown_background_work():
    stop_term_scheduler()
    shutdown_executor(wait=False)


@app.exception_handler(ServiceError)
def handle_service_error(_, exc: ServiceError):  # noqa: ANN001
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def _field_label(loc) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
    return ".".join(parts) or "request"


@app.exception_handler(RequestBodyValidationError)
def handle_request_body_error(_, exc: RequestBodyValidationError):  # noqa: ANN001
    errors = [f"{_field_label(err.get('loc', ()))}: {err.get('msg', 'invalid value')}" for err in exc.errors()]
    return handle_service_error(None, RequestValidationError(errors))


@app.exception_handler(psycopg.Error)
def handle_psycopg_error(_, exc: psycopg.Error):  # noqa: ANN001
    conflict = conflict_from_integrity_error(exc)
    if conflict is not None:
        return handle_service_error(None, conflict)
    return JSONResponse(
        status_code=503,
        content={"detail": database_error_detail(exc), "error": "database_error"},
    )


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    content = {"detail": "Internal server error", "error": "internal_error"}
    if _is_dev_env():
        content["debug"] = f"{type(exc).__name__}: {exc}"
    return JSONResponse(status_code=500, content=content)


@app.get("/health")
def health_check():
    return {"status": "ok", "term_scheduler": TERM_SCHEDULER_STATE}


def _db_degraded(reason: str, **extra) -> JSONResponse:
    content = {"status": "degraded", "db": "error", "reason": reason, **extra, "bootstrap": DB_BOOTSTRAP_STATE}
    return JSONResponse(status_code=503, content=content)


@app.get("/health/db")
def health_db_check():
    try:
        with get_connection() as conn:
            db_state = ping(conn)
    except DatabaseConfigurationError as exc:
        return _db_degraded("database_not_configured", detail=str(exc))
    except DatabaseConnectionError as exc:
        return _db_degraded("database_connection_failed", detail=str(exc))
    except psycopg.Error as exc:
        return _db_degraded("database_query_failed", sqlstate=exc.sqlstate)

    return {"status": "ok", "db": "ok", **db_state, "bootstrap": DB_BOOTSTRAP_STATE}
