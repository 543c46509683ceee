from functools import lru_cache
from secrets import compare_digest

from fastapi import Header, HTTPException
import psycopg

from app.config import get_settings
from app.db import DatabaseConfigurationError, DatabaseConnectionError, get_connection
from app.runtime_db_guard import database_error_detail
from app.services.audit import AuditLogger
from app.services.errors import conflict_from_integrity_error
from app.services.notifications import NotificationService
from app.services.repository import PostgresRepository

BEARER_PREFIX = "Bearer "


def _db_unavailable(detail: str) -> HTTPException:
    return HTTPException(status_code=503, detail=detail)


def get_repository():
    """One connection per request; services commit or roll back themselves."""
    try:
        with get_connection() as conn:
            yield PostgresRepository(conn)
    except DatabaseConfigurationError as exc:
        raise _db_unavailable("database is not configured") from exc
    except DatabaseConnectionError as exc:
        raise _db_unavailable(str(exc)) from exc
    except psycopg.Error as exc:
        conflict = conflict_from_integrity_error(exc)
        if conflict is not None:
            raise conflict from exc
        raise _db_unavailable(database_error_detail(exc)) from exc


@lru_cache(maxsize=1)
def get_audit_logger() -> AuditLogger:
    return AuditLogger()


@lru_cache(maxsize=1)
def get_notifier() -> NotificationService:
    return NotificationService()


def get_acting_user(x_user_id: str | None = Header(default=None)) -> str | None:
    user_id = (x_user_id or "").strip()
    return user_id or None


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip() or None


def require_internal_job_token(authorization: str | None = Header(default=None)) -> None:
    """Guard for the term sweep trigger called by schedulers outside the app."""
    expected = get_settings().internal_job_token
    if not expected:
        raise HTTPException(status_code=503, detail="internal job token is not configured")

    token = _bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="missing bearer token")
    if not compare_digest(token, expected):
        raise HTTPException(status_code=403, detail="invalid bearer token")
