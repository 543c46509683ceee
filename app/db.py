import logging
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import quote, unquote

import psycopg
from psycopg.rows import dict_row

from app.config import get_settings

logger = logging.getLogger(__name__)

APPLICATION_NAME = "kk-profiling-backend"


class DatabaseConfigurationError(RuntimeError):
    """DATABASE_URL is missing or the settings could not be loaded."""


class DatabaseConnectionError(RuntimeError):
    """The database refused or dropped the connection attempt."""


_SQLSTATE_REASONS = {
    "28P01": "auth_failed",
    "08001": "network_error",
    "08006": "network_error",
    "3D000": "database_missing",
    "53300": "too_many_connections",
}

# first matching phrase wins
_MESSAGE_REASONS = (
    ("password authentication failed", "auth_failed"),
    ("pg_hba.conf", "auth_error"),
    ("could not translate host name", "invalid_host_or_uri"),
    ("connection refused", "connection_refused"),
    ("server closed the connection", "network_error"),
    ("connection reset", "network_error"),
    ("timeout expired", "network_timeout"),
    ("timed out", "network_timeout"),
    ("sslmode", "ssl_required"),
)


def _classify_connection_error(exc: Exception) -> str:
    sqlstate = str(getattr(exc, "sqlstate", "") or "").upper()
    if sqlstate in _SQLSTATE_REASONS:
        return _SQLSTATE_REASONS[sqlstate]
    if sqlstate.startswith("28"):
        return "auth_error"

    message = str(exc).lower()
    for phrase, reason in _MESSAGE_REASONS:
        if phrase in message:
            return reason
    if "ssl" in message and "required" in message:
        return "ssl_required"
    return "unknown"


def _normalize_database_url(database_url: str) -> str:
    """Percent-encode the password part of a postgres URL.

    Passwords pasted from a hosting dashboard often contain ``@`` or ``!``;
    already-encoded passwords are left as they are.
    """
    text = str(database_url or "").strip()
    if "://" not in text or "@" not in text:
        return text

    scheme, remainder = text.split("://", 1)
    if not scheme.startswith("postgres"):
        return text

    credentials, host_part = remainder.rsplit("@", 1)
    username, sep, raw_password = credentials.partition(":")
    if not sep or not username:
        return text
    return f"{scheme}://{username}:{quote(unquote(raw_password), safe='')}@{host_part}"


def _connect_kwargs(settings) -> dict:
    kwargs = {
        "row_factory": dict_row,
        "application_name": APPLICATION_NAME,
        "connect_timeout": int(settings.db_connect_timeout_sec),
    }
    if settings.db_statement_timeout_ms:
        kwargs["options"] = f"-c statement_timeout={int(settings.db_statement_timeout_ms)}"
    return kwargs


@contextmanager
def get_connection():
    try:
        settings = get_settings()
    except Exception as exc:  # noqa: BLE001
        raise DatabaseConfigurationError("database settings are not configured") from exc

    database_url = _normalize_database_url(settings.database_url)
    if not database_url:
        raise DatabaseConfigurationError("DATABASE_URL is empty")

    try:
        conn = psycopg.connect(database_url, **_connect_kwargs(settings))
    except psycopg.Error as exc:
        reason = _classify_connection_error(exc)
        logger.warning("db_connect_failed reason=%s", reason)
        raise DatabaseConnectionError(f"database connection failed ({reason})") from exc

    try:
        yield conn
    finally:
        conn.close()


def ping(conn) -> dict:
    with conn.cursor() as cur:
        cur.execute("SELECT 1 AS ok, current_setting('TimeZone') AS timezone")
        row = cur.fetchone() or {}
    return {"ping": row.get("ok") == 1, "timezone": row.get("timezone")}


def run_schema(schema_path: str | Path) -> None:
    path = Path(schema_path)
    sql = path.read_text(encoding="utf-8")
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(sql)
        conn.commit()
    logger.info("schema_applied path=%s", path)
