"""Startup schema bootstrap and a one-shot schema heal for drifted databases."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from threading import Lock

from app.db import run_schema

logger = logging.getLogger(__name__)

_ENV_FLAG_VALUES = {
    "1": True,
    "true": True,
    "yes": True,
    "y": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "n": False,
    "off": False,
}
# undefined_table, undefined_column, undefined_object
SCHEMA_MISMATCH_SQLSTATES = frozenset({"42P01", "42703", "42704"})

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parents[1] / "db" / "schema.sql"

DB_BOOTSTRAP_STATE: dict[str, object] = {
    "enabled": False,
    "attempted": False,
    "ok": None,
    "detail": None,
    "schema_path": None,
}

_heal_lock = Lock()
_heal_done = False


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return _ENV_FLAG_VALUES.get(raw.strip().lower(), default)


def resolve_schema_path() -> Path:
    override = (os.getenv("DB_SCHEMA_PATH") or "").strip()
    return Path(override) if override else DEFAULT_SCHEMA_PATH


def should_auto_apply_schema_on_startup() -> bool:
    return env_flag("AUTO_APPLY_SCHEMA_ON_STARTUP")


def _record(**fields: object) -> dict[str, object]:
    DB_BOOTSTRAP_STATE.update(fields)
    return DB_BOOTSTRAP_STATE


def apply_schema_bootstrap() -> dict[str, object]:
    """Apply ``db/schema.sql`` at startup when AUTO_APPLY_SCHEMA_ON_STARTUP is set.

    The schema is idempotent (``IF NOT EXISTS`` everywhere), so re-applying it on
    every boot only adds missing tables and indexes such as the single-active-term
    and one-response-per-batch guards.
    """
    schema_path = resolve_schema_path()
    enabled = should_auto_apply_schema_on_startup()
    _record(enabled=enabled, schema_path=str(schema_path))
    if not enabled:
        return _record(attempted=False, ok=None, detail="disabled")

    try:
        run_schema(schema_path)
    except Exception as exc:  # noqa: BLE001
        logger.warning("schema_bootstrap_failed path=%s error=%s", schema_path, exc)
        return _record(attempted=True, ok=False, detail=f"{type(exc).__name__}: {exc}")
    return _record(attempted=True, ok=True, detail="schema applied")


def is_schema_mismatch_sqlstate(sqlstate: str | None) -> bool:
    return sqlstate in SCHEMA_MISMATCH_SQLSTATES


def heal_schema_once() -> bool:
    """Re-apply the schema the first time a query hits a missing table or column."""
    global _heal_done  # noqa: PLW0603

    with _heal_lock:
        if _heal_done:
            return False
        schema_path = resolve_schema_path()
        run_schema(schema_path)
        _heal_done = True
    logger.info("schema_auto_healed path=%s", schema_path)
    return True


def reset_schema_heal_state() -> None:
    global _heal_done  # noqa: PLW0603

    with _heal_lock:
        _heal_done = False


def database_error_detail(exc: Exception) -> str:
    sqlstate = getattr(exc, "sqlstate", None)
    if not is_schema_mismatch_sqlstate(sqlstate):
        return f"database query failed ({sqlstate or 'unknown'})"
    try:
        healed = heal_schema_once()
    except Exception:  # noqa: BLE001
        logger.exception("schema_auto_heal_failed sqlstate=%s", sqlstate)
        healed = False
    return "database schema auto-healed; retry request" if healed else "database schema mismatch detected"
