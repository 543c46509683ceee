from pathlib import Path

import app.runtime_db_guard as guard


def test_auto_apply_schema_defaults_to_false(monkeypatch):
    monkeypatch.delenv("AUTO_APPLY_SCHEMA_ON_STARTUP", raising=False)
    assert guard.should_auto_apply_schema_on_startup() is False


def test_auto_apply_schema_reads_explicit_env(monkeypatch):
    monkeypatch.setenv("AUTO_APPLY_SCHEMA_ON_STARTUP", "yes")
    assert guard.should_auto_apply_schema_on_startup() is True

    monkeypatch.setenv("AUTO_APPLY_SCHEMA_ON_STARTUP", "off")
    assert guard.should_auto_apply_schema_on_startup() is False

    monkeypatch.setenv("AUTO_APPLY_SCHEMA_ON_STARTUP", "maybe")
    assert guard.should_auto_apply_schema_on_startup() is False


def test_schema_path_override(monkeypatch, tmp_path):
    monkeypatch.delenv("DB_SCHEMA_PATH", raising=False)
    assert guard.resolve_schema_path() == guard.DEFAULT_SCHEMA_PATH
    assert guard.DEFAULT_SCHEMA_PATH.name == "schema.sql"

    custom = tmp_path / "custom.sql"
    monkeypatch.setenv("DB_SCHEMA_PATH", str(custom))
    assert guard.resolve_schema_path() == Path(custom)


def test_bootstrap_records_failure(monkeypatch, tmp_path):
    def broken_run_schema(_path):
        raise RuntimeError("relation already exists")

    monkeypatch.setenv("AUTO_APPLY_SCHEMA_ON_STARTUP", "true")
    monkeypatch.setenv("DB_SCHEMA_PATH", str(tmp_path / "schema.sql"))
    monkeypatch.setattr(guard, "run_schema", broken_run_schema)

    state = guard.apply_schema_bootstrap()

    assert state["attempted"] is True
    assert state["ok"] is False
    assert state["detail"] == "RuntimeError: relation already exists"


def test_bootstrap_disabled_does_not_touch_database(monkeypatch):
    calls = []
    monkeypatch.delenv("AUTO_APPLY_SCHEMA_ON_STARTUP", raising=False)
    monkeypatch.setattr(guard, "run_schema", calls.append)

    state = guard.apply_schema_bootstrap()

    assert state["detail"] == "disabled"
    assert calls == []


def test_heal_schema_runs_only_once(monkeypatch):
    calls = []
    monkeypatch.setattr(guard, "run_schema", calls.append)
    guard.reset_schema_heal_state()

    assert guard.heal_schema_once() is True
    assert guard.heal_schema_once() is False
    assert len(calls) == 1

    guard.reset_schema_heal_state()


def test_schema_mismatch_sqlstates():
    assert guard.is_schema_mismatch_sqlstate("42P01") is True
    assert guard.is_schema_mismatch_sqlstate("42703") is True
    assert guard.is_schema_mismatch_sqlstate("23505") is False
    assert guard.is_schema_mismatch_sqlstate(None) is False


def test_env_flag_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("TERM_SWEEP_FLAG", " Y ")
    assert guard.env_flag("TERM_SWEEP_FLAG") is True

    monkeypatch.setenv("TERM_SWEEP_FLAG", "sometimes")
    assert guard.env_flag("TERM_SWEEP_FLAG", default=True) is True

    monkeypatch.delenv("TERM_SWEEP_FLAG")
    assert guard.env_flag("TERM_SWEEP_FLAG") is False


class _DbError(Exception):
    def __init__(self, sqlstate):
        super().__init__("query failed")
        self.sqlstate = sqlstate


def test_database_error_detail_heals_on_mismatch(monkeypatch):
    monkeypatch.setattr(guard, "heal_schema_once", lambda: True)

    assert guard.database_error_detail(_DbError("42703")) == "database schema auto-healed; retry request"
    assert guard.database_error_detail(_DbError("40P01")) == "database query failed (40P01)"
    assert guard.database_error_detail(_DbError(None)) == "database query failed (unknown)"


def test_database_error_detail_after_heal_already_ran(monkeypatch):
    monkeypatch.setattr(guard, "heal_schema_once", lambda: False)

    assert guard.database_error_detail(_DbError("42P01")) == "database schema mismatch detected"
