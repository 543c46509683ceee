from contextlib import contextmanager
from datetime import date

from psycopg.types.json import Jsonb

from app.services.repository import PostgresRepository


class _RecordingCursor:
    def __init__(self, rows, one=None, rowcount=0):
        self.rows = rows
        self.one = one
        self.rowcount = rowcount
        self.executed: list[tuple[str, object]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):  # noqa: ANN001
        return False

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchall(self):
        return self.rows

    def fetchone(self):
        return self.one


class _RecordingConn:
    def __init__(self, rows=None, one=None, rowcount=0):
        self._cursor = _RecordingCursor(rows or [], one, rowcount)
        self.transactions = 0

    def cursor(self):
        return self._cursor

    @contextmanager
    def transaction(self):
        self.transactions += 1
        yield


def test_next_id_pads_counter_value():
    conn = _RecordingConn(one={"last_value": 7})
    repo = PostgresRepository(conn)

    assert repo.next_id("YTH") == "YTH007"
    query, params = conn._cursor.executed[0]
    assert 'ON CONFLICT (prefix) DO UPDATE' in query
    assert params == ("YTH",)


def test_voter_lookup_runs_inside_savepoint_with_tier_predicate():
    conn = _RecordingConn(rows=[{"voter_id": "VOT001"}])
    repo = PostgresRepository(conn)

    rows = repo.find_voter_matches("flexible_no_gender", {"first_name": "juan", "last_name": "cruz", "birth_date": date(2004, 5, 17)})

    assert rows == [{"voter_id": "VOT001"}]
    assert conn.transactions == 1
    query, params = conn._cursor.executed[0]
    assert "v.is_active = TRUE" in query
    assert "v.birth_date = %(birth_date)s" in query
    assert "LOWER(v.gender)" not in query
    assert params["limit"] == 5


def test_queue_listing_adds_only_requested_filters():
    conn = _RecordingConn()
    repo = PostgresRepository(conn)

    repo.fetch_validation_queue_items(voter_match_type="contact_mismatch", limit=20, offset=40)

    query, params = conn._cursor.executed[0]
    assert "vq.voter_match_type = %s" in query
    assert "yp.barangay_id = %s" not in query
    assert params == ["contact_mismatch", 20, 40]


def test_queue_listing_without_filters_has_no_where_clause():
    conn = _RecordingConn()
    repo = PostgresRepository(conn)

    repo.fetch_validation_queue_items()

    query, params = conn._cursor.executed[0]
    assert "WHERE" not in query
    assert params == [50, 0]


def test_get_term_for_update_locks_row():
    conn = _RecordingConn(one=None)
    repo = PostgresRepository(conn)

    assert repo.get_term("TRM001", for_update=True) is None
    query, params = conn._cursor.executed[0]
    assert "FOR UPDATE" in query
    assert params == ("TRM001",)


def test_update_term_fields_only_sets_allowed_columns():
    conn = _RecordingConn(one={"term_id": "TRM001"})
    repo = PostgresRepository(conn)

    repo.update_term_fields("TRM001", {"term_name": "New Name", "status": "active"})

    query, params = conn._cursor.executed[0]
    assert "term_name = %(term_name)s" in query
    assert "status =" not in query.split("WHERE")[0].split("SET")[1]
    assert params == {"term_name": "New Name", "term_id": "TRM001"}


def test_transitions_are_guarded_by_current_status():
    conn = _RecordingConn(one=None)
    repo = PostgresRepository(conn)

    assert repo.activate_term("TRM001", start_date=None, changed_by=None, reason="x") is None
    assert repo.complete_term("TRM001", end_date=None, completion_type="automatic", completed_by=None, reason="y") is None

    activate_query = conn._cursor.executed[0][0]
    complete_query = conn._cursor.executed[1][0]
    assert "status = 'upcoming'" in activate_query
    assert "COALESCE(%(start_date)s, start_date)" in activate_query
    assert "status = 'active'" in complete_query.split("WHERE")[1]


def test_sweep_queries_use_strict_end_date_comparison():
    conn = _RecordingConn()
    repo = PostgresRepository(conn)

    repo.fetch_terms_due_for_completion(date(2026, 3, 1))
    repo.fetch_terms_due_for_activation(date(2026, 3, 1))

    assert "end_date < %s" in conn._cursor.executed[0][0]
    assert "start_date = %s" in conn._cursor.executed[1][0]


def test_revoke_official_access_skips_empty_term_list():
    conn = _RecordingConn()
    repo = PostgresRepository(conn)

    assert repo.revoke_official_access([], None) == []
    assert conn._cursor.executed == []


def test_activity_log_details_are_wrapped_as_jsonb():
    conn = _RecordingConn()
    repo = PostgresRepository(conn)

    repo.insert_activity_log(
        {
            "log_id": "LOG001",
            "user_id": "system",
            "user_type": "system",
            "action": "TERM_ACTIVATED",
            "resource": "sk-terms",
            "resource_id": "TRM001",
            "resource_name": None,
            "details": {"run_date": date(2026, 3, 1)},
            "category": "SK Management",
            "status": "success",
        }
    )

    _, params = conn._cursor.executed[0]
    assert isinstance(params["details"], Jsonb)
    assert params["details"].obj == {"run_date": "2026-03-01"}
