import copy
from datetime import date, datetime, timezone

import pytest


class RecordingAudit:
    def __init__(self):
        self.entries: list[dict] = []

    def create_audit_log(self, **entry):
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [entry["action"] for entry in self.entries]


class RecordingNotifier:
    def __init__(self):
        self.admin_messages: list[dict] = []
        self.user_messages: list[dict] = []

    def notify_admins(self, **payload):
        self.admin_messages.append(payload)

    def notify_user(self, **payload):
        self.user_messages.append(payload)


class _TransactionalFake:
    """Keeps committed state apart from working state so rollbacks can be asserted."""

    _state_fields: tuple[str, ...] = ()

    def __init__(self):
        self.counters: dict[str, int] = {}
        self.commits = 0
        self.rollbacks = 0

    def _snapshot(self):
        self._committed = copy.deepcopy({name: getattr(self, name) for name in self._state_fields + ("counters",)})

    def commit(self):
        self.commits += 1
        self._snapshot()

    def rollback(self):
        self.rollbacks += 1
        for name, value in copy.deepcopy(self._committed).items():
            setattr(self, name, value)

    def next_id(self, prefix: str) -> str:
        self.counters[prefix] = self.counters.get(prefix, 0) + 1
        return f"{prefix}{self.counters[prefix]:03d}"


class FakeTermRepo(_TransactionalFake):
    _state_fields = ("terms", "officials")

    def __init__(self, terms=None, officials=None):
        super().__init__()
        self.terms: dict[str, dict] = {}
        for term in terms or []:
            row = {
                "is_active": True,
                "completion_type": None,
                "completed_at": None,
                "completed_by": None,
                "status_change_reason": None,
                "created_by": None,
                "created_at": None,
                "updated_at": None,
                **term,
            }
            self.terms[row["term_id"]] = row
        self.officials: list[dict] = [
            {"is_active": True, "account_access": True, "first_name": "Ana", "last_name": "Cruz", "email": None, **item}
            for item in officials or []
        ]
        self._snapshot()

    def _visible(self):
        return [term for term in self.terms.values() if term["is_active"]]

    def list_terms(self, status=None):
        rows = [t for t in self._visible() if status is None or t["status"] == status]
        return [dict(t) for t in sorted(rows, key=lambda t: t["start_date"], reverse=True)]

    def get_term(self, term_id, *, for_update=False):  # noqa: ARG002
        term = self.terms.get(term_id)
        return dict(term) if term and term["is_active"] else None

    def fetch_active_terms(self, exclude_term_id=None):
        return [dict(t) for t in self._visible() if t["status"] == "active" and t["term_id"] != exclude_term_id]

    def count_active_terms(self):
        return len(self.fetch_active_terms())

    def find_terms_by_name(self, term_name, exclude_term_id=None):
        key = term_name.strip().lower()
        return [
            dict(t)
            for t in self._visible()
            if t["term_name"].lower() == key and t["term_id"] != exclude_term_id
        ]

    def find_overlapping_terms(self, start_date, end_date, exclude_term_id=None):
        return [
            dict(t)
            for t in self._visible()
            if t["start_date"] <= end_date
            and t["end_date"] >= start_date
            and t["status"] != "completed"
            and t["term_id"] != exclude_term_id
        ]

    def fetch_non_completed_terms(self):
        return [dict(t) for t in self._visible() if t["status"] != "completed"]

    def insert_term(self, term):
        row = {
            "term_id": term["term_id"],
            "term_name": term["term_name"],
            "start_date": term["start_date"],
            "end_date": term["end_date"],
            "status": term["status"],
            "is_active": True,
            "completion_type": None,
            "completed_at": None,
            "completed_by": None,
            "status_change_reason": term["status_change_reason"],
            "created_by": term["created_by"],
            "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
            "updated_at": None,
        }
        self.terms[row["term_id"]] = row
        return dict(row)

    def update_term_fields(self, term_id, fields):
        term = self.terms.get(term_id)
        if term is None:
            return None
        term.update(fields)
        return dict(term)

    def soft_delete_term(self, term_id):
        term = self.terms.get(term_id)
        if term is None or not term["is_active"]:
            return False
        term["is_active"] = False
        return True

    def activate_term(self, term_id, *, start_date, changed_by, reason):  # noqa: ARG002
        term = self.terms.get(term_id)
        if term is None or term["status"] != "upcoming":
            return None
        term["status"] = "active"
        if start_date is not None:
            term["start_date"] = start_date
        term["status_change_reason"] = reason
        return dict(term)

    def complete_term(self, term_id, *, end_date, completion_type, completed_by, reason):
        term = self.terms.get(term_id)
        if term is None or term["status"] != "active":
            return None
        term["status"] = "completed"
        if end_date is not None:
            term["end_date"] = end_date
        term["completion_type"] = completion_type
        term["completed_by"] = completed_by
        term["completed_at"] = datetime(2026, 1, 1, tzinfo=timezone.utc)
        term["status_change_reason"] = reason
        return dict(term)

    def fetch_terms_due_for_activation(self, today):
        rows = [t for t in self._visible() if t["status"] == "upcoming" and t["start_date"] == today]
        return [dict(t) for t in sorted(rows, key=lambda t: t["term_id"])]

    def fetch_terms_due_for_completion(self, today):
        rows = [t for t in self._visible() if t["status"] == "active" and t["end_date"] < today]
        return [dict(t) for t in sorted(rows, key=lambda t: t["term_id"])]

    def count_term_officials(self, term_id, *, active_only=False):
        return sum(
            1
            for official in self.officials
            if official["term_id"] == term_id and (official["is_active"] or not active_only)
        )

    def revoke_official_access(self, term_ids, updated_by):  # noqa: ARG002
        revoked = []
        for official in self.officials:
            if official["term_id"] in term_ids and official["account_access"]:
                official["account_access"] = False
                revoked.append(
                    {
                        "sk_id": official["sk_id"],
                        "term_id": official["term_id"],
                        "first_name": official["first_name"],
                        "last_name": official["last_name"],
                        "email": official["email"],
                    }
                )
        return revoked


class FakeSubmissionRepo(_TransactionalFake):
    _state_fields = ("youth", "users", "responses", "queue")

    def __init__(self, *, batch=None, youth=None, responses=None, voter_tiers=None, voter_error=None):
        super().__init__()
        self.batch = batch if batch is not None else {"batch_id": "BAT001", "batch_name": "KK Survey 2026", "status": "active"}
        self.youth: dict[str, dict] = {}
        for row in youth or []:
            self.youth[row["youth_id"]] = {"validation_status": None, "validation_tier": None, "user_id": None, **row}
        self.users: list[dict] = []
        self.responses: list[dict] = [dict(row) for row in responses or []]
        self.queue: list[dict] = []
        self.voter_tiers = set(voter_tiers or [])
        self.voter_error = voter_error
        self.voter_calls: list[str] = []
        self._snapshot()

    def fetch_active_survey_batch(self):
        return dict(self.batch) if self.batch else None

    def find_youth_candidates(self, person):
        rows = []
        for youth in self.youth.values():
            identity = (
                youth["first_name"].strip().lower() == person["first_name_key"]
                and youth["last_name"].strip().lower() == person["last_name_key"]
                and (youth.get("middle_name") or "").strip().lower() == person["middle_name_key"]
                and (youth.get("suffix") or "").strip().lower() == person["suffix_key"]
                and youth["birth_date"] == person["birth_date"]
                and youth["gender"] == person["gender"]
            )
            if identity or youth["contact_number"] == person["contact_number"] or youth["email"].lower() == person["email"]:
                rows.append(dict(youth))
        return rows

    def fetch_response_statuses(self, youth_id, batch_id):
        return [r["validation_status"] for r in self.responses if r["youth_id"] == youth_id and r["batch_id"] == batch_id]

    def insert_youth_profile(self, profile):
        self.youth[profile["youth_id"]] = {**profile, "validation_status": None, "validation_tier": None, "user_id": None}
        return {"youth_id": profile["youth_id"], "validation_status": None, "created_at": None}

    def insert_user(self, user_id, youth_id, user_type="youth"):
        self.users.append({"user_id": user_id, "youth_id": youth_id, "user_type": user_type})
        self.youth[youth_id]["user_id"] = user_id

    def insert_survey_response(self, response):
        self.responses.append(dict(response))
        return {
            "response_id": response["response_id"],
            "validation_status": response["validation_status"],
            "validation_tier": response["validation_tier"],
            "created_at": datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc),
        }

    def insert_validation_queue(self, entry):
        self.queue.append(dict(entry))

    def mark_youth_validated(self, youth_id, *, tier, validated_by):
        youth = self.youth[youth_id]
        if youth.get("validation_status") != "validated":
            youth["validation_status"] = "validated"
            youth["validation_tier"] = tier
            youth["validated_by"] = validated_by

    def find_voter_matches(self, tier, params, limit=5):  # noqa: ARG002
        self.voter_calls.append(tier)
        if self.voter_error is not None:
            raise self.voter_error
        return [{"voter_id": "VOT001"}] if tier in self.voter_tiers else []

    def response(self, response_id):
        return next(r for r in self.responses if r["response_id"] == response_id)


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def today():
    return date(2026, 3, 1)


@pytest.fixture
def make_term_repo():
    return FakeTermRepo


@pytest.fixture
def make_submission_repo():
    return FakeSubmissionRepo
