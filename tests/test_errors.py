import pytest

from app.services.errors import (
    BusinessRuleError,
    ConflictError,
    DuplicateConflictError,
    RequestValidationError,
    SubmissionRejectedError,
    conflict_from_integrity_error,
)


class _Diag:
    def __init__(self, constraint_name):
        self.constraint_name = constraint_name


class _FakeIntegrityError(Exception):
    def __init__(self, sqlstate, constraint_name=None):
        super().__init__("duplicate key value violates unique constraint")
        self.sqlstate = sqlstate
        self.diag = _Diag(constraint_name)


@pytest.mark.parametrize(
    ("constraint", "field"),
    [
        ("youth_profiling_contact_number_key", "mobile number"),
        ("uq_kk_survey_responses_open_per_batch", "survey response"),
        ("uq_sk_terms_single_active", "active term"),
        ("barangays_code_key", "code"),
        (None, "value"),
    ],
)
def test_unique_violation_maps_to_conflict(constraint, field):
    conflict = conflict_from_integrity_error(_FakeIntegrityError("23505", constraint))

    assert isinstance(conflict, DuplicateConflictError)
    assert conflict.status_code == 409
    assert conflict.to_payload() == {
        "detail": f"A record with this {field} already exists",
        "error": "duplicate_conflict",
        "field": field,
    }


def test_other_sqlstates_are_not_conflicts():
    assert conflict_from_integrity_error(_FakeIntegrityError("40001")) is None


def test_error_payloads_carry_code_and_extra():
    rejected = SubmissionRejectedError("Already submitted", code="already_submitted", extra={"conflict_field": None})
    invalid = RequestValidationError(["Email is required"])

    assert rejected.status_code == 400
    assert rejected.to_payload() == {"detail": "Already submitted", "error": "already_submitted", "conflict_field": None}
    assert invalid.to_payload() == {"detail": "Validation failed", "error": "validation_error", "errors": ["Email is required"]}
    assert BusinessRuleError("x").code == "business_rule_violation"
    assert ConflictError("x", code="date_conflict").code == "date_conflict"
