from __future__ import annotations

from typing import Any

UNIQUE_VIOLATION_SQLSTATE = "23505"

# constraint name -> field label shown to the user
UNIQUE_CONSTRAINT_FIELDS = {
    "youth_profiling_email_key": "email",
    "youth_profiling_contact_number_key": "mobile number",
    "uq_youth_profiling_identity": "name and birth date",
    "uq_kk_survey_responses_open_per_batch": "survey response",
    "uq_sk_terms_single_active": "active term",
    "uq_sk_terms_name_lower": "term name",
    "voters_list_pkey": "voter",
    "lydo_email_key": "email",
    "sk_officials_email_key": "email",
}


class ServiceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, code: str | None = None, extra: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = dict(extra or {})

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "error": self.code, **self.extra}


class RequestValidationError(ServiceError):
    status_code = 400
    code = "validation_error"

    def __init__(self, errors: list[str], message: str = "Validation failed"):
        super().__init__(message, extra={"errors": list(errors)})
        self.errors = list(errors)


class SubmissionRejectedError(ServiceError):
    """A survey submission refused by the duplicate policy."""

    status_code = 400


class BusinessRuleError(ServiceError):
    status_code = 400
    code = "business_rule_violation"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class ConflictError(ServiceError):
    status_code = 409
    code = "conflict"


class DuplicateConflictError(ConflictError):
    code = "duplicate_conflict"


def conflict_from_integrity_error(exc: Exception) -> DuplicateConflictError | None:
    if str(getattr(exc, "sqlstate", "") or "") != UNIQUE_VIOLATION_SQLSTATE:
        return None
    diag = getattr(exc, "diag", None)
    constraint = str(getattr(diag, "constraint_name", "") or "")
    field = UNIQUE_CONSTRAINT_FIELDS.get(constraint)
    if field is None:
        field = constraint.removesuffix("_key").split("_")[-1] if constraint else "value"
    return DuplicateConflictError(
        f"A record with this {field} already exists",
        extra={"field": field},
    )
