from dataclasses import dataclass, field
from typing import Callable

from app.services.contact_mismatch import build_mismatch_comment
from app.services.normalization import name_key, normalize_contact_number, normalize_email, parse_iso_date

REJECT = "reject"
ACCEPT_NEW = "accept_new"
ACCEPT_EXISTING = "accept_existing"
ACCEPT_FLAGGED = "accept_flagged"

REASON_CONTACT_WITH_DIFFERENT_DETAILS = "duplicate_contact_with_different_details"
REASON_NAME_EMAIL_MATCH = "duplicate_name_email_match"
REASON_NAME_CONTACT_MATCH = "duplicate_name_contact_match"
REASON_ALREADY_SUBMITTED = "already_submitted"

REJECTION_MESSAGES = {
    REASON_NAME_EMAIL_MATCH: (
        "A survey response for this batch was already submitted with this name and email."
    ),
    REASON_NAME_CONTACT_MATCH: (
        "A survey response for this batch was already submitted with this name and mobile number."
    ),
    REASON_ALREADY_SUBMITTED: "You have already submitted a response for this survey batch",
}


@dataclass
class CandidateMatch:
    youth: dict
    name_match: bool
    identity_match: bool
    contact_match: bool
    email_match: bool
    barangay_match: bool

    @property
    def key_count(self) -> int:
        return sum((self.identity_match, self.contact_match, self.email_match, self.barangay_match))


@dataclass
class SubmissionDecision:
    outcome: str
    youth: dict | None = None
    reason: str | None = None
    conflict_field: str | None = None
    contact_mismatch: bool = False
    comment: str | None = None
    matches: list[CandidateMatch] = field(default_factory=list)

    @property
    def rejected(self) -> bool:
        return self.outcome == REJECT

    @property
    def is_new_youth(self) -> bool:
        return self.outcome == ACCEPT_NEW

    @property
    def message(self) -> str:
        if self.reason == REASON_CONTACT_WITH_DIFFERENT_DETAILS:
            return (
                f"A profile with this {self.conflict_field} already exists with different youth "
                "information. Please use the correct details or contact support."
            )
        return REJECTION_MESSAGES.get(self.reason or "", "")


def _names_match(submission: dict, youth: dict, keys=("first_name", "last_name")) -> bool:
    return all(name_key(submission.get(key)) == name_key(youth.get(key)) for key in keys)


def _identity_matches(submission: dict, youth: dict) -> bool:
    if not _names_match(submission, youth, ("first_name", "last_name", "middle_name", "suffix")):
        return False
    if parse_iso_date(submission.get("birth_date")) != parse_iso_date(youth.get("birth_date")):
        return False
    return name_key(submission.get("gender")) == name_key(youth.get("gender"))


def compare_candidate(submission: dict, youth: dict) -> CandidateMatch:
    new_contact = normalize_contact_number(submission.get("contact_number"))
    new_email = normalize_email(submission.get("email"))
    return CandidateMatch(
        youth=youth,
        name_match=_names_match(submission, youth),
        identity_match=_identity_matches(submission, youth),
        contact_match=bool(new_contact) and new_contact == normalize_contact_number(youth.get("contact_number")),
        email_match=bool(new_email) and new_email == normalize_email(youth.get("email")),
        barangay_match=str(submission.get("barangay_id") or "") == str(youth.get("barangay_id") or ""),
    )


def _conflict_field(conflicts: list[CandidateMatch]) -> str:
    contact = any(match.contact_match for match in conflicts)
    email = any(match.email_match for match in conflicts)
    if contact and email:
        return "mobile number and email"
    if contact:
        return "mobile number"
    return "email"


def classify_submission(
    submission: dict,
    candidates: list[dict],
    *,
    has_blocking_response: Callable[[str], bool],
) -> SubmissionDecision:
    """Decide whether a direct submission creates, reuses, flags or is refused.

    ``candidates`` are existing youth profiles sharing the identity tuple, the
    contact number or the email with ``submission``. A candidate sharing the
    contact or email under the same first and last name is the returning youth
    even when the birth date or middle name was corrected.
    ``has_blocking_response`` reports whether a youth already holds a
    non-rejected response in the active batch.
    """
    matches = [compare_candidate(submission, youth) for youth in candidates]

    # same first and last name means the returning youth
    conflicts = [m for m in matches if (m.contact_match or m.email_match) and not m.name_match]
    if conflicts:
        return SubmissionDecision(
            outcome=REJECT,
            reason=REASON_CONTACT_WITH_DIFFERENT_DETAILS,
            conflict_field=_conflict_field(conflicts),
            youth=conflicts[0].youth,
            matches=matches,
        )

    existing = [m for m in matches if m.identity_match or (m.name_match and (m.contact_match or m.email_match))]
    if not existing:
        return SubmissionDecision(outcome=ACCEPT_NEW, matches=matches)

    best = max(existing, key=lambda m: m.key_count)
    blocked = has_blocking_response(best.youth["youth_id"])

    if best.email_match and blocked:
        return SubmissionDecision(outcome=REJECT, reason=REASON_NAME_EMAIL_MATCH, youth=best.youth, matches=matches)
    if best.contact_match and blocked:
        return SubmissionDecision(outcome=REJECT, reason=REASON_NAME_CONTACT_MATCH, youth=best.youth, matches=matches)
    if best.contact_match or best.email_match:
        return SubmissionDecision(outcome=ACCEPT_EXISTING, youth=best.youth, matches=matches)
    if blocked:
        return SubmissionDecision(outcome=REJECT, reason=REASON_ALREADY_SUBMITTED, youth=best.youth, matches=matches)

    comment = build_mismatch_comment(
        youth_id=best.youth["youth_id"],
        existing_contact=best.youth.get("contact_number"),
        existing_email=best.youth.get("email"),
        new_contact=normalize_contact_number(submission.get("contact_number")),
        new_email=normalize_email(submission.get("email")),
        barangay_differs=not best.barangay_match,
    )
    return SubmissionDecision(
        outcome=ACCEPT_FLAGGED,
        youth=best.youth,
        contact_mismatch=True,
        comment=comment,
        matches=matches,
    )
