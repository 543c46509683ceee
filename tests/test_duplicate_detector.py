from datetime import date

from app.services.contact_mismatch import parse_contact_mismatch
from app.services.duplicate_detector import (
    ACCEPT_EXISTING,
    ACCEPT_FLAGGED,
    ACCEPT_NEW,
    REJECT,
    classify_submission,
)

SUBMISSION = {
    "first_name": "Juan",
    "last_name": "Dela Cruz",
    "middle_name": None,
    "suffix": None,
    "birth_date": date(2004, 5, 17),
    "gender": "Male",
    "contact_number": "+639171234567",
    "email": "juan@example.com",
    "barangay_id": "SJB001",
}


def _youth(**overrides):
    row = {
        "youth_id": "YTH001",
        "user_id": "USR001",
        "first_name": "JUAN",
        "last_name": "dela cruz",
        "middle_name": None,
        "suffix": None,
        "birth_date": date(2004, 5, 17),
        "gender": "Male",
        "contact_number": "+639171234567",
        "email": "Juan@Example.com",
        "barangay_id": "SJB001",
        "validation_status": None,
    }
    row.update(overrides)
    return row


def _never_blocked(_youth_id):
    return False


def _always_blocked(_youth_id):
    return True


def test_no_candidates_creates_new_youth():
    decision = classify_submission(SUBMISSION, [], has_blocking_response=_always_blocked)

    assert decision.outcome == ACCEPT_NEW
    assert decision.is_new_youth is True
    assert decision.youth is None


def test_contact_used_by_different_person_is_rejected():
    other = _youth(youth_id="YTH009", first_name="Pedro", email="pedro@example.com")

    decision = classify_submission(SUBMISSION, [other], has_blocking_response=_never_blocked)

    assert decision.outcome == REJECT
    assert decision.reason == "duplicate_contact_with_different_details"
    assert decision.conflict_field == "mobile number"
    assert "mobile number already exists" in decision.message


def test_conflict_field_reports_both_contact_and_email():
    other = _youth(youth_id="YTH009", first_name="Jose", birth_date=date(2001, 1, 1))

    decision = classify_submission(SUBMISSION, [other], has_blocking_response=_never_blocked)

    assert decision.conflict_field == "mobile number and email"


def test_third_profile_conflict_wins_over_identity_match():
    same_person = _youth(contact_number="+639990000000", email="old@example.com")
    other = _youth(youth_id="YTH002", first_name="Maria", contact_number="+639000000001")

    decision = classify_submission(SUBMISSION, [same_person, other], has_blocking_response=_never_blocked)

    assert decision.outcome == REJECT
    assert decision.conflict_field == "email"


def test_same_person_same_email_with_open_response_is_rejected():
    decision = classify_submission(SUBMISSION, [_youth()], has_blocking_response=_always_blocked)

    assert decision.outcome == REJECT
    assert decision.reason == "duplicate_name_email_match"


def test_same_person_same_contact_new_email_with_open_response_is_rejected():
    existing = _youth(email="juan.old@example.com")

    decision = classify_submission(SUBMISSION, [existing], has_blocking_response=_always_blocked)

    assert decision.outcome == REJECT
    assert decision.reason == "duplicate_name_contact_match"


def test_same_person_without_open_response_reuses_profile():
    decision = classify_submission(SUBMISSION, [_youth()], has_blocking_response=_never_blocked)

    assert decision.outcome == ACCEPT_EXISTING
    assert decision.youth["youth_id"] == "YTH001"
    assert decision.contact_mismatch is False


def test_same_person_with_new_contact_and_email_is_flagged():
    existing = _youth(contact_number="+639180000000", email="juan.old@example.com")

    decision = classify_submission(SUBMISSION, [existing], has_blocking_response=_never_blocked)

    assert decision.outcome == ACCEPT_FLAGGED
    assert decision.contact_mismatch is True
    assert decision.comment.startswith("POTENTIAL DUPLICATE")
    parsed = parse_contact_mismatch(decision.comment)
    assert parsed["existing"] == {"contact": "+639180000000", "email": "juan.old@example.com"}
    assert parsed["new"] == {"contact": "+639171234567", "email": "juan@example.com"}
    assert parsed["severity"] == "medium"


def test_flagged_submission_from_other_barangay_is_high_priority():
    existing = _youth(contact_number="+639180000000", email="juan.old@example.com", barangay_id="SJB002")

    decision = classify_submission(SUBMISSION, [existing], has_blocking_response=_never_blocked)

    assert decision.comment.startswith("HIGH PRIORITY")
    assert parse_contact_mismatch(decision.comment)["severity"] == "high"


def test_same_person_with_new_contact_and_open_response_is_already_submitted():
    existing = _youth(contact_number="+639180000000", email="juan.old@example.com")

    decision = classify_submission(SUBMISSION, [existing], has_blocking_response=_always_blocked)

    assert decision.outcome == REJECT
    assert decision.reason == "already_submitted"


def test_blocking_check_targets_the_identity_candidate():
    seen = []

    def has_blocking(youth_id):
        seen.append(youth_id)
        return False

    classify_submission(SUBMISSION, [_youth(youth_id="YTH042")], has_blocking_response=has_blocking)

    assert seen == ["YTH042"]


def test_corrected_birth_date_with_same_contact_and_email_reuses_profile():
    submission = {**SUBMISSION, "birth_date": date(2004, 5, 18)}

    decision = classify_submission(submission, [_youth()], has_blocking_response=_never_blocked)

    assert decision.outcome == ACCEPT_EXISTING
    assert decision.youth["youth_id"] == "YTH001"
    assert decision.matches[0].identity_match is False
    assert decision.matches[0].name_match is True


def test_corrected_middle_name_with_open_response_is_a_name_email_duplicate():
    submission = {**SUBMISSION, "middle_name": "Santos"}

    decision = classify_submission(submission, [_youth()], has_blocking_response=_always_blocked)

    assert decision.outcome == REJECT
    assert decision.reason == "duplicate_name_email_match"


def test_same_name_with_only_different_birth_date_and_new_contacts_is_new_youth():
    existing = _youth(birth_date=date(1999, 2, 2), contact_number="+639180000000", email="other@example.com")

    decision = classify_submission(SUBMISSION, [existing], has_blocking_response=_always_blocked)

    assert decision.outcome == ACCEPT_NEW
