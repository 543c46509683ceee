import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

from app.config import local_today
from app.models.schemas import DirectSubmissionIn, PersonalDataIn
from app.services.duplicate_detector import classify_submission
from app.services.errors import RequestValidationError, SubmissionRejectedError
from app.services.normalization import (
    clean_text,
    compute_age,
    is_valid_email,
    name_key,
    normalize_contact_number,
    normalize_email,
    normalize_gender,
    parse_iso_date,
    parse_yes_no,
    youth_age_group,
)
from app.services.transactions import run_in_transaction
from app.services.validation_decision import decide_validation
from app.services.voter_matcher import VoterMatchResult, check_voter_match

logger = logging.getLogger(__name__)

MIN_YOUTH_AGE = 15
MAX_YOUTH_AGE = 30
DEFAULT_YOUTH_CLASSIFICATION = "In School Youth"


@dataclass
class SubmissionResult:
    youth_id: str
    user_id: str | None
    response_id: str
    batch_id: str
    is_new_youth: bool
    validation_status: str
    validation_tier: str
    voter_match_type: str | None
    validation_score: int | None
    queue_id: str | None
    message: str
    submitted_at: datetime | None = None


def _check_length(errors: list[str], label: str, value: str | None, *, minimum: int = 0, maximum: int) -> None:
    if value is None:
        return
    if len(value) < minimum or len(value) > maximum:
        if minimum:
            errors.append(f"{label} must be between {minimum} and {maximum} characters")
        else:
            errors.append(f"{label} must be at most {maximum} characters")


def validate_personal_data(personal: PersonalDataIn, today: date) -> dict:
    """Validate and normalize the personal data block of a direct submission.

    Raises ``RequestValidationError`` listing every failing field.
    """
    errors: list[str] = []

    first_name = clean_text(personal.first_name)
    last_name = clean_text(personal.last_name)
    middle_name = clean_text(personal.middle_name)
    suffix = clean_text(personal.suffix)
    purok_zone = clean_text(personal.purok_zone)
    barangay_id = clean_text(personal.barangay_id)

    if not first_name:
        errors.append("First name is required")
    _check_length(errors, "First name", first_name, minimum=2, maximum=50)
    if not last_name:
        errors.append("Last name is required")
    _check_length(errors, "Last name", last_name, minimum=2, maximum=50)
    _check_length(errors, "Middle name", middle_name, maximum=50)
    _check_length(errors, "Suffix", suffix, maximum=10)
    _check_length(errors, "Purok/Zone", purok_zone, maximum=100)

    gender = normalize_gender(personal.sex_at_birth)
    if gender is None:
        errors.append("Sex at birth must be Male or Female")

    contact_number = None
    if not clean_text(personal.contact_number):
        errors.append("Contact number is required")
    else:
        contact_number = normalize_contact_number(personal.contact_number)
        if contact_number is None:
            errors.append("Contact number must be a valid Philippine mobile number")

    email = normalize_email(personal.email)
    if not email:
        errors.append("Email is required")
    elif len(email) > 100 or not is_valid_email(email):
        errors.append("Email must be a valid email address of at most 100 characters")

    if not barangay_id:
        errors.append("Barangay is required")

    if personal.age is not None and not (MIN_YOUTH_AGE <= personal.age <= MAX_YOUTH_AGE):
        errors.append(f"Age must be between {MIN_YOUTH_AGE} and {MAX_YOUTH_AGE}")

    birth_date = parse_iso_date(personal.birth_date)
    age = personal.age
    if birth_date is None:
        errors.append("Birthday must be a valid date in YYYY-MM-DD format")
    else:
        age = compute_age(birth_date, today)
        if not (MIN_YOUTH_AGE <= age <= MAX_YOUTH_AGE):
            errors.append(f"Age computed from birthday must be between {MIN_YOUTH_AGE} and {MAX_YOUTH_AGE}")

    if errors:
        raise RequestValidationError(errors)

    return {
        "first_name": first_name,
        "last_name": last_name,
        "middle_name": middle_name,
        "suffix": suffix,
        "age": age,
        "gender": gender,
        "contact_number": contact_number,
        "email": email,
        "barangay_id": barangay_id,
        "purok_zone": purok_zone,
        "birth_date": birth_date,
    }


def _candidate_params(person: dict) -> dict:
    return {
        "first_name_key": name_key(person["first_name"]),
        "last_name_key": name_key(person["last_name"]),
        "middle_name_key": name_key(person["middle_name"]),
        "suffix_key": name_key(person["suffix"]),
        "birth_date": person["birth_date"],
        "gender": person["gender"],
        "contact_number": person["contact_number"],
        "email": person["email"],
    }


def build_response_row(
    *,
    response_id: str,
    batch_id: str,
    youth_id: str,
    person: dict,
    survey: dict,
    validation_status: str,
    validation_tier: str,
    validation_comments: str | None,
) -> dict:
    demographics = survey.get("demographics") or {}
    civic = survey.get("civic") or {}
    return {
        "response_id": response_id,
        "batch_id": batch_id,
        "youth_id": youth_id,
        "barangay_id": person["barangay_id"],
        "civil_status": clean_text(demographics.get("civilStatus")),
        "youth_classification": clean_text(demographics.get("youthClassification")) or DEFAULT_YOUTH_CLASSIFICATION,
        "youth_specific_needs": clean_text(demographics.get("youthClassificationSpecific")),
        "youth_age_group": youth_age_group(person["age"]),
        "educational_background": clean_text(demographics.get("educationalBackground")),
        "work_status": clean_text(demographics.get("workStatus")),
        "registered_sk_voter": parse_yes_no(civic.get("registeredSKVoter")),
        "registered_national_voter": parse_yes_no(civic.get("registeredNationalVoter")),
        "attended_kk_assembly": parse_yes_no(civic.get("attendedKKAssembly")),
        "voted_last_sk": parse_yes_no(civic.get("votedLastSKElection")),
        "times_attended": clean_text(civic.get("kkAssemblyTimes")),
        "reason_not_attended": clean_text(civic.get("notAttendedReason")),
        "validation_status": validation_status,
        "validation_tier": validation_tier,
        "validation_comments": validation_comments,
    }


def _has_blocking_response(repo, youth_id: str, batch_id: str) -> bool:
    statuses = repo.fetch_response_statuses(youth_id, batch_id)
    return any(status != "rejected" for status in statuses)


def _submission_message(is_new_youth: bool, validation_status: str) -> str:
    if validation_status == "validated":
        return "Survey submitted successfully. Response has been automatically validated."
    if is_new_youth:
        return "New youth profile created and survey submitted successfully. Response is pending validation."
    return "Survey submitted successfully. Response is pending validation."


def _record_submission(
    repo,
    person: dict,
    survey: dict,
    voter_matcher: Callable[[dict, object], VoterMatchResult],
) -> SubmissionResult:
    batch = repo.fetch_active_survey_batch()
    if batch is None:
        raise SubmissionRejectedError("No active survey batch found for submission", code="no_active_batch")
    batch_id = batch["batch_id"]

    candidates = repo.find_youth_candidates(_candidate_params(person))
    decision = classify_submission(
        person,
        candidates,
        has_blocking_response=lambda youth_id: _has_blocking_response(repo, youth_id, batch_id),
    )
    if decision.rejected:
        extra = {"conflict_field": decision.conflict_field} if decision.conflict_field else None
        raise SubmissionRejectedError(decision.message, code=decision.reason, extra=extra)

    if decision.is_new_youth:
        youth_id = repo.next_id("YTH")
        user_id = repo.next_id("USR")
        repo.insert_youth_profile({**person, "youth_id": youth_id})
        repo.insert_user(user_id, youth_id, "youth")
        youth_status = None
    else:
        youth_id = decision.youth["youth_id"]
        user_id = decision.youth.get("user_id")
        youth_status = decision.youth.get("validation_status")

    validation = decide_validation(
        contact_mismatch=decision.contact_mismatch,
        youth_validation_status=youth_status,
        voter_match=lambda: voter_matcher(person, repo),
    )

    response_id = repo.next_id("RES")
    response = repo.insert_survey_response(
        build_response_row(
            response_id=response_id,
            batch_id=batch_id,
            youth_id=youth_id,
            person=person,
            survey=survey,
            validation_status=validation.validation_status,
            validation_tier=validation.validation_tier,
            validation_comments=decision.comment,
        )
    )

    queue_id = None
    if validation.enqueue:
        queue_id = repo.next_id("VQ")
        repo.insert_validation_queue(
            {
                "queue_id": queue_id,
                "response_id": response_id,
                "youth_id": youth_id,
                "voter_match_type": validation.voter_match_type,
                "validation_score": validation.validation_score,
                "validation_comments": decision.comment,
            }
        )
    if validation.propagate_to_youth:
        repo.mark_youth_validated(youth_id, tier="automatic", validated_by=None)

    return SubmissionResult(
        youth_id=youth_id,
        user_id=user_id,
        response_id=response_id,
        batch_id=batch_id,
        is_new_youth=decision.is_new_youth,
        validation_status=validation.validation_status,
        validation_tier=validation.validation_tier,
        voter_match_type=validation.voter_match_type,
        validation_score=validation.validation_score,
        queue_id=queue_id,
        message=_submission_message(decision.is_new_youth, validation.validation_status),
        submitted_at=response.get("created_at"),
    )


def create_profile_and_submit_survey(
    payload: DirectSubmissionIn,
    repo,
    *,
    audit=None,
    notifier=None,
    today: date | None = None,
    voter_matcher: Callable[[dict, object], VoterMatchResult] = check_voter_match,
) -> SubmissionResult:
    """Validate, deduplicate and store one direct survey submission in a single transaction."""
    today = today or local_today()
    person = validate_personal_data(payload.personal_data, today)
    survey = payload.survey_data.model_dump()

    result = run_in_transaction(repo, lambda: _record_submission(repo, person, survey, voter_matcher))

    logger.info(
        "survey_submitted response_id=%s youth_id=%s new_youth=%s status=%s match_type=%s",
        result.response_id,
        result.youth_id,
        result.is_new_youth,
        result.validation_status,
        result.voter_match_type,
    )
    _dispatch_submission_side_effects(result, audit=audit, notifier=notifier)
    return result


def _dispatch_submission_side_effects(result: SubmissionResult, *, audit, notifier) -> None:
    try:
        if audit is not None:
            audit.create_audit_log(
                user_id=result.user_id or result.youth_id,
                user_type="youth",
                action="SUBMIT_SURVEY",
                resource="survey-responses",
                resource_id=result.response_id,
                details={
                    "batch_id": result.batch_id,
                    "youth_id": result.youth_id,
                    "is_new_youth": result.is_new_youth,
                    "validation_status": result.validation_status,
                    "voter_match_type": result.voter_match_type,
                },
            )
        if notifier is not None:
            pending = result.validation_status == "pending"
            notifier.notify_admins(
                title="Survey response awaiting validation" if pending else "New survey response",
                message=(
                    f"Response {result.response_id} for batch {result.batch_id} was submitted "
                    f"(status: {result.validation_status}, match: {result.voter_match_type})."
                ),
                type="info",
                priority="high" if result.voter_match_type == "contact_mismatch" else "medium",
            )
    except Exception as exc:  # noqa: BLE001
        logger.warning("submission_side_effects_failed response_id=%s error=%s", result.response_id, exc)
