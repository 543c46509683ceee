"""SK term lifecycle: ``upcoming -> active -> completed``.

At most one term is active at any time. Every transition re-counts active
terms before committing, and the partial unique index on ``SK_Terms`` backs
the same rule at the database level.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

from app.config import local_today
from app.models.schemas import SKTermCreateIn, SKTermUpdateIn
from app.services.errors import BusinessRuleError, ConflictError, NotFoundError, RequestValidationError
from app.services.normalization import clean_text
from app.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

TERM_NAME_MIN = 5
TERM_NAME_MAX = 100
MIN_TERM_DAYS = 365
MAX_START_DAYS_IN_PAST = 30
MAX_END_YEARS_AHEAD = 10
SUGGESTED_TERM_YEARS = 2

AUTO_ACTIVATION_REASON = "Automatic activation: start date reached"
AUTO_COMPLETION_REASON = "Automatic completion: end date reached"


@dataclass
class TermCompletion:
    term: dict
    completion_type: str
    officials_affected: list[dict] = field(default_factory=list)


@dataclass
class TermSweepResult:
    run_date: date
    success: bool = True
    skipped: bool = False
    activated: list[dict] = field(default_factory=list)
    completed: list[dict] = field(default_factory=list)
    officials_affected: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def add_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return value.replace(year=value.year + years, day=28)


def validate_term_input(
    term_name: str | None,
    start_date: date | None,
    end_date: date | None,
    *,
    today: date,
    is_update: bool = False,
) -> list[str]:
    errors: list[str] = []
    name = clean_text(term_name)
    if not name:
        errors.append("Term name is required")
    elif len(name) < TERM_NAME_MIN:
        errors.append(f"Term name must be at least {TERM_NAME_MIN} characters long")
    elif len(name) > TERM_NAME_MAX:
        errors.append(f"Term name must be at most {TERM_NAME_MAX} characters long")

    if start_date is None:
        errors.append("Start date is required")
    if end_date is None:
        errors.append("End date is required")
    if start_date is None or end_date is None:
        return errors

    if start_date >= end_date:
        errors.append("Start date must be before end date")
    elif end_date < start_date + timedelta(days=MIN_TERM_DAYS):
        errors.append(f"Term must last at least {MIN_TERM_DAYS} days")

    if not is_update and start_date < today - timedelta(days=MAX_START_DAYS_IN_PAST):
        days_ago = (today - start_date).days
        errors.append(f"Start date cannot be more than {MAX_START_DAYS_IN_PAST} days in the past ({days_ago} days ago)")

    if end_date > add_years(today, MAX_END_YEARS_AHEAD):
        errors.append(f"End date cannot be more than {MAX_END_YEARS_AHEAD} years in the future")
    return errors


def _require_term(repo, term_id: str, *, for_update: bool = False) -> dict:
    term = repo.get_term(term_id, for_update=for_update)
    if term is None:
        raise NotFoundError(f"SK term {term_id} not found")
    return term


def _ensure_single_active(repo) -> None:
    active_count = repo.count_active_terms()
    if active_count > 1:
        raise ConflictError(
            f"Only one active SK term is allowed at a time ({active_count} active)",
            code="business_rule_violation",
        )


def _ensure_no_other_active(repo, term_id: str | None = None) -> None:
    active = repo.fetch_active_terms(exclude_term_id=term_id)
    if active:
        raise ConflictError(
            f"Only one active SK term is allowed at a time. Currently active: {active[0]['term_name']}",
            code="business_rule_violation",
        )


def _ensure_unique_name(repo, term_name: str, term_id: str | None = None) -> None:
    if repo.find_terms_by_name(term_name, exclude_term_id=term_id):
        raise ConflictError(
            f'Term name "{term_name}" already exists. Please choose a different name.',
            code="duplicate_name",
        )


def _ensure_no_overlap(repo, start_date: date, end_date: date, term_id: str | None = None) -> None:
    overlapping = repo.find_overlapping_terms(start_date, end_date, exclude_term_id=term_id)
    if overlapping:
        names = ", ".join(term["term_name"] for term in overlapping)
        raise ConflictError(
            f"Term date range conflicts with existing terms: {names}",
            code="date_conflict",
        )


# -- reads ------------------------------------------------------------------


def list_terms(repo, status: str | None = None) -> list[dict]:
    return repo.list_terms(status)


def get_term(repo, term_id: str) -> dict:
    return _require_term(repo, term_id)


def get_active_term(repo) -> dict | None:
    active = repo.fetch_active_terms()
    return active[0] if active else None


def get_pending_status_updates(repo, today: date | None = None) -> list[dict]:
    """Terms whose status lags the calendar.

    The sweep only activates terms starting today, so an upcoming term whose
    start date already passed is reported as ``needs_manual_activation``.
    """
    today = today or local_today()
    pending = []
    for term in repo.fetch_non_completed_terms():
        action = None
        if term["status"] == "upcoming" and term["start_date"] == today:
            action = "needs_activation"
        elif term["status"] == "upcoming" and term["start_date"] < today:
            action = "needs_manual_activation"
        elif term["status"] == "active" and term["end_date"] < today:
            action = "needs_completion"
        if action:
            pending.append({**term, "required_action": action})
    return pending


def get_suggested_dates(repo, today: date | None = None) -> list[dict]:
    today = today or local_today()
    suggestions = [
        {
            "start_date": today,
            "end_date": add_years(today, SUGGESTED_TERM_YEARS),
            "description": f"Starting from today for {SUGGESTED_TERM_YEARS} years",
        }
    ]
    terms = repo.list_terms()
    if terms:
        latest_end = max(term["end_date"] for term in terms)
        start = latest_end + timedelta(days=1)
        suggestions.append(
            {
                "start_date": start,
                "end_date": add_years(start, SUGGESTED_TERM_YEARS),
                "description": "Starting after the latest term ends",
            }
        )
    return suggestions


# -- writes -----------------------------------------------------------------


def create_term(
    repo,
    data: SKTermCreateIn,
    *,
    actor: str | None,
    today: date | None = None,
    audit=None,
    notifier=None,
) -> dict:
    today = today or local_today()
    errors = validate_term_input(data.term_name, data.start_date, data.end_date, today=today)
    if errors:
        raise RequestValidationError(errors)
    term_name = clean_text(data.term_name)

    def _create() -> dict:
        _ensure_unique_name(repo, term_name)
        _ensure_no_overlap(repo, data.start_date, data.end_date)

        status = "upcoming"
        reason = "Term created"
        if data.auto_activate and data.start_date <= today <= data.end_date:
            if repo.fetch_active_terms():
                raise ConflictError(
                    "Cannot auto-activate term. Another term is already active.",
                    code="business_rule_violation",
                )
            status = "active"
            reason = "Term created and activated"

        term = repo.insert_term(
            {
                "term_id": repo.next_id("TRM"),
                "term_name": term_name,
                "start_date": data.start_date,
                "end_date": data.end_date,
                "status": status,
                "created_by": actor,
                "status_change_reason": reason,
            }
        )
        _ensure_single_active(repo)
        return term

    term = run_in_transaction(repo, _create)
    logger.info("sk_term_created term_id=%s status=%s actor=%s", term["term_id"], term["status"], actor)
    _emit(
        audit,
        notifier,
        actor=actor,
        action="CREATE_SK_TERM",
        term=term,
        title="New SK term created",
        message=f'SK term "{term["term_name"]}" ({term["start_date"]} to {term["end_date"]}) was created.',
    )
    return term


def update_term(
    repo,
    term_id: str,
    data: SKTermUpdateIn,
    *,
    actor: str | None,
    today: date | None = None,
    audit=None,
    notifier=None,
) -> dict:
    today = today or local_today()
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise RequestValidationError(["No valid fields to update"])

    def _update() -> dict:
        current = _require_term(repo, term_id, for_update=True)
        if current["status"] == "completed":
            raise BusinessRuleError("Completed terms cannot be edited", code="term_completed")

        term_name = clean_text(changes.get("term_name", current["term_name"]))
        start_date = changes.get("start_date", current["start_date"])
        end_date = changes.get("end_date", current["end_date"])
        errors = validate_term_input(term_name, start_date, end_date, today=today, is_update=True)
        if errors:
            raise RequestValidationError(errors)

        _ensure_unique_name(repo, term_name, term_id)
        if start_date != current["start_date"] or end_date != current["end_date"]:
            _ensure_no_overlap(repo, start_date, end_date, term_id)

        fields = {}
        if "term_name" in changes:
            fields["term_name"] = term_name
        if "start_date" in changes:
            fields["start_date"] = start_date
        if "end_date" in changes:
            fields["end_date"] = end_date
        updated = repo.update_term_fields(term_id, fields)
        if updated is None:
            raise NotFoundError(f"SK term {term_id} not found")
        return updated

    term = run_in_transaction(repo, _update)
    logger.info("sk_term_updated term_id=%s fields=%s actor=%s", term_id, sorted(changes), actor)
    _emit(
        audit,
        notifier,
        actor=actor,
        action="UPDATE_SK_TERM",
        term=term,
        title="SK term updated",
        message=f'SK term "{term["term_name"]}" was updated.',
        details={"changed_fields": sorted(changes)},
    )
    return term


def delete_term(repo, term_id: str, *, actor: str | None, audit=None, notifier=None) -> dict:
    def _delete() -> dict:
        term = _require_term(repo, term_id, for_update=True)
        if term["status"] == "active":
            raise BusinessRuleError("Cannot delete an active term. Complete it first.", code="term_active")
        officials = repo.count_term_officials(term_id)
        if officials > 0:
            raise BusinessRuleError(
                f"Cannot delete term. {officials} SK officials are assigned to this term.",
                code="officials_assigned",
                extra={"officials_count": officials},
            )
        if not repo.soft_delete_term(term_id):
            raise NotFoundError(f"SK term {term_id} not found")
        return term

    term = run_in_transaction(repo, _delete)
    logger.info("sk_term_deleted term_id=%s actor=%s", term_id, actor)
    _emit(
        audit,
        notifier,
        actor=actor,
        action="DELETE_SK_TERM",
        term=term,
        title="SK term deleted",
        message=f'SK term "{term["term_name"]}" was deleted.',
    )
    return term


def activate_term(
    repo,
    term_id: str,
    *,
    force: bool = False,
    actor: str | None,
    today: date | None = None,
    audit=None,
    notifier=None,
) -> dict:
    today = today or local_today()

    def _activate() -> dict:
        term = _require_term(repo, term_id, for_update=True)
        if term["status"] != "upcoming":
            raise BusinessRuleError(
                f"Only upcoming terms can be activated (current status: {term['status']})",
                code="invalid_status_transition",
            )
        _ensure_no_other_active(repo, term_id)
        if not force:
            if term["start_date"] > today:
                raise BusinessRuleError(
                    f"Cannot activate term before its start date ({term['start_date']})",
                    code="term_not_started",
                )
            if term["end_date"] < today:
                raise BusinessRuleError("Cannot activate a term whose end date has passed", code="term_ended")

        clamped_start = today if force and term["start_date"] > today else None
        activated = repo.activate_term(
            term_id,
            start_date=clamped_start,
            changed_by=actor,
            reason="Force activation by admin" if force else "Manual activation by admin",
        )
        if activated is None:
            raise ConflictError("Term could not be activated", code="invalid_status_transition")
        _ensure_single_active(repo)
        return activated

    term = run_in_transaction(repo, _activate)
    logger.info("sk_term_activated term_id=%s force=%s actor=%s", term_id, force, actor)
    _emit(
        audit,
        notifier,
        actor=actor,
        action="ACTIVATE_SK_TERM",
        term=term,
        title="SK term activated",
        message=f'SK term "{term["term_name"]}" is now active.',
        details={"force": force},
    )
    return term


def complete_term(
    repo,
    term_id: str,
    *,
    force: bool = False,
    actor: str | None,
    today: date | None = None,
    audit=None,
    notifier=None,
) -> TermCompletion:
    today = today or local_today()
    completion_type = "forced" if force else "manual"

    def _complete() -> TermCompletion:
        term = _require_term(repo, term_id, for_update=True)
        if term["status"] != "active":
            raise BusinessRuleError(
                f"Only active terms can be completed (current status: {term['status']})",
                code="invalid_status_transition",
            )
        if today < term["start_date"]:
            raise BusinessRuleError(
                f"Cannot complete term before its start date ({term['start_date']})",
                code="term_not_started",
            )
        if not force:
            active_officials = repo.count_term_officials(term_id, active_only=True)
            if active_officials > 0:
                raise BusinessRuleError(
                    f"Term has {active_officials} active SK officials. Use force to complete it anyway.",
                    code="active_officials_present",
                    extra={"active_officials": active_officials, "warning": True},
                )

        completed = repo.complete_term(
            term_id,
            end_date=today,
            completion_type=completion_type,
            completed_by=actor,
            reason=(
                "Forced completion by admin before end date"
                if force
                else "Term completed by admin (end date adjusted to today)"
            ),
        )
        if completed is None:
            raise ConflictError("Term could not be completed", code="invalid_status_transition")
        officials = repo.revoke_official_access([term_id], actor)
        _ensure_single_active(repo)
        return TermCompletion(term=completed, completion_type=completion_type, officials_affected=officials)

    result = run_in_transaction(repo, _complete)
    logger.info(
        "sk_term_completed term_id=%s completion_type=%s officials_affected=%s actor=%s",
        term_id,
        completion_type,
        len(result.officials_affected),
        actor,
    )
    _emit(
        audit,
        notifier,
        actor=actor,
        action="COMPLETE_SK_TERM",
        term=result.term,
        title="SK term completed",
        message=(
            f'SK term "{result.term["term_name"]}" was completed ({completion_type}); '
            f"{len(result.officials_affected)} official accounts lost access."
        ),
        details={"completion_type": completion_type, "officials_affected": len(result.officials_affected)},
    )
    _notify_officials(notifier, result.term, result.officials_affected)
    return result


# -- automatic sweep --------------------------------------------------------


def _apply_sweep(repo, today: date) -> TermSweepResult:
    result = TermSweepResult(run_date=today)

    for term in repo.fetch_terms_due_for_completion(today):
        completed = repo.complete_term(
            term["term_id"],
            end_date=None,
            completion_type="automatic",
            completed_by=None,
            reason=AUTO_COMPLETION_REASON,
        )
        if completed is not None:
            result.completed.append(completed)
    if result.completed:
        result.officials_affected = repo.revoke_official_access(
            [term["term_id"] for term in result.completed], None
        )

    due = repo.fetch_terms_due_for_activation(today)
    if due:
        if repo.count_active_terms() > 0:
            for term in due:
                result.errors.append(f'Cannot activate "{term["term_name"]}": another term is already active')
        else:
            activated = repo.activate_term(
                due[0]["term_id"],
                start_date=None,
                changed_by=None,
                reason=AUTO_ACTIVATION_REASON,
            )
            if activated is not None:
                result.activated.append(activated)
            for term in due[1:]:
                result.errors.append(f'Cannot activate "{term["term_name"]}": another term was activated today')

    _ensure_single_active(repo)
    return result


def run_term_status_sweep(repo, today: date | None = None, *, audit=None, notifier=None) -> TermSweepResult:
    """Complete expired active terms, then activate the term starting today.

    Failures roll back the whole sweep and are reported in the result.
    """
    today = today or local_today()
    try:
        result = run_in_transaction(repo, lambda: _apply_sweep(repo, today))
    except Exception as exc:  # noqa: BLE001
        logger.exception("term_status_sweep_failed run_date=%s", today)
        return TermSweepResult(run_date=today, success=False, errors=[str(exc)])

    result.success = not result.errors
    logger.info(
        "term_status_sweep_done run_date=%s activated=%s completed=%s officials_affected=%s errors=%s",
        today,
        len(result.activated),
        len(result.completed),
        len(result.officials_affected),
        len(result.errors),
    )

    for term in result.completed:
        _emit(
            audit,
            notifier,
            actor=None,
            action="TERM_COMPLETED",
            term=term,
            title="SK term completed automatically",
            message=f'SK term "{term["term_name"]}" was completed automatically (end date reached).',
            details={"completion_type": "automatic"},
        )
    for term in result.activated:
        _emit(
            audit,
            notifier,
            actor=None,
            action="TERM_ACTIVATED",
            term=term,
            title="SK term activated automatically",
            message=f'SK term "{term["term_name"]}" was activated automatically (start date reached).',
        )
    if result.officials_affected:
        completed_by_id = {term["term_id"]: term for term in result.completed}
        for official in result.officials_affected:
            term = completed_by_id.get(official.get("term_id"), {})
            _audit(
                audit,
                actor=None,
                action="ACCOUNT_ACCESS_DISABLED",
                resource="sk-officials",
                resource_id=official.get("sk_id"),
                details={"term_id": official.get("term_id"), "reason": "Term completed"},
            )
            _notify_officials(notifier, term, [official])
    return result


# -- side effects -----------------------------------------------------------


def _audit(audit, *, actor: str | None, action: str, resource: str, resource_id: str | None, details: dict) -> None:
    if audit is None:
        return
    try:
        audit.create_audit_log(
            user_id=actor or "system",
            user_type="admin" if actor else "system",
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("term_audit_failed action=%s resource_id=%s error=%s", action, resource_id, exc)


def _emit(
    audit,
    notifier,
    *,
    actor: str | None,
    action: str,
    term: dict,
    title: str,
    message: str,
    details: dict | None = None,
) -> None:
    _audit(
        audit,
        actor=actor,
        action=action,
        resource="sk-terms",
        resource_id=term.get("term_id"),
        details={"term_name": term.get("term_name"), "status": term.get("status"), **(details or {})},
    )
    if notifier is None:
        return
    try:
        notifier.notify_admins(title=title, message=message, type="info", priority="medium")
    except Exception as exc:  # noqa: BLE001
        logger.warning("term_notification_failed action=%s term_id=%s error=%s", action, term.get("term_id"), exc)


def _notify_officials(notifier, term: dict, officials: list[dict]) -> None:
    if notifier is None:
        return
    term_name = term.get("term_name") or term.get("term_id") or "the SK term"
    for official in officials:
        try:
            notifier.notify_user(
                user_id=official["sk_id"],
                user_type="sk_official",
                title="Account access disabled",
                message=f'Your account access was disabled because "{term_name}" has been completed.',
                type="warning",
                priority="high",
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("official_notification_failed sk_id=%s error=%s", official.get("sk_id"), exc)
