import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.dependencies import (
    get_acting_user,
    get_audit_logger,
    get_notifier,
    get_repository,
    require_internal_job_token,
)
from app.models.schemas import (
    BulkValidationIn,
    BulkValidationOut,
    DirectSubmissionIn,
    PendingStatusUpdateOut,
    SKTermCreateIn,
    SKTermOut,
    SKTermUpdateIn,
    SubmissionOut,
    SuggestedTermDatesOut,
    TermChangeOut,
    TermCompletionOut,
    TermStatus,
    TermSweepOut,
    TermTransitionIn,
    ValidationDecisionIn,
    ValidationDecisionOut,
    ValidationQueueItemOut,
    VoterMatchIn,
    VoterMatchOut,
)
from app.services import sk_terms
from app.services.survey_submission import create_profile_and_submit_survey
from app.services.term_scheduler import run_sweep_once
from app.services.validation_queue import bulk_validate_queue_items, list_queue_items, validate_queue_item
from app.services.voter_matcher import check_voter_match

router = APIRouter(prefix="/api/v1", tags=["v1"])
logger = logging.getLogger(__name__)


def _term_change(term: dict) -> TermChangeOut:
    return TermChangeOut(
        term_id=term["term_id"],
        term_name=term["term_name"],
        start_date=term["start_date"],
        end_date=term["end_date"],
    )


# -- survey submission and voter matching ------------------------------------


@router.post("/surveys/direct-submit", response_model=SubmissionOut, status_code=201)
def direct_submit_survey(
    payload: DirectSubmissionIn,
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
    notifier=Depends(get_notifier),
):
    result = create_profile_and_submit_survey(payload, repo, audit=audit, notifier=notifier)
    return SubmissionOut(**result.__dict__)


@router.post("/voters/check-match", response_model=VoterMatchOut)
def check_voter_match_endpoint(
    payload: VoterMatchIn,
    repo=Depends(get_repository),
):
    result = check_voter_match(payload.model_dump(), repo)
    return VoterMatchOut(has_match=result.has_match, match_type=result.match_type, score=result.score)


# -- validation queue -------------------------------------------------------


@router.get("/validation-queue/items", response_model=list[ValidationQueueItemOut])
def get_validation_queue_items(
    voter_match_type: str | None = Query(default=None),
    barangay_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    repo=Depends(get_repository),
):
    rows = list_queue_items(
        repo,
        voter_match_type=voter_match_type,
        barangay_id=barangay_id,
        limit=limit,
        offset=offset,
    )
    return [ValidationQueueItemOut(**row) for row in rows]


@router.post("/validation-queue/bulk-validate", response_model=BulkValidationOut)
def bulk_validate(
    payload: BulkValidationIn,
    reviewer=Depends(get_acting_user),
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
):
    result = bulk_validate_queue_items(
        repo,
        payload.queue_ids,
        payload.action,
        reviewer,
        payload.comments,
        audit=audit,
    )
    return BulkValidationOut(**result)


@router.post("/validation-queue/{queue_id}/validate", response_model=ValidationDecisionOut)
def validate_queue_entry(
    queue_id: str,
    decision: ValidationDecisionIn,
    reviewer=Depends(get_acting_user),
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
):
    result = validate_queue_item(repo, queue_id, decision.action, reviewer, decision.comments, audit=audit)
    return ValidationDecisionOut(**result.__dict__)


# -- SK terms ---------------------------------------------------------------


@router.get("/sk-terms", response_model=list[SKTermOut])
def get_sk_terms(
    status: TermStatus | None = Query(default=None),
    repo=Depends(get_repository),
):
    return [SKTermOut(**row) for row in sk_terms.list_terms(repo, status)]


@router.post("/sk-terms", response_model=SKTermOut, status_code=201)
def create_sk_term(
    payload: SKTermCreateIn,
    actor=Depends(get_acting_user),
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
    notifier=Depends(get_notifier),
):
    term = sk_terms.create_term(repo, payload, actor=actor, audit=audit, notifier=notifier)
    return SKTermOut(**term)


@router.get("/sk-terms/active", response_model=SKTermOut)
def get_active_sk_term(repo=Depends(get_repository)):
    term = sk_terms.get_active_term(repo)
    if term is None:
        raise HTTPException(status_code=404, detail="no active SK term")
    return SKTermOut(**term)


@router.get("/sk-terms/suggested-dates", response_model=list[SuggestedTermDatesOut])
def get_suggested_term_dates(repo=Depends(get_repository)):
    return [SuggestedTermDatesOut(**row) for row in sk_terms.get_suggested_dates(repo)]


@router.get("/sk-terms/pending-status-updates", response_model=list[PendingStatusUpdateOut])
def get_pending_term_status_updates(repo=Depends(get_repository)):
    return [PendingStatusUpdateOut(**row) for row in sk_terms.get_pending_status_updates(repo)]


@router.get("/sk-terms/{term_id}", response_model=SKTermOut)
def get_sk_term(term_id: str, repo=Depends(get_repository)):
    return SKTermOut(**sk_terms.get_term(repo, term_id))


@router.patch("/sk-terms/{term_id}", response_model=SKTermOut)
def update_sk_term(
    term_id: str,
    payload: SKTermUpdateIn,
    actor=Depends(get_acting_user),
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
    notifier=Depends(get_notifier),
):
    term = sk_terms.update_term(repo, term_id, payload, actor=actor, audit=audit, notifier=notifier)
    return SKTermOut(**term)


@router.delete("/sk-terms/{term_id}", response_model=SKTermOut)
def delete_sk_term(
    term_id: str,
    actor=Depends(get_acting_user),
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
    notifier=Depends(get_notifier),
):
    term = sk_terms.delete_term(repo, term_id, actor=actor, audit=audit, notifier=notifier)
    return SKTermOut(**{**term, "is_active": False})


def _apply_term_transition(
    *,
    term_id: str,
    transition: Literal["activate", "complete"],
    payload: TermTransitionIn | None,
    actor: str | None,
    repo,
    audit,
    notifier,
):
    force = bool(payload and payload.force)
    if transition == "activate":
        term = sk_terms.activate_term(repo, term_id, force=force, actor=actor, audit=audit, notifier=notifier)
        return SKTermOut(**term)
    result = sk_terms.complete_term(repo, term_id, force=force, actor=actor, audit=audit, notifier=notifier)
    return TermCompletionOut(
        term=SKTermOut(**result.term),
        completion_type=result.completion_type,
        officials_affected=len(result.officials_affected),
    )


@router.post("/sk-terms/{term_id}/activate", response_model=SKTermOut)
def activate_sk_term(
    term_id: str,
    payload: TermTransitionIn | None = None,
    actor=Depends(get_acting_user),
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
    notifier=Depends(get_notifier),
):
    return _apply_term_transition(
        term_id=term_id,
        transition="activate",
        payload=payload,
        actor=actor,
        repo=repo,
        audit=audit,
        notifier=notifier,
    )


@router.post("/sk-terms/{term_id}/complete", response_model=TermCompletionOut)
def complete_sk_term(
    term_id: str,
    payload: TermTransitionIn | None = None,
    actor=Depends(get_acting_user),
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
    notifier=Depends(get_notifier),
):
    return _apply_term_transition(
        term_id=term_id,
        transition="complete",
        payload=payload,
        actor=actor,
        repo=repo,
        audit=audit,
        notifier=notifier,
    )


# -- jobs -------------------------------------------------------------------


@router.post("/jobs/update-term-statuses", response_model=TermSweepOut)
def update_term_statuses_job(
    _=Depends(require_internal_job_token),
    repo=Depends(get_repository),
    audit=Depends(get_audit_logger),
    notifier=Depends(get_notifier),
):
    result = run_sweep_once(repo, audit=audit, notifier=notifier)
    if not result.success and not result.skipped:
        logger.warning("term_status_job_failed run_date=%s errors=%s", result.run_date, result.errors)
    return TermSweepOut(
        run_date=result.run_date,
        skipped=result.skipped,
        success=result.success,
        activated=[_term_change(term) for term in result.activated],
        completed=[_term_change(term) for term in result.completed],
        officials_affected=len(result.officials_affected),
        errors=result.errors,
    )
