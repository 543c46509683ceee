import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import psycopg

from app.services.contact_mismatch import parse_contact_mismatch
from app.services.errors import NotFoundError, RequestValidationError, ServiceError
from app.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

ACTION_STATUS = {"approve": "validated", "reject": "rejected"}


@dataclass
class QueueDecisionResult:
    queue_id: str
    response_id: str
    youth_id: str
    status: str
    validated_by: str | None
    validated_at: datetime


def list_queue_items(
    repo,
    *,
    voter_match_type: str | None = None,
    barangay_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    rows = repo.fetch_validation_queue_items(
        voter_match_type=voter_match_type,
        barangay_id=barangay_id,
        limit=limit,
        offset=offset,
    )
    items = []
    for row in rows:
        item = dict(row)
        item["contact_mismatch"] = parse_contact_mismatch(item.get("validation_comments"))
        items.append(item)
    return items


def _apply_decision(repo, queue_id: str, action: str, reviewer: str | None, comments: str | None) -> QueueDecisionResult:
    status = ACTION_STATUS.get(action)
    if status is None:
        raise RequestValidationError([f"Unknown action: {action}"], message="Invalid validation action")

    item = repo.get_validation_queue_item(queue_id)
    if item is None:
        raise NotFoundError(f"Validation queue item {queue_id} not found")

    response = repo.update_response_validation(
        item["response_id"],
        status=status,
        validated_by=reviewer,
        comments=comments,
    )
    if response is None:
        raise NotFoundError(f"Survey response {item['response_id']} not found")

    if status == "validated":
        repo.mark_youth_validated(item["youth_id"], tier="manual", validated_by=reviewer)
    repo.delete_validation_queue_item(queue_id)

    return QueueDecisionResult(
        queue_id=queue_id,
        response_id=item["response_id"],
        youth_id=item["youth_id"],
        status=status,
        validated_by=reviewer,
        validated_at=response.get("validation_date") or datetime.now(timezone.utc),
    )


def validate_queue_item(
    repo,
    queue_id: str,
    action: str,
    reviewer: str | None,
    comments: str | None = None,
    *,
    audit=None,
) -> QueueDecisionResult:
    result = run_in_transaction(repo, lambda: _apply_decision(repo, queue_id, action, reviewer, comments))

    logger.info(
        "validation_queue_decision queue_id=%s response_id=%s status=%s reviewer=%s",
        queue_id,
        result.response_id,
        result.status,
        reviewer,
    )
    _audit_decision(audit, result, action, comments)
    return result


def bulk_validate_queue_items(
    repo,
    queue_ids: list[str],
    action: str,
    reviewer: str | None,
    comments: str | None = None,
    *,
    audit=None,
) -> dict:
    """Apply one decision to many queue items; each item commits on its own."""
    results = []
    for queue_id in dict.fromkeys(queue_ids):
        try:
            result = validate_queue_item(repo, queue_id, action, reviewer, comments, audit=audit)
        except ServiceError as exc:
            results.append({"queue_id": queue_id, "success": False, "status": None, "error": exc.message})
            continue
        except psycopg.Error as exc:
            logger.warning("bulk_validation_item_failed queue_id=%s sqlstate=%s", queue_id, exc.sqlstate)
            results.append(
                {"queue_id": queue_id, "success": False, "status": None, "error": f"database error ({exc.sqlstate or 'unknown'})"}
            )
            continue
        results.append({"queue_id": queue_id, "success": True, "status": result.status, "error": None})

    failed = sum(1 for item in results if not item["success"])
    return {"processed_count": len(results) - failed, "failed_count": failed, "results": results}


def _audit_decision(audit, result: QueueDecisionResult, action: str, comments: str | None) -> None:
    if audit is None:
        return
    try:
        audit.create_audit_log(
            user_id=result.validated_by,
            user_type="admin",
            action="VALIDATE_SURVEY_RESPONSE",
            resource="validation-queue",
            resource_id=result.response_id,
            details={
                "queue_id": result.queue_id,
                "youth_id": result.youth_id,
                "action": action,
                "status": result.status,
                "comments": comments,
            },
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("validation_audit_failed queue_id=%s error=%s", result.queue_id, exc)
