import logging
from typing import Any, Callable

from app.db import get_connection
from app.services.repository import PostgresRepository
from app.services.side_effects import fire_and_forget

logger = logging.getLogger(__name__)

CATEGORY_BY_RESOURCE = {
    "survey-responses": "Survey Management",
    "validation-queue": "Data Validation",
    "sk-terms": "Term Management",
    "sk-officials": "SK Management",
}


class AuditLogger:
    """Writes ``Activity_Logs`` rows on a dedicated connection, off the request path."""

    def __init__(
        self,
        submit: Callable[..., Any] = fire_and_forget,
        connection_factory: Callable[[], Any] = get_connection,
    ):
        self._submit = submit
        self._connection_factory = connection_factory

    def create_audit_log(
        self,
        *,
        user_id: str | None,
        user_type: str | None,
        action: str,
        resource: str,
        resource_id: str | None = None,
        resource_name: str | None = None,
        details: dict | None = None,
        category: str | None = None,
        status: str = "success",
    ) -> None:
        entry = {
            "user_id": user_id or "anonymous",
            "user_type": user_type or "anonymous",
            "action": action,
            "resource": resource,
            "resource_id": resource_id,
            "resource_name": resource_name or resource_id,
            "details": details or {},
            "category": category or CATEGORY_BY_RESOURCE.get(resource, "Data Management"),
            "status": status,
        }
        self._submit(self._write, entry, label=f"audit:{action}")

    def _write(self, entry: dict) -> None:
        with self._connection_factory() as conn:
            repo = PostgresRepository(conn)
            try:
                log_id = repo.next_id("LOG")
                repo.insert_activity_log({**entry, "log_id": log_id})
                repo.commit()
            except Exception:
                repo.rollback()
                raise
        logger.info("audit_log_created log_id=%s action=%s resource=%s", log_id, entry["action"], entry["resource"])
