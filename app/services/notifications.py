import logging
from typing import Any, Callable

from app.db import get_connection
from app.services.repository import PostgresRepository
from app.services.side_effects import fire_and_forget

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(
        self,
        submit: Callable[..., Any] = fire_and_forget,
        connection_factory: Callable[[], Any] = get_connection,
    ):
        self._submit = submit
        self._connection_factory = connection_factory

    def notify_admins(self, *, title: str, message: str, type: str = "info", priority: str = "medium") -> None:
        payload = {"title": title, "message": message, "type": type, "priority": priority}
        self._submit(self._write_admin_notifications, payload, label="notify:admins")

    def notify_user(
        self,
        *,
        user_id: str,
        user_type: str,
        title: str,
        message: str,
        type: str = "info",
        priority: str = "medium",
    ) -> None:
        payload = {
            "user_id": user_id,
            "user_type": user_type,
            "title": title,
            "message": message,
            "type": type,
            "priority": priority,
        }
        self._submit(self._write_notifications, [payload], label=f"notify:{user_type}")

    def _write_admin_notifications(self, payload: dict) -> None:
        with self._connection_factory() as conn:
            admin_ids = PostgresRepository(conn).fetch_active_admin_ids()
        if not admin_ids:
            logger.info("admin_notification_skipped reason=no_active_admins title=%s", payload["title"])
            return
        self._write_notifications(
            [{**payload, "user_id": admin_id, "user_type": "admin"} for admin_id in admin_ids]
        )

    def _write_notifications(self, notifications: list[dict]) -> None:
        with self._connection_factory() as conn:
            repo = PostgresRepository(conn)
            try:
                for notification in notifications:
                    repo.insert_notification({**notification, "notification_id": repo.next_id("NOT")})
                repo.commit()
            except Exception:
                repo.rollback()
                raise
        logger.info("notifications_created count=%s", len(notifications))
