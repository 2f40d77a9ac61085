"""In-app notification records plus an optional push transport."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

from src.storage.models import Notification
from src.storage.repository import SheetSyncRepository

logger = logging.getLogger(__name__)

TASK_DETAIL_ROUTE = "TaskDetail"

# (user_id, title, message, data) -> None; raises on delivery failure.
PushSender = Callable[[int, str, str, Dict[str, Any]], None]


class TaskNotifier:
    """Record a notification for a user and hand it to the push transport."""

    def __init__(self, push_sender: Optional[PushSender] = None) -> None:
        self.push_sender = push_sender

    def send(
        self,
        repository: SheetSyncRepository,
        *,
        user_id: int,
        title: str,
        message: str,
        notification_type: str,
        task_id: int,
    ) -> Notification:
        """Deliver one notification; errors propagate so callers can log per recipient."""

        if self.push_sender is not None:
            self.push_sender(user_id, title, message, {"type": notification_type, "taskId": task_id})
        else:
            logger.debug("No push transport configured", extra={"user_id": user_id})

        # Savepoint so a failed insert cannot poison the surrounding row.
        with repository.session.begin_nested():
            notification = repository.add_notification(
                Notification(
                    user_id=user_id,
                    title=title,
                    message=message,
                    type=notification_type,
                    metadata_json=json.dumps({"taskId": task_id}),
                    screen_route=TASK_DETAIL_ROUTE,
                )
            )
        logger.info(
            "Notification dispatched",
            extra={"user_id": user_id, "notification_type": notification_type, "task_id": task_id},
        )
        return notification
