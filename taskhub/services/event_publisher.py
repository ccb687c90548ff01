"""Task event publishing.

Events go to a Redis pub/sub channel for external consumers (the chat bot,
push delivery). Publishing is best effort: failures are logged and the
connection is dropped so the next event reconnects.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import settings
from taskhub.core.security import Permission
from taskhub.core.time import now_utc, to_iso_zulu
from taskhub.models.task import Task, TaskResponse
from taskhub.models.user import User
from taskhub.services.settings_service import NOTIFY_TASK_ASSIGNED, settings_service
from taskhub.utils.permissions import has_dealership_access, has_permission

logger = logging.getLogger(__name__)

DEFAULT_SUBMITTER_NAME = "Сотрудник"


def serialize_task(task: Task) -> Dict[str, Any]:
    """Task fields carried by every event."""
    return {
        "id": str(task.id),
        "title": task.title,
        "deadline": to_iso_zulu(task.deadline),
        "priority": task.priority,
        "response_type": task.response_type,
        "dealership_id": str(task.dealership_id) if task.dealership_id else None,
    }


def _ids(user_ids: Iterable[Any]) -> List[str]:
    return [str(user_id) for user_id in user_ids]


class TaskEventPublisher:
    """Publishes task events to ``TASK_EVENTS_CHANNEL``."""

    def __init__(self, client_factory: Optional[Callable[[], Any]] = None):
        self._client = None
        self._client_factory = client_factory or (
            lambda: redis.from_url(settings.REDIS_URL, decode_responses=True)
        )

    def _get_client(self):
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def publish(self, payload: Dict[str, Any]) -> bool:
        """Publish one event. Never raises."""
        try:
            client = self._get_client()
            await client.publish(settings.TASK_EVENTS_CHANNEL, json.dumps(payload, ensure_ascii=False))
            return True
        except Exception as exc:
            # Reconnect lazily on the next event
            self._client = None
            logger.warning(
                "Failed to publish task event %s: %s",
                payload.get("event", "unknown"),
                exc,
            )
            return False

    async def publish_task_assigned(self, db: AsyncSession, task: Task, user_ids: Iterable[Any]) -> bool:
        user_ids = _ids(user_ids)
        if not user_ids:
            return False
        if task.dealership_id and not await settings_service.get_bool(db, NOTIFY_TASK_ASSIGNED, task.dealership_id):
            return False

        return await self.publish({
            "event": "task.assigned",
            "task": serialize_task(task),
            "user_ids": user_ids,
            "timestamp": to_iso_zulu(now_utc()),
        })

    async def publish_task_approved(self, task: Task, response: TaskResponse) -> bool:
        return await self.publish({
            "event": "task.approved",
            "task": serialize_task(task),
            "user_ids": _ids([response.user_id]),
            "timestamp": to_iso_zulu(now_utc()),
        })

    async def publish_task_rejected(self, task: Task, response: TaskResponse, reason: str) -> bool:
        return await self.publish({
            "event": "task.rejected",
            "task": serialize_task(task),
            "user_ids": _ids([response.user_id]),
            "reason": reason,
            "timestamp": to_iso_zulu(now_utc()),
        })

    async def publish_task_rejected_bulk(self, task: Task, user_ids: Iterable[Any], reason: str) -> bool:
        return await self.publish({
            "event": "task.rejected",
            "task": serialize_task(task),
            "user_ids": _ids(user_ids),
            "reason": reason,
            "timestamp": to_iso_zulu(now_utc()),
        })

    async def publish_task_pending_review(self, db: AsyncSession, task: Task, response: TaskResponse) -> bool:
        """Notify the task's reviewers (managers and owners) except the submitter."""
        reviewer_ids = await self._reviewer_ids(db, task, exclude_user_id=response.user_id)
        if not reviewer_ids:
            return False

        submitter = await db.get(User, response.user_id)
        return await self.publish({
            "event": "task.pending_review",
            "task": serialize_task(task),
            "user_ids": _ids(reviewer_ids),
            "submitted_by": (submitter.full_name if submitter else None) or DEFAULT_SUBMITTER_NAME,
            "response_id": str(response.id),
            "timestamp": to_iso_zulu(now_utc()),
        })

    @staticmethod
    async def _reviewer_ids(db: AsyncSession, task: Task, exclude_user_id) -> list:
        result = await db.execute(
            select(User).where(User.is_active.is_(True), User.id != exclude_user_id)
        )
        required = Permission.TASK_VERIFY if task.dealership_id is not None else Permission.DEALERSHIP_ALL
        return [
            user.id
            for user in result.scalars().all()
            if has_permission(user, required) and has_dealership_access(user, task.dealership_id)
        ]


event_publisher = TaskEventPublisher()
