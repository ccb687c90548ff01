"""Task lifecycle: creation, editing, deletion, archiving and assignment sync."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.exceptions import DuplicateTaskError, ForbiddenError, NotFoundError, TaskFinalizedError
from taskhub.core.outbox import transaction
from taskhub.core.time import minute_bounds, now_utc
from taskhub.crud.task import task as task_crud
from taskhub.localization.helpers import get_translation
from taskhub.models.task import ArchiveReason, Task, TaskAssignment
from taskhub.models.user import User
from taskhub.schemas.task import ProofFileResponse, TaskCreate, TaskRead, TaskUpdate
from taskhub.services.event_publisher import event_publisher
from taskhub.services.storage_service import StorageError, storage_service
from taskhub.services.task_status import completion_progress, is_completed, status_for
from taskhub.utils.permissions import has_dealership_access, is_elevated

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("title", "task_type", "response_type", "tags", "priority", "postpone_count")
_NULLABLE_FIELDS = ("description", "comment", "appear_date", "deadline")


def _enum_value(value):
    return getattr(value, "value", value)


class TaskService:
    """Task creation, editing and access checks."""

    @staticmethod
    def ensure_dealership_access(user: User, dealership_id: Optional[UUID]) -> None:
        if not has_dealership_access(user, dealership_id):
            raise ForbiddenError(get_translation("tasks.no_dealership_access"))

    @staticmethod
    def can_view(user: User, task: Task) -> bool:
        """Dealership members, the creator and assignees may see a task."""
        if has_dealership_access(user, task.dealership_id):
            return True
        if task.creator_id == user.id:
            return True
        return user.id in task.assigned_user_ids

    @staticmethod
    def can_edit(user: User, task: Task) -> bool:
        if task.creator_id == user.id:
            return True
        return is_elevated(user) and has_dealership_access(user, task.dealership_id)

    async def get_visible(self, db: AsyncSession, task_id: UUID, user: User) -> Task:
        """Load a task the user may see or raise 404/403."""
        task = await task_crud.get(db, task_id)
        if task is None:
            raise NotFoundError(get_translation("tasks.not_found"))
        if not self.can_view(user, task):
            raise ForbiddenError(get_translation("tasks.no_task_access"))
        return task

    @staticmethod
    async def is_duplicate(
        db: AsyncSession,
        *,
        title: str,
        task_type: str,
        dealership_id: Optional[UUID],
        deadline: Optional[datetime],
        description: Optional[str],
    ) -> bool:
        """Whether an active task with the same identity already exists.

        Deadlines are compared at minute precision; archived and deleted
        tasks never match.
        """
        conditions = [
            Task.title == title,
            Task.task_type == task_type,
            Task.is_active.is_(True),
            Task.deleted_at.is_(None),
        ]

        if dealership_id is None:
            conditions.append(Task.dealership_id.is_(None))
        else:
            conditions.append(Task.dealership_id == dealership_id)

        if deadline is None:
            conditions.append(Task.deadline.is_(None))
        else:
            start, end = minute_bounds(deadline)
            conditions.append(and_(Task.deadline >= start, Task.deadline <= end))

        if description:
            conditions.append(Task.description == description)
        else:
            conditions.append(or_(Task.description.is_(None), Task.description == ""))

        result = await db.execute(select(Task.id).where(*conditions).limit(1))
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def sync_assignments(db: AsyncSession, task_id: UUID, desired_user_ids: Iterable[UUID]) -> List[UUID]:
        """Reconcile the task's assignees with ``desired_user_ids``.

        Removed users are tombstoned, returning users get their old row back.
        Runs inside the caller's transaction and never commits. Returns the
        ids that became active (added or restored).
        """
        desired = list(dict.fromkeys(desired_user_ids))
        desired_set = set(desired)

        result = await db.execute(
            select(TaskAssignment)
            .where(TaskAssignment.task_id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        rows = {row.user_id: row for row in result.scalars().all()}

        now = now_utc()
        for user_id, row in rows.items():
            if row.deleted_at is None and user_id not in desired_set:
                row.deleted_at = now

        activated = []
        for user_id in desired:
            row = rows.get(user_id)
            if row is None:
                db.add(TaskAssignment(task_id=task_id, user_id=user_id))
                activated.append(user_id)
            elif row.deleted_at is not None:
                row.deleted_at = None
                activated.append(user_id)

        await db.flush()
        return activated

    async def create_task(self, db: AsyncSession, data: TaskCreate, creator: User) -> Task:
        """Create a task with its assignments and notify the assignees."""
        self.ensure_dealership_access(creator, data.dealership_id)

        if await self.is_duplicate(
            db,
            title=data.title,
            task_type=data.task_type.value,
            dealership_id=data.dealership_id,
            deadline=data.deadline,
            description=data.description,
        ):
            raise DuplicateTaskError()

        async with transaction(db) as outbox:
            task = Task(
                title=data.title,
                description=data.description,
                comment=data.comment,
                creator_id=creator.id,
                dealership_id=data.dealership_id,
                appear_date=data.appear_date,
                deadline=data.deadline,
                task_type=data.task_type.value,
                response_type=data.response_type.value,
                tags=list(data.tags),
                priority=data.priority.value,
                generator_id=data.generator_id,
            )
            db.add(task)
            await db.flush()
            assigned = await self.sync_assignments(db, task.id, data.assigned_user_ids)
            task_id = task.id
            if assigned:
                outbox.enqueue_event(self.notify_assigned, db, task_id, assigned)

        logger.info("Task %s created by %s with %d assignees", task_id, creator.id, len(assigned))
        return await task_crud.get(db, task_id)

    async def update_task(self, db: AsyncSession, task: Task, data: TaskUpdate, actor: User) -> Task:
        """Edit a task that is not yet completed."""
        if not self.can_edit(actor, task):
            raise ForbiddenError(get_translation("tasks.no_task_access"))
        if is_completed(status_for(task)):
            raise TaskFinalizedError()

        changes = data.model_dump(exclude_unset=True)
        assigned_user_ids = changes.pop("assigned_user_ids", None)

        async with transaction(db) as outbox:
            for field in _NULLABLE_FIELDS:
                if field in changes:
                    setattr(task, field, changes[field])
            for field in _REQUIRED_FIELDS:
                if changes.get(field) is not None:
                    setattr(task, field, _enum_value(changes[field]))
            if assigned_user_ids is not None:
                assigned = await self.sync_assignments(db, task.id, assigned_user_ids)
                if assigned:
                    outbox.enqueue_event(self.notify_assigned, db, task.id, assigned)

        return await task_crud.get(db, task.id)

    async def delete_task(self, db: AsyncSession, task: Task, actor: User) -> None:
        """Soft-delete a task; its rows stay for history."""
        if not (task.creator_id == actor.id or has_dealership_access(actor, task.dealership_id)):
            raise ForbiddenError(get_translation("tasks.no_task_access"))
        async with transaction(db):
            task.deleted_at = now_utc()
        logger.info("Task %s deleted by %s", task.id, actor.id)

    async def archive_task(self, db: AsyncSession, task: Task, actor: User) -> Task:
        self.ensure_dealership_access(actor, task.dealership_id)
        async with transaction(db):
            task.archive(ArchiveReason.MANUAL.value)
        return await task_crud.get(db, task.id)

    async def restore_task(self, db: AsyncSession, task: Task, actor: User) -> Task:
        self.ensure_dealership_access(actor, task.dealership_id)
        async with transaction(db):
            task.restore_from_archive()
        return await task_crud.get(db, task.id)

    @staticmethod
    async def notify_assigned(db: AsyncSession, task_id: UUID, user_ids: List[UUID]) -> None:
        task = await task_crud.get(db, task_id)
        if task is not None:
            await event_publisher.publish_task_assigned(db, task, user_ids)

    @staticmethod
    def to_read(task: Task, now: Optional[datetime] = None) -> TaskRead:
        """Serialize a task with its derived status, progress and proof URLs."""
        now = now or now_utc()
        read = TaskRead.model_validate(task)
        read.status = status_for(task, now)
        read.completion_progress = completion_progress(task)
        for proof in read.shared_proofs:
            proof.url = _proof_url(proof)
        for response in read.responses:
            for proof in response.proofs:
                proof.url = _proof_url(proof)
        return read


def _proof_url(proof: ProofFileResponse) -> Optional[str]:
    try:
        return storage_service.generate_download_url(proof.file_path)
    except StorageError as exc:
        logger.warning("Could not sign URL for proof %s: %s", proof.id, exc)
        return None


task_service = TaskService()
