"""Task CRUD operations."""
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.crud.base import CRUDBase
from taskhub.models.task import Task, TaskResponse, TaskVerificationHistory
from taskhub.schemas.task import TaskCreate, TaskUpdate


class CRUDTask(CRUDBase[Task, TaskCreate, TaskUpdate]):
    """CRUD operations for Task."""

    async def get(self, db: AsyncSession, id: UUID) -> Optional[Task]:
        """Get a non-deleted task with its collections freshly loaded."""
        result = await db.execute(
            select(Task)
            .where(Task.id == id, Task.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, db: AsyncSession, id: UUID) -> Optional[Task]:
        """Get a non-deleted task and lock its row for the current transaction."""
        result = await db.execute(
            select(Task)
            .where(Task.id == id, Task.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


class CRUDTaskResponse(CRUDBase[TaskResponse, dict, dict]):
    """CRUD operations for TaskResponse."""

    async def get(self, db: AsyncSession, id: UUID) -> Optional[TaskResponse]:
        result = await db.execute(
            select(TaskResponse)
            .where(TaskResponse.id == id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_task_and_user(
        self,
        db: AsyncSession,
        *,
        task_id: UUID,
        user_id: UUID,
    ) -> Optional[TaskResponse]:
        """Get the response of one user on one task."""
        result = await db.execute(
            select(TaskResponse).where(
                TaskResponse.task_id == task_id,
                TaskResponse.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_history(self, db: AsyncSession, *, response_id: UUID) -> List[TaskVerificationHistory]:
        """Verification history of a response, oldest first."""
        result = await db.execute(
            select(TaskVerificationHistory)
            .where(TaskVerificationHistory.task_response_id == response_id)
            .order_by(TaskVerificationHistory.created_at.asc())
        )
        return list(result.scalars().all())


task = CRUDTask(Task)
task_response = CRUDTaskResponse(TaskResponse)
