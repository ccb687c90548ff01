"""Task listing with filters, sorting and pagination."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import String, cast, false, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.security import Permission
from taskhub.core.time import now_utc
from taskhub.models.task import Task, TaskAssignment, TaskStatus
from taskhub.models.user import User
from taskhub.services.task_status import status_for
from taskhub.utils.permissions import has_dealership_access, has_permission

SORT_FIELDS = {
    "created_at": Task.created_at,
    "title": Task.title,
    "priority": Task.priority,
    "deadline": Task.deadline,
}


@dataclass
class TaskFilters:
    """Query parameters of the task list."""

    status: Optional[TaskStatus] = None
    task_type: Optional[str] = None
    response_type: Optional[str] = None
    dealership_id: Optional[UUID] = None
    is_active: Optional[bool] = None
    include_archived: bool = False
    priority: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    assigned_to: Optional[UUID] = None
    creator_id: Optional[UUID] = None
    generator_id: Optional[UUID] = None
    search: Optional[str] = None
    deadline_from: Optional[datetime] = None
    deadline_to: Optional[datetime] = None
    sort_by: str = "created_at"
    sort_dir: str = "desc"


class TaskFilterService:
    """Build and run task list queries scoped to what the viewer may see."""

    @staticmethod
    def _conditions(filters: TaskFilters, viewer: User) -> list:
        conditions = [Task.deleted_at.is_(None)]
        if not filters.include_archived:
            conditions.append(Task.archived_at.is_(None))

        if filters.dealership_id is not None:
            if has_dealership_access(viewer, filters.dealership_id):
                conditions.append(Task.dealership_id == filters.dealership_id)
            else:
                conditions.append(false())
        elif not has_permission(viewer, Permission.DEALERSHIP_ALL):
            accessible = list(viewer.accessible_dealership_ids)
            conditions.append(
                or_(
                    Task.dealership_id.is_(None),
                    Task.dealership_id.in_(accessible) if accessible else false(),
                    Task.creator_id == viewer.id,
                    Task.assignments.any(
                        (TaskAssignment.user_id == viewer.id) & TaskAssignment.deleted_at.is_(None)
                    ),
                )
            )

        if filters.task_type:
            conditions.append(Task.task_type == filters.task_type)
        if filters.response_type:
            conditions.append(Task.response_type == filters.response_type)
        if filters.is_active is not None:
            conditions.append(Task.is_active.is_(filters.is_active))
        if filters.priority:
            conditions.append(Task.priority == filters.priority)
        if filters.creator_id is not None:
            conditions.append(Task.creator_id == filters.creator_id)
        if filters.generator_id is not None:
            conditions.append(Task.generator_id == filters.generator_id)
        if filters.assigned_to is not None:
            conditions.append(
                Task.assignments.any(
                    (TaskAssignment.user_id == filters.assigned_to) & TaskAssignment.deleted_at.is_(None)
                )
            )
        if filters.tags:
            # Tags are stored as a JSON list; match any of the requested ones
            tags_text = cast(Task.tags, String)
            conditions.append(or_(*[tags_text.like(f'%"{tag.strip()}"%') for tag in filters.tags]))
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            conditions.append(
                or_(
                    func.lower(Task.title).like(pattern),
                    func.lower(Task.description).like(pattern),
                    func.lower(Task.comment).like(pattern),
                    func.lower(cast(Task.tags, String)).like(pattern),
                )
            )
        if filters.deadline_from is not None:
            conditions.append(Task.deadline >= filters.deadline_from)
        if filters.deadline_to is not None:
            conditions.append(Task.deadline <= filters.deadline_to)
        return conditions

    @staticmethod
    def _order(filters: TaskFilters):
        column = SORT_FIELDS.get(filters.sort_by, Task.created_at)
        if filters.sort_dir == "asc":
            return column.asc(), Task.id.asc()
        return column.desc(), Task.id.desc()

    async def list_tasks(
        self,
        db: AsyncSession,
        viewer: User,
        filters: TaskFilters,
        *,
        skip: int = 0,
        limit: int = 15,
        now: Optional[datetime] = None,
    ) -> Tuple[List[Task], int]:
        """Return one page of tasks and the total number of matches.

        Status is derived, so a status filter is applied to the loaded rows
        and pagination happens afterwards.
        """
        conditions = self._conditions(filters, viewer)
        query = select(Task).where(*conditions).order_by(*self._order(filters))

        if filters.status is None:
            total_result = await db.execute(select(func.count(Task.id)).where(*conditions))
            total = total_result.scalar_one()
            result = await db.execute(query.offset(skip).limit(limit))
            return list(result.scalars().all()), total

        now = now or now_utc()
        result = await db.execute(query)
        matching = [task for task in result.scalars().all() if status_for(task, now) == filters.status]
        return matching[skip:skip + limit], len(matching)


task_filter_service = TaskFilterService()
