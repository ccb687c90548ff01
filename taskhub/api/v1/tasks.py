"""Tasks API endpoints."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.exceptions import NotFoundError
from taskhub.core.security import Permission
from taskhub.crud.task import task as task_crud
from taskhub.database import get_db
from taskhub.dependencies import require_permission
from taskhub.localization.helpers import get_translation
from taskhub.models.task import ResponseType, TaskPriority, TaskStatus, TaskType
from taskhub.models.user import User
from taskhub.schemas.task import (
    RejectRequest,
    TaskCreate,
    TaskListResponse,
    TaskRead,
    TaskResponseRead,
    TaskUpdate,
    VerificationHistoryRead,
)
from taskhub.services.task_filter_service import TaskFilters, task_filter_service
from taskhub.services.task_response_service import task_response_service
from taskhub.services.task_service import task_service
from taskhub.services.verification_service import verification_service

router = APIRouter()


async def _get_task(db: AsyncSession, task_id: UUID):
    task = await task_crud.get(db, task_id)
    if task is None:
        raise NotFoundError(get_translation("tasks.not_found"))
    return task


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    skip: int = Query(0, ge=0),
    limit: int = Query(15, ge=1, le=100),
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    task_type: Optional[TaskType] = None,
    response_type: Optional[ResponseType] = None,
    dealership_id: Optional[UUID] = None,
    is_active: Optional[bool] = None,
    include_archived: bool = False,
    priority: Optional[TaskPriority] = None,
    tags: Optional[List[str]] = Query(None),
    assigned_to: Optional[UUID] = None,
    creator_id: Optional[UUID] = None,
    generator_id: Optional[UUID] = None,
    search: Optional[str] = None,
    deadline_from: Optional[datetime] = None,
    deadline_to: Optional[datetime] = None,
    sort_by: str = Query("created_at", pattern="^(created_at|title|priority|deadline)$"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_VIEW)),
):
    """List tasks visible to the current user."""
    filters = TaskFilters(
        status=status_filter,
        task_type=task_type.value if task_type else None,
        response_type=response_type.value if response_type else None,
        dealership_id=dealership_id,
        is_active=is_active,
        include_archived=include_archived,
        priority=priority.value if priority else None,
        tags=[tag for value in (tags or []) for tag in value.split(",") if tag.strip()],
        assigned_to=assigned_to,
        creator_id=creator_id,
        generator_id=generator_id,
        search=search,
        deadline_from=deadline_from,
        deadline_to=deadline_to,
        sort_by=sort_by,
        sort_dir=sort_dir,
    )
    tasks, total = await task_filter_service.list_tasks(db, current_user, filters, skip=skip, limit=limit)
    return TaskListResponse(
        total=total,
        skip=skip,
        limit=limit,
        items=[task_service.to_read(item) for item in tasks],
    )


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_in: TaskCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_CREATE)),
):
    """Create a task and assign it."""
    task = await task_service.create_task(db, task_in, current_user)
    return task_service.to_read(task)


@router.post("/responses/{response_id}/approve", response_model=TaskResponseRead)
async def approve_response(
    response_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_VERIFY)),
):
    """Approve a response awaiting review."""
    return await verification_service.approve(db, response_id, current_user)


@router.post("/responses/{response_id}/reject", response_model=TaskResponseRead)
async def reject_response(
    response_id: UUID,
    payload: RejectRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_VERIFY)),
):
    """Reject a response awaiting review; the assignee has to resubmit."""
    return await verification_service.reject(db, response_id, current_user, payload.reason)


@router.get("/responses/{response_id}/history", response_model=List[VerificationHistoryRead])
async def response_history(
    response_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_VIEW)),
):
    """Verification history of a response, oldest first."""
    return await verification_service.history(db, response_id, current_user)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_VIEW)),
):
    """Get task by ID."""
    task = await task_service.get_visible(db, task_id, current_user)
    return task_service.to_read(task)


@router.put("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: UUID,
    task_in: TaskUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_UPDATE)),
):
    """Edit a task that is not completed yet."""
    task = await _get_task(db, task_id)
    task = await task_service.update_task(db, task, task_in, current_user)
    return task_service.to_read(task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_DELETE)),
):
    """Soft-delete a task."""
    task = await _get_task(db, task_id)
    await task_service.delete_task(db, task, current_user)


@router.patch("/{task_id}/status", response_model=TaskRead)
async def update_task_status(
    task_id: UUID,
    status_value: str = Form(..., alias="status"),
    complete_for_all: bool = Form(False),
    preserve_proofs: bool = Form(False),
    proof_files: List[UploadFile] = File(default=[]),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_RESPOND)),
):
    """Move the caller's response (or every assignee's) to a new status.

    Accepts multipart form data so proof files can be uploaded together
    with the status change.
    """
    task = await task_response_service.update_status(
        db,
        task_id,
        current_user,
        status_value,
        complete_for_all=complete_for_all,
        preserve_proofs=preserve_proofs,
        files=proof_files,
    )
    return task_service.to_read(task)


@router.post("/{task_id}/reject-all", response_model=TaskRead)
async def reject_all_responses(
    task_id: UUID,
    payload: RejectRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_VERIFY)),
):
    """Reject every response of the task that awaits review."""
    await verification_service.reject_all_for_task(db, task_id, current_user, payload.reason)
    task = await _get_task(db, task_id)
    return task_service.to_read(task)


@router.post("/{task_id}/archive", response_model=TaskRead)
async def archive_task(
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_ARCHIVE)),
):
    """Move a task out of the active set."""
    task = await _get_task(db, task_id)
    task = await task_service.archive_task(db, task, current_user)
    return task_service.to_read(task)


@router.post("/{task_id}/restore", response_model=TaskRead)
async def restore_task(
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.TASK_ARCHIVE)),
):
    """Bring an archived task back."""
    task = await _get_task(db, task_id)
    task = await task_service.restore_task(db, task, current_user)
    return task_service.to_read(task)
