"""Derived task status.

Task status is never stored. It is recomputed from the task's current
assignments and responses every time it is needed, and every consumer
(API serialization, filtering, archival, reporting) goes through
``compute_status`` so they all agree.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import inspect

from taskhub.core.time import ensure_utc, now_utc
from taskhub.models.task import ResponseStatus, Task, TaskStatus, TaskType
from taskhub.schemas.task import CompletionProgress


class IncompleteTaskCollectionsError(RuntimeError):
    """Status was requested for a task whose assignments or responses are not loaded."""


@dataclass(frozen=True)
class TaskSnapshot:
    task_type: str
    deadline: Optional[datetime]
    is_active: bool


@dataclass(frozen=True)
class AssignmentSnapshot:
    user_id: UUID


@dataclass(frozen=True)
class ResponseSnapshot:
    user_id: UUID
    status: str
    responded_at: Optional[datetime]


def _is_late(response: ResponseSnapshot, deadline: Optional[datetime]) -> bool:
    if deadline is None or response.responded_at is None:
        return False
    return ensure_utc(response.responded_at) > deadline


def compute_status(
    task: TaskSnapshot,
    assignments: Sequence[AssignmentSnapshot],
    responses: Sequence[ResponseSnapshot],
    now: datetime,
) -> TaskStatus:
    """Compute the status of a task from complete assignment and response sets.

    ``assignments`` must contain only the currently active assignments and
    ``responses`` every response of the task, in creation order.
    """
    deadline = ensure_utc(task.deadline)

    if task.task_type == TaskType.GROUP.value:
        assigned = {assignment.user_id for assignment in assignments}
        relevant = [response for response in responses if response.user_id in assigned]
        completed = [response for response in relevant if response.status == ResponseStatus.COMPLETED.value]
        if assigned and assigned <= {response.user_id for response in completed}:
            if any(_is_late(response, deadline) for response in completed):
                return TaskStatus.COMPLETED_LATE
            return TaskStatus.COMPLETED
    else:
        relevant = list(responses)
        first_completed = next(
            (response for response in relevant if response.status == ResponseStatus.COMPLETED.value),
            None,
        )
        if first_completed is not None:
            if _is_late(first_completed, deadline):
                return TaskStatus.COMPLETED_LATE
            return TaskStatus.COMPLETED

    statuses = {response.status for response in relevant}
    if ResponseStatus.PENDING_REVIEW.value in statuses:
        return TaskStatus.PENDING_REVIEW
    if ResponseStatus.ACKNOWLEDGED.value in statuses:
        return TaskStatus.ACKNOWLEDGED

    if task.is_active and deadline is not None and deadline < ensure_utc(now):
        return TaskStatus.OVERDUE
    return TaskStatus.PENDING


def snapshot_task(task: Task) -> TaskSnapshot:
    return TaskSnapshot(task_type=task.task_type, deadline=task.deadline, is_active=task.is_active)


def snapshot_assignments(task: Task) -> list[AssignmentSnapshot]:
    return [AssignmentSnapshot(user_id=assignment.user_id) for assignment in task.active_assignments]


def snapshot_responses(task: Task) -> list[ResponseSnapshot]:
    return [
        ResponseSnapshot(user_id=response.user_id, status=response.status, responded_at=response.responded_at)
        for response in task.responses
    ]


def _require_collections(task: Task) -> None:
    unloaded = inspect(task).unloaded
    missing = sorted({"assignments", "responses"} & unloaded)
    if missing:
        raise IncompleteTaskCollectionsError(
            f"Task {task.id} has unloaded collections: {', '.join(missing)}"
        )


def status_for(task: Task, now: Optional[datetime] = None) -> TaskStatus:
    """Status of an ORM task whose assignments and responses are loaded."""
    _require_collections(task)
    return compute_status(
        snapshot_task(task),
        snapshot_assignments(task),
        snapshot_responses(task),
        now or now_utc(),
    )


def is_completed(status: TaskStatus) -> bool:
    return status in (TaskStatus.COMPLETED, TaskStatus.COMPLETED_LATE)


def _count_users(responses: Iterable[ResponseSnapshot], status: ResponseStatus) -> int:
    return len({response.user_id for response in responses if response.status == status.value})


def compute_progress(
    assignments: Sequence[AssignmentSnapshot],
    responses: Sequence[ResponseSnapshot],
) -> CompletionProgress:
    """Per-assignee counters for a group task."""
    assigned = {assignment.user_id for assignment in assignments}
    relevant = [response for response in responses if response.user_id in assigned]

    total = len(assigned)
    completed = _count_users(relevant, ResponseStatus.COMPLETED)
    pending_review = _count_users(relevant, ResponseStatus.PENDING_REVIEW)
    rejected = _count_users(relevant, ResponseStatus.REJECTED)
    pending = max(0, total - completed - pending_review - rejected)
    # Half-up rounding, 2 of 3 -> 67
    percentage = int(completed * 100 / total + 0.5) if total else 0

    return CompletionProgress(
        total_assignees=total,
        completed_count=completed,
        pending_review_count=pending_review,
        rejected_count=rejected,
        pending_count=pending,
        percentage=percentage,
    )


def completion_progress(task: Task) -> Optional[CompletionProgress]:
    """Completion counters of an ORM task; None for individual tasks."""
    if task.task_type != TaskType.GROUP.value:
        return None
    _require_collections(task)
    return compute_progress(snapshot_assignments(task), snapshot_responses(task))
