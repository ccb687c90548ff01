"""Task schemas."""
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from taskhub.schemas.common import PaginatedResponse
from taskhub.models.task import (
    ResponseStatus,
    ResponseType,
    SubmissionSource,
    TaskPriority,
    TaskStatus,
    TaskType,
    VerificationAction,
)


class TaskBase(BaseModel):
    """Base task schema."""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    comment: Optional[str] = None
    dealership_id: Optional[UUID] = None
    appear_date: Optional[datetime] = None
    deadline: Optional[datetime] = None
    task_type: TaskType = TaskType.INDIVIDUAL
    response_type: ResponseType = ResponseType.COMPLETION
    tags: List[str] = Field(default_factory=list)
    priority: TaskPriority = TaskPriority.MEDIUM


class TaskCreate(TaskBase):
    """Task creation schema."""

    generator_id: Optional[UUID] = None
    assigned_user_ids: List[UUID] = Field(default_factory=list)

    @field_validator("assigned_user_ids")
    @classmethod
    def dedupe_assignees(cls, value: List[UUID]) -> List[UUID]:
        return list(dict.fromkeys(value))


class TaskUpdate(BaseModel):
    """Task update schema."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    comment: Optional[str] = None
    appear_date: Optional[datetime] = None
    deadline: Optional[datetime] = None
    task_type: Optional[TaskType] = None
    response_type: Optional[ResponseType] = None
    tags: Optional[List[str]] = None
    priority: Optional[TaskPriority] = None
    postpone_count: Optional[int] = Field(None, ge=0)
    assigned_user_ids: Optional[List[UUID]] = None


class ProofFileResponse(BaseModel):
    """Stored proof file."""

    id: UUID
    original_filename: str
    mime_type: str
    file_size: int
    file_path: str
    url: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TaskAssignmentResponse(BaseModel):
    """Active assignment of a user to a task."""

    user_id: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class TaskResponseRead(BaseModel):
    """One assignee's response."""

    id: UUID
    task_id: UUID
    user_id: UUID
    status: ResponseStatus
    comment: Optional[str] = None
    responded_at: Optional[datetime] = None
    shift_id: Optional[UUID] = None
    completed_during_shift: bool = False
    verified_at: Optional[datetime] = None
    verified_by: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    rejection_count: int = 0
    submission_source: SubmissionSource
    uses_shared_proofs: bool = False
    proofs: List[ProofFileResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class CompletionProgress(BaseModel):
    """Group task completion counters."""

    total_assignees: int
    completed_count: int
    pending_review_count: int
    rejected_count: int
    pending_count: int
    percentage: int


class TaskRead(TaskBase):
    """Task response schema with its derived status."""

    id: UUID
    creator_id: Optional[UUID] = None
    generator_id: Optional[UUID] = None
    is_active: bool
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    postpone_count: int = 0
    created_at: datetime
    updated_at: datetime
    status: Optional[TaskStatus] = None
    assignments: List[TaskAssignmentResponse] = Field(default_factory=list, validation_alias="active_assignments")
    responses: List[TaskResponseRead] = Field(default_factory=list)
    shared_proofs: List[ProofFileResponse] = Field(default_factory=list)
    completion_progress: Optional[CompletionProgress] = None

    class Config:
        from_attributes = True


class TaskListResponse(PaginatedResponse[TaskRead]):
    """Paginated task list."""


class RejectRequest(BaseModel):
    """Rejection payload."""

    reason: str = Field(..., min_length=1, max_length=1000)


class VerificationHistoryRead(BaseModel):
    """Verification history entry."""

    id: UUID
    task_response_id: UUID
    action: VerificationAction
    performed_by: Optional[UUID] = None
    reason: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: str
    proof_count: int
    created_at: datetime

    class Config:
        from_attributes = True
