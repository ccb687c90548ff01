"""Task, assignment, response and proof models."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union
import uuid

from sqlalchemy import Column, String, Boolean, ForeignKey, Integer, Text, BigInteger, UniqueConstraint
from sqlalchemy.orm import relationship

from taskhub.core.time import now_utc
from taskhub.database import Base
from taskhub.db.types import GUID, JSONBType, UTCDateTime


class TaskType(str, Enum):
    """Who has to complete the task."""

    INDIVIDUAL = "individual"  # any one assignee completes it
    GROUP = "group"  # every assignee must complete it


class ResponseType(str, Enum):
    """What an assignee has to do."""

    NOTIFICATION = "notification"
    COMPLETION = "completion"
    COMPLETION_WITH_PROOF = "completion_with_proof"


class TaskPriority(str, Enum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, Enum):
    """Derived task status. Never stored."""

    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    PENDING_REVIEW = "pending_review"
    COMPLETED = "completed"
    COMPLETED_LATE = "completed_late"
    OVERDUE = "overdue"


class ResponseStatus(str, Enum):
    """Status of one assignee's response."""

    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    PENDING_REVIEW = "pending_review"
    COMPLETED = "completed"
    REJECTED = "rejected"


class SubmissionSource(str, Enum):
    """How a response reached its current submission."""

    INDIVIDUAL = "individual"
    SHARED = "shared"
    RESUBMITTED = "resubmitted"


class VerificationAction(str, Enum):
    """Verification history actions."""

    SUBMITTED = "submitted"
    RESUBMITTED = "resubmitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class ArchiveReason(str, Enum):
    """Why a task left the active set."""

    COMPLETED = "completed"
    EXPIRED = "expired"
    EXPIRED_AFTER_SHIFT = "expired_after_shift"
    MANUAL = "manual"


@dataclass(frozen=True)
class IndividualProofs:
    """Response backed by its own TaskProof rows."""

    response_id: uuid.UUID


@dataclass(frozen=True)
class SharedProofs:
    """Response backed by the task's TaskSharedProof rows."""

    task_id: uuid.UUID


ProofSource = Union[IndividualProofs, SharedProofs]


class Task(Base):
    """Unit of work assigned to dealership staff."""

    __tablename__ = "tasks"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)
    creator_id = Column(GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    dealership_id = Column(GUID(), ForeignKey("dealerships.id", ondelete="CASCADE"), nullable=True, index=True)
    appear_date = Column(UTCDateTime(), nullable=True)
    deadline = Column(UTCDateTime(), nullable=True, index=True)
    task_type = Column(String(20), nullable=False, default=TaskType.INDIVIDUAL.value)
    response_type = Column(String(30), nullable=False, default=ResponseType.COMPLETION.value)
    tags = Column(JSONBType(), nullable=False, default=list)
    priority = Column(String(20), nullable=False, default=TaskPriority.MEDIUM.value)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    archived_at = Column(UTCDateTime(), nullable=True)
    archive_reason = Column(String(50), nullable=True)
    postpone_count = Column(Integer, nullable=False, default=0)
    generator_id = Column(GUID(), nullable=True, index=True)  # Recurring template that spawned the task
    deleted_at = Column(UTCDateTime(), nullable=True, index=True)
    created_at = Column(UTCDateTime(), default=now_utc, nullable=False)
    updated_at = Column(UTCDateTime(), default=now_utc, onupdate=now_utc, nullable=False)

    # Relationships
    creator = relationship("User", foreign_keys=[creator_id], lazy="selectin")
    assignments = relationship(
        "TaskAssignment",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    responses = relationship(
        "TaskResponse",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TaskResponse.created_at",
    )
    shared_proofs = relationship(
        "TaskSharedProof",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TaskSharedProof.created_at",
    )

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def active_assignments(self) -> list:
        return [assignment for assignment in self.assignments if assignment.deleted_at is None]

    @property
    def assigned_user_ids(self) -> list:
        return [assignment.user_id for assignment in self.active_assignments]

    def archive(self, reason: str, now: Optional[datetime] = None) -> bool:
        """Archive the task. Returns False when it already was archived."""
        if self.archived_at is not None:
            return False
        self.archived_at = now or now_utc()
        self.is_active = False
        self.archive_reason = reason
        return True

    def restore_from_archive(self) -> bool:
        """Bring an archived task back into the active set."""
        if self.archived_at is None:
            return False
        self.archived_at = None
        self.is_active = True
        self.archive_reason = None
        return True


class TaskAssignment(Base):
    """Task-to-user edge. Removed assignments are tombstoned, not deleted."""

    __tablename__ = "task_assignments"
    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_assignments_task_user"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    task_id = Column(GUID(), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    deleted_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), default=now_utc, nullable=False)

    task = relationship("Task", back_populates="assignments")
    user = relationship("User", lazy="selectin")


class TaskResponse(Base):
    """One assignee's progress on a task."""

    __tablename__ = "task_responses"
    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_responses_task_user"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    task_id = Column(GUID(), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(30), nullable=False, default=ResponseStatus.PENDING.value, index=True)
    comment = Column(Text, nullable=True)
    responded_at = Column(UTCDateTime(), nullable=True)
    shift_id = Column(GUID(), ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True)
    completed_during_shift = Column(Boolean, nullable=False, default=False)
    verified_at = Column(UTCDateTime(), nullable=True)
    verified_by = Column(GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    rejection_count = Column(Integer, nullable=False, default=0)
    submission_source = Column(String(20), nullable=False, default=SubmissionSource.INDIVIDUAL.value)
    uses_shared_proofs = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime(), default=now_utc, nullable=False)
    updated_at = Column(UTCDateTime(), default=now_utc, onupdate=now_utc, nullable=False)

    task = relationship("Task", back_populates="responses")
    user = relationship("User", foreign_keys=[user_id], lazy="selectin")
    proofs = relationship(
        "TaskProof",
        back_populates="response",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TaskProof.created_at",
    )

    @property
    def proof_source(self) -> ProofSource:
        if self.uses_shared_proofs:
            return SharedProofs(task_id=self.task_id)
        return IndividualProofs(response_id=self.id)

    @proof_source.setter
    def proof_source(self, source: ProofSource) -> None:
        self.uses_shared_proofs = isinstance(source, SharedProofs)

    def clear_verification(self) -> None:
        self.verified_at = None
        self.verified_by = None
        self.rejection_reason = None


class _ProofColumns:
    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    file_path = Column(String(500), nullable=False)  # storage key
    original_filename = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    created_at = Column(UTCDateTime(), default=now_utc, nullable=False)


class TaskProof(_ProofColumns, Base):
    """Proof file owned by a single response."""

    __tablename__ = "task_proofs"

    task_response_id = Column(GUID(), ForeignKey("task_responses.id", ondelete="CASCADE"), nullable=False, index=True)

    response = relationship("TaskResponse", back_populates="proofs")


class TaskSharedProof(_ProofColumns, Base):
    """Proof file standing in for every assignee of a group task."""

    __tablename__ = "task_shared_proofs"

    task_id = Column(GUID(), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)

    task = relationship("Task", back_populates="shared_proofs")


class TaskVerificationHistory(Base):
    """Append-only ledger of verification actions on a response."""

    __tablename__ = "task_verification_history"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    task_response_id = Column(GUID(), ForeignKey("task_responses.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    performed_by = Column(GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason = Column(Text, nullable=True)
    previous_status = Column(String(30), nullable=True)
    new_status = Column(String(30), nullable=False)
    proof_count = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime(), default=now_utc, nullable=False)

    performer = relationship("User", lazy="selectin")
