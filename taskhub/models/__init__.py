"""Model modules."""
from taskhub.models.user import User, Role
from taskhub.models.dealership import Dealership
from taskhub.models.shift import Shift, ShiftStatus
from taskhub.models.setting import Setting
from taskhub.models.task import (
    ArchiveReason,
    IndividualProofs,
    ProofSource,
    ResponseStatus,
    ResponseType,
    SharedProofs,
    SubmissionSource,
    Task,
    TaskAssignment,
    TaskPriority,
    TaskProof,
    TaskResponse,
    TaskSharedProof,
    TaskStatus,
    TaskType,
    TaskVerificationHistory,
    VerificationAction,
)

__all__ = [
    "User",
    "Role",
    "Dealership",
    "Shift",
    "ShiftStatus",
    "Setting",
    "ArchiveReason",
    "IndividualProofs",
    "ProofSource",
    "ResponseStatus",
    "ResponseType",
    "SharedProofs",
    "SubmissionSource",
    "Task",
    "TaskAssignment",
    "TaskPriority",
    "TaskProof",
    "TaskResponse",
    "TaskSharedProof",
    "TaskStatus",
    "TaskType",
    "TaskVerificationHistory",
    "VerificationAction",
]
