"""Schema modules."""
from taskhub.schemas.task import (
    CompletionProgress,
    ProofFileResponse,
    RejectRequest,
    TaskAssignmentResponse,
    TaskCreate,
    TaskListResponse,
    TaskRead,
    TaskResponseRead,
    TaskUpdate,
    VerificationHistoryRead,
)
from taskhub.schemas.common import PaginatedResponse
