"""Custom exceptions."""
from typing import Optional
from fastapi import HTTPException, status
from taskhub.localization.helpers import get_translation


class NotFoundError(HTTPException):
    """Resource not found exception."""

    def __init__(self, detail: Optional[str] = None, locale: Optional[str] = None):
        if detail is None:
            detail = get_translation("errors.resource_not_found", locale)
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class UnauthorizedError(HTTPException):
    """Unauthorized exception."""

    def __init__(self, detail: Optional[str] = None, locale: Optional[str] = None):
        if detail is None:
            detail = get_translation("errors.not_authenticated", locale)
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ForbiddenError(HTTPException):
    """Forbidden exception."""

    def __init__(self, detail: Optional[str] = None, locale: Optional[str] = None):
        if detail is None:
            detail = get_translation("errors.permission_denied", locale)
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ValidationError(HTTPException):
    """Validation exception."""

    def __init__(self, detail: Optional[str] = None, locale: Optional[str] = None):
        if detail is None:
            detail = get_translation("errors.validation_error", locale)
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class ConflictError(HTTPException):
    """Conflict exception."""

    def __init__(self, detail: Optional[str] = None, locale: Optional[str] = None):
        if detail is None:
            detail = get_translation("errors.resource_conflict", locale)
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InvalidTransitionError(ConflictError):
    """A response status change that the transition table does not allow."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        self.edge = f"{current} -> {target}"
        super().__init__(get_translation("tasks.invalid_transition", edge=self.edge))


class DuplicateTaskError(ConflictError):
    """An active task with the same identity already exists."""

    def __init__(self):
        super().__init__(get_translation("tasks.duplicate"))


class TaskFinalizedError(ConflictError):
    """Completed tasks are read-only."""

    def __init__(self):
        super().__init__(get_translation("tasks.finalized"))


class OpenShiftRequiredError(ConflictError):
    """Completion is gated on the actor holding an open shift."""

    def __init__(self):
        super().__init__(get_translation("tasks.open_shift_required"))


class ProofRequiredError(ValidationError):
    """A completion_with_proof task was submitted without any proof."""

    def __init__(self):
        super().__init__(get_translation("tasks.proof_required"))


class ProofLimitError(ValidationError):
    """Upload batch exceeds the file count or size ceiling."""


class UnsupportedFileTypeError(ValidationError):
    """File content does not match its declared MIME type."""
