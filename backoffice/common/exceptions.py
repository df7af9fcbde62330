"""
Typed business errors.

Services raise these instead of building HTTPException by hand so the
failure category travels with the error. They subclass HTTPException, so
routers and the `except HTTPException: raise` blocks in services pass them
through unchanged and FastAPI renders them as {"detail": "..."}.
"""
from fastapi import HTTPException, status


class BackofficeError(HTTPException):
    """Base class for business rule violations."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"

    def __init__(self, detail: str, headers: dict = None):
        super().__init__(status_code=self.status_code, detail=detail, headers=headers)


class NotFoundError(BackofficeError):
    """Referenced transfer, order, supplier, product or outlet does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class InvalidStateError(BackofficeError):
    """Entity is not in the state the operation requires."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_STATE"


class ForbiddenError(BackofficeError):
    """Caller lacks the role, ownership or credential the operation requires."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class ValidationError(BackofficeError):
    """Input breaks a business rule."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class ResourceConflictError(BackofficeError):
    """Concurrent mutation detected by the database; safe to retry."""

    status_code = status.HTTP_409_CONFLICT
    code = "RESOURCE_CONFLICT"


class AppendOnlyError(RuntimeError):
    """Raised when code tries to edit or delete an append-only record."""
