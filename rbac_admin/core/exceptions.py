"""
Typed failures raised by the authorization core and the admin services.

Each class carries the HTTP status the API boundary translates it to.
The ``code`` is a stable machine-readable identifier clients switch on.
"""

from typing import Any

from fastapi import status


class RBACError(Exception):
    """Base exception for the RBAC service."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "RBAC_ERROR"

    def __init__(
        self,
        message: str = "An error occurred",
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class NotFoundError(RBACError):
    """Raised when a referenced user, role, permission or grant is absent."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class ConflictError(RBACError):
    """Raised on duplicate grants or clashing unique names."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"


class UnauthenticatedError(RBACError):
    """Raised when no valid identity is attached to the request."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "AUTH_REQUIRED"


class ForbiddenError(RBACError):
    """
    Raised when an identity lacks the grant a protected action needs.

    ``required`` echoes what was asked for, so callers can render a message.
    """

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "PERMISSION_DENIED"

    def __init__(
        self,
        message: str = "Insufficient permissions",
        code: str | None = None,
        required: Any = None,
    ):
        super().__init__(message, code, {"required": required})
        self.required = required


class ProtectedEntityError(RBACError):
    """Raised when deleting or deactivating a system or in-use entity."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "PROTECTED_ENTITY"


class SelfActionError(RBACError):
    """Raised when a user tries to deactivate or delete their own account."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "SELF_ACTION"


class InvalidInputError(RBACError):
    """Raised for semantically invalid requests that pass schema validation."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "INVALID_INPUT"
