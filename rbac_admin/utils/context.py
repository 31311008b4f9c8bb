"""
Request Context Utilities.

Provides the request id and acting user for log correlation.

Usage:
    # Access anywhere in request lifecycle
    from rbac_admin.utils.context import get_request_id

    logger.info("Processing", request_id=get_request_id())
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import Any, Optional


# Request-scoped context using contextvars (async-safe)
_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID."""
    return _request_id.get()


def set_request_id(request_id: Optional[str]):
    """Set the request ID; returns a token for ``reset_request_id``."""
    return _request_id.set(request_id)


def reset_request_id(token) -> None:
    _request_id.reset(token)


def get_context_user() -> Optional[str]:
    return _user_id.get()


def set_context_user(user_id: str) -> None:
    """
    Set the authenticated user for the rest of the request.

    Called by the identity dependency once a token is verified.
    """
    _user_id.set(user_id)


def add_request_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """
    Structlog processor that adds request context to all logs.

    Usage:
        structlog.configure(
            processors=[
                add_request_context,
                structlog.processors.JSONRenderer(),
            ]
        )
    """
    request_id = get_request_id()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    user_id = get_context_user()
    if user_id:
        event_dict.setdefault("user_id", user_id)

    return event_dict
