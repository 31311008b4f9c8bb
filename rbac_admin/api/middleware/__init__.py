"""Middleware package."""

from rbac_admin.api.middleware.logging import LoggingMiddleware
from rbac_admin.api.middleware.request_id import RequestIdMiddleware

__all__ = [
    "LoggingMiddleware",
    "RequestIdMiddleware",
]
