"""
Authorization core.

- ``interfaces``: identity, decisions and the grant source contract
- ``resolver``: effective roles and permissions at one instant
- ``gate``: turns decisions into pass-through or typed failures
- ``dependencies``: FastAPI wiring for the gate
"""

from .interfaces import (
    AuthenticatedIdentity,
    Decision,
    EffectivePermission,
    EffectiveRole,
    GrantMatch,
    GrantSource,
    PermissionPair,
    RequestOrigin,
)
from .resolver import AuthorizationResolver

__all__ = [
    "AuthenticatedIdentity",
    "AuthorizationResolver",
    "Decision",
    "EffectivePermission",
    "EffectiveRole",
    "GrantMatch",
    "GrantSource",
    "PermissionPair",
    "RequestOrigin",
]
