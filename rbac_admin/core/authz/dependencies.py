"""
FastAPI dependencies for authorization.

Usage:
    from rbac_admin.core.authz.dependencies import (
        AdminIdentity, CurrentIdentity, require_permission,
    )

    @router.get("/profile")
    async def handler(identity: CurrentIdentity):
        ...

    @router.get("/roles")
    async def handler(identity=Depends(require_permission("roles", "read"))):
        ...

    @router.delete("/roles/{role_id}")
    async def handler(role_id: UUID, admin: AdminIdentity):
        ...
"""

from dataclasses import replace
from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.api.dependencies.database import get_db
from rbac_admin.core.config import settings
from rbac_admin.repositories.grants import GrantStore
from rbac_admin.services.audit import AuditRecorder
from rbac_admin.services.auth import AuthService
from rbac_admin.utils.context import get_request_id, set_context_user
from rbac_admin.utils.timezone import utc_now

from .gate import EnforcementGate
from .interfaces import AuthenticatedIdentity, RequestOrigin
from .resolver import AuthorizationResolver, Clock


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# ============================================================
# IDENTITY & ORIGIN
# ============================================================

async def get_optional_identity(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedIdentity | None:
    """
    Identity from the bearer token, or None when no token was sent.

    A token that is present but invalid, expired, or belongs to a missing
    or deactivated user is rejected with 401 rather than ignored.
    """
    if not token:
        return None

    identity = await AuthService(db).resolve_identity(token)
    set_context_user(str(identity.user_id))
    return identity


def get_request_origin(request: Request) -> RequestOrigin:
    """Caller address, user agent and request id for audit records."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None

    return RequestOrigin(
        ip_address=ip_address,
        user_agent=request.headers.get("User-Agent"),
        request_id=getattr(request.state, "request_id", None) or get_request_id(),
    )


# ============================================================
# COMPONENT FACTORIES
# ============================================================

def get_clock() -> Clock:
    """Clock used for grant expiry checks. Override in tests to pin time."""
    return utc_now


def get_resolver(
    request: Request,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AuthorizationResolver:
    return AuthorizationResolver(
        GrantStore(db),
        clock=clock,
        cache=getattr(request.app.state, "authz_cache", None),
    )


def get_gate(
    resolver: AuthorizationResolver = Depends(get_resolver),
    db: AsyncSession = Depends(get_db),
) -> EnforcementGate:
    return EnforcementGate(resolver, AuditRecorder(db))


OptionalIdentity = Annotated[AuthenticatedIdentity | None, Depends(get_optional_identity)]
Origin = Annotated[RequestOrigin, Depends(get_request_origin)]
Resolver = Annotated[AuthorizationResolver, Depends(get_resolver)]
Gate = Annotated[EnforcementGate, Depends(get_gate)]


async def get_current_identity(
    identity: OptionalIdentity,
    gate: Gate,
) -> AuthenticatedIdentity:
    """
    Require an authenticated caller.

    Raises:
        UnauthenticatedError: If no token was sent
    """
    return gate.require_authenticated(identity)


CurrentIdentity = Annotated[AuthenticatedIdentity, Depends(get_current_identity)]


# ============================================================
# GUARD FACTORIES
# ============================================================

def require_permission(resource: str, action: str) -> Callable:
    """
    Dependency factory requiring one ``resource:action`` permission.

    Usage:
    ```python
    @router.get("/permissions")
    async def list_permissions(
        identity: AuthenticatedIdentity = Depends(require_permission("permissions", "read")),
    ):
        ...
    ```
    """

    async def check_permission(
        identity: OptionalIdentity,
        gate: Gate,
        origin: Origin,
    ) -> AuthenticatedIdentity:
        decision = await gate.require_permission(identity, resource, action, origin)
        return replace(identity, authorized_by=decision.matched)

    return check_permission


def require_any_permission(*pairs: tuple[str, str]) -> Callable:
    """Dependency factory requiring at least one of several permissions."""

    async def check_permission(
        identity: OptionalIdentity,
        gate: Gate,
        origin: Origin,
    ) -> AuthenticatedIdentity:
        decision = await gate.require_any_permission(identity, list(pairs), origin)
        return replace(identity, authorized_by=decision.matched)

    return check_permission


def require_role(role_name: str) -> Callable:
    """Dependency factory requiring one named role."""

    async def check_role(
        identity: OptionalIdentity,
        gate: Gate,
        origin: Origin,
    ) -> AuthenticatedIdentity:
        decision = await gate.require_role(identity, role_name, origin)
        return replace(identity, authorized_by=decision.matched)

    return check_role


def require_any_role(*role_names: str) -> Callable:
    """Dependency factory requiring at least one of several roles."""

    async def check_role(
        identity: OptionalIdentity,
        gate: Gate,
        origin: Origin,
    ) -> AuthenticatedIdentity:
        decision = await gate.require_any_role(identity, list(role_names), origin)
        return replace(identity, authorized_by=decision.matched)

    return check_role


def require_self_or_permission(
    resource: str,
    action: str,
    user_id_param: str = "user_id",
) -> Callable:
    """
    Dependency factory for per-user endpoints.

    The caller passes when the path's ``user_id_param`` is their own id,
    and otherwise needs ``resource:action``.
    """

    async def check_permission(
        request: Request,
        identity: OptionalIdentity,
        gate: Gate,
        origin: Origin,
    ) -> AuthenticatedIdentity:
        raw = request.path_params.get(user_id_param)
        try:
            target = UUID(str(raw))
        except ValueError:
            # Malformed ids are rejected by path validation; never a self match.
            decision = await gate.require_permission(identity, resource, action, origin)
            return replace(identity, authorized_by=decision.matched)

        decision = await gate.require_self_or_permission(
            identity, target, resource, action, origin
        )
        return replace(identity, authorized_by=decision.matched)

    return check_permission


def require_admin() -> Callable:
    """Any of the configured admin roles."""
    return require_any_role(*settings.auth.admin_roles)


# Admin caller (required)
AdminIdentity = Annotated[AuthenticatedIdentity, Depends(require_admin())]
