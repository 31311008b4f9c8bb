"""
Enforcement Gate.

Turns resolver decisions into pass-through or typed failures before a
protected action runs. Each call is a single decision: it either returns
the allowing ``Decision`` or raises.

- no identity -> ``UnauthenticatedError`` (401)
- identity without the grant -> ``ForbiddenError`` (403), after an audit
  record of the denial is written

Usage:
    gate = EnforcementGate(resolver, AuditRecorder(db))
    await gate.require_permission(identity, "users", "read", origin)
"""

from typing import Any, Sequence
from uuid import UUID

import structlog

from rbac_admin.core.exceptions import ForbiddenError, SelfActionError, UnauthenticatedError
from rbac_admin.schemas.audit_log import AuditAction
from rbac_admin.services.audit import AuditRecorder

from .interfaces import AuthenticatedIdentity, Decision, PermissionPair, RequestOrigin
from .resolver import AuthorizationResolver

logger = structlog.get_logger()


class EnforcementGate:
    """Authorization checkpoint for protected actions."""

    def __init__(self, resolver: AuthorizationResolver, audit: AuditRecorder):
        self.resolver = resolver
        self.audit = audit

    def require_authenticated(
        self, identity: AuthenticatedIdentity | None
    ) -> AuthenticatedIdentity:
        if identity is None:
            logger.warning("Unauthenticated access attempt")
            raise UnauthenticatedError("Authentication required", code="AUTH_REQUIRED")
        return identity

    async def require_permission(
        self,
        identity: AuthenticatedIdentity | None,
        resource: str,
        action: str,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        identity = self.require_authenticated(identity)
        decision = await self.resolver.check_permission(identity.user_id, resource, action)
        if not decision.allowed:
            required = PermissionPair(resource, action).to_dict()
            await self._deny(
                identity,
                AuditAction.PERMISSION_DENIED,
                resource_type=resource,
                required=required,
                origin=origin,
                reason=decision.reason,
            )
            raise ForbiddenError(
                "Insufficient permissions", code="PERMISSION_DENIED", required=required
            )
        return decision

    async def require_any_permission(
        self,
        identity: AuthenticatedIdentity | None,
        pairs: Sequence[tuple[str, str]],
        origin: RequestOrigin | None = None,
    ) -> Decision:
        identity = self.require_authenticated(identity)
        decision = await self.resolver.check_any_permission(identity.user_id, pairs)
        if not decision.allowed:
            required = [PermissionPair(r, a).to_dict() for r, a in pairs]
            resource_types = sorted({r for r, _ in pairs})
            await self._deny(
                identity,
                AuditAction.PERMISSION_DENIED,
                resource_type=",".join(resource_types) or "unknown",
                required=required,
                origin=origin,
                reason=decision.reason,
            )
            raise ForbiddenError(
                "Insufficient permissions", code="PERMISSION_DENIED", required=required
            )
        return decision

    async def require_role(
        self,
        identity: AuthenticatedIdentity | None,
        role_name: str,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        identity = self.require_authenticated(identity)
        decision = await self.resolver.check_role(identity.user_id, role_name)
        if not decision.allowed:
            await self._deny(
                identity,
                AuditAction.ROLE_DENIED,
                resource_type="role",
                required=role_name,
                origin=origin,
                reason=decision.reason,
            )
            raise ForbiddenError(
                "Insufficient role privileges", code="ROLE_DENIED", required=role_name
            )
        return decision

    async def require_any_role(
        self,
        identity: AuthenticatedIdentity | None,
        role_names: Sequence[str],
        origin: RequestOrigin | None = None,
    ) -> Decision:
        identity = self.require_authenticated(identity)
        decision = await self.resolver.check_any_role(identity.user_id, role_names)
        if not decision.allowed:
            required = list(role_names)
            await self._deny(
                identity,
                AuditAction.ROLE_DENIED,
                resource_type="role",
                required=required,
                origin=origin,
                reason=decision.reason,
            )
            raise ForbiddenError(
                "Insufficient role privileges", code="ROLE_DENIED", required=required
            )
        return decision

    # ============================================================
    # SELF-PROTECTION
    # ============================================================

    async def require_self_or_permission(
        self,
        identity: AuthenticatedIdentity | None,
        target_user_id: UUID,
        resource: str,
        action: str,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        """A user may always act on their own record; anyone else needs the grant."""
        identity = self.require_authenticated(identity)
        if identity.user_id == target_user_id:
            return Decision.allow("Own record")
        return await self.require_permission(identity, resource, action, origin)

    def forbid_self_action(
        self,
        identity: AuthenticatedIdentity,
        target_user_id: UUID,
        action: str,
    ) -> None:
        """
        Block deactivating or deleting one's own account, whatever the grants.

        ``action`` is "deactivate" or "delete".
        """
        if identity.user_id != target_user_id:
            return

        logger.warning(
            "Self-action blocked",
            user_id=str(identity.user_id),
            action=action,
        )
        if action == "delete":
            raise SelfActionError("Cannot delete your own account", code="SELF_DELETION")
        raise SelfActionError("Cannot deactivate your own account", code="SELF_DEACTIVATION")

    async def _deny(
        self,
        identity: AuthenticatedIdentity,
        action: str,
        *,
        resource_type: str,
        required: Any,
        origin: RequestOrigin | None,
        reason: str | None,
    ) -> None:
        logger.warning(
            "Access denied",
            user_id=str(identity.user_id),
            audit_action=action,
            required=required,
            ip=origin.ip_address if origin else None,
        )
        await self.audit.record(
            action=action,
            resource_type=resource_type,
            actor_id=identity.user_id,
            actor_email=identity.email,
            details={"required": required, "reason": reason},
            origin=origin,
        )
