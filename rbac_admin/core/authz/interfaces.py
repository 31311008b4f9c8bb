"""
Authorization interfaces - core value types and the grant source contract.

The resolver depends only on ``GrantSource``; the SQLAlchemy-backed
``rbac_admin.repositories.grants.GrantStore`` is the production
implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, NamedTuple, Sequence
from uuid import UUID


# ============================================================
# IDENTITY & ORIGIN
# ============================================================

@dataclass(frozen=True)
class AuthenticatedIdentity:
    """
    A verified caller.

    Built by the token dependency and passed explicitly into every gate
    operation; never attached to the request as a mutable attribute. The
    guard dependencies return a copy carrying ``authorized_by``, the grant
    chain that let the request through, so services can audit it.
    """
    user_id: UUID
    username: str
    email: str
    authorized_by: "GrantMatch | None" = field(default=None, compare=False)


@dataclass(frozen=True)
class RequestOrigin:
    """Where a request came from, recorded alongside audit entries."""
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


# ============================================================
# RESOLUTION RESULTS
# ============================================================

class PermissionPair(NamedTuple):
    """A ``(resource, action)`` permission key."""
    resource: str
    action: str

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"

    def to_dict(self) -> dict[str, str]:
        return {"resource": self.resource, "action": self.action}


@dataclass(frozen=True)
class EffectiveRole:
    """A role the user holds right now, with the grant that confers it."""
    id: UUID
    name: str
    grant_id: UUID
    assigned_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class EffectivePermission:
    """
    A permission the user holds right now.

    ``role_names`` lists every active role it is reachable through.
    ``valid_until`` is the earliest expiry among all contributing grants,
    ``None`` when none of them expire.
    """
    id: UUID
    name: str
    resource: str
    action: str
    role_ids: tuple[UUID, ...] = ()
    role_names: tuple[str, ...] = ()
    valid_until: datetime | None = None

    @property
    def pair(self) -> PermissionPair:
        return PermissionPair(self.resource, self.action)


@dataclass(frozen=True)
class GrantMatch:
    """The grant chain that allowed a decision, kept for audit."""
    role_id: UUID
    role_name: str
    user_role_grant_id: UUID | None = None
    permission_id: UUID | None = None
    permission_name: str | None = None
    role_permission_grant_id: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "role_id": str(self.role_id),
            "role_name": self.role_name,
        }
        if self.user_role_grant_id:
            data["user_role_grant_id"] = str(self.user_role_grant_id)
        if self.permission_id:
            data["permission_id"] = str(self.permission_id)
            data["permission_name"] = self.permission_name
        if self.role_permission_grant_id:
            data["role_permission_grant_id"] = str(self.role_permission_grant_id)
        return data


@dataclass
class Decision:
    """
    Result of an authorization check.

    Attributes:
        allowed: Whether the request is permitted
        reason: Human-readable explanation (for logging)
        matched: Grant chain that allowed it, when allowed
        evaluated_at: The single instant the check was evaluated at
    """
    allowed: bool
    reason: str | None = None
    matched: GrantMatch | None = None
    evaluated_at: datetime | None = None

    @classmethod
    def allow(
        cls,
        reason: str | None = None,
        matched: GrantMatch | None = None,
        evaluated_at: datetime | None = None,
    ) -> "Decision":
        return cls(allowed=True, reason=reason, matched=matched, evaluated_at=evaluated_at)

    @classmethod
    def deny(
        cls,
        reason: str = "Permission denied",
        evaluated_at: datetime | None = None,
    ) -> "Decision":
        return cls(allowed=False, reason=reason, evaluated_at=evaluated_at)


# ============================================================
# GRANT SOURCE
# ============================================================

class GrantSource(ABC):
    """
    Read side of the grant store, as seen by the resolver.

    Every method takes the evaluation instant ``now`` explicitly; a grant
    counts only when it is active, ``expires_at`` is null or after ``now``,
    and the role (and permission) it points at is active.
    """

    @abstractmethod
    async def find_active_roles_for_user(
        self, user_id: UUID, now: datetime
    ) -> list[EffectiveRole]:
        """Roles the user holds at ``now``."""
        ...

    @abstractmethod
    async def find_active_permissions_for_user(
        self, user_id: UUID, now: datetime
    ) -> list[EffectivePermission]:
        """Permissions reachable through active roles, one per name."""
        ...

    @abstractmethod
    async def find_matching_permission(
        self,
        user_id: UUID,
        pairs: Sequence[PermissionPair],
        now: datetime,
    ) -> GrantMatch | None:
        """First grant chain conferring any of ``pairs``, in one round trip."""
        ...

    @abstractmethod
    async def find_matching_role(
        self,
        user_id: UUID,
        role_names: Sequence[str],
        now: datetime,
    ) -> GrantMatch | None:
        """First active grant of any of ``role_names``, in one round trip."""
        ...
