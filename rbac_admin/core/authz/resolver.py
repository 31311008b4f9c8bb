"""
Authorization Resolver.

Computes a user's effective roles and permissions and answers point
queries against them. The model is a plain union: every active,
unexpired grant of an active role contributes, nothing subtracts, and a
user without active roles holds nothing at all.

Each public call reads the clock exactly once and evaluates every filter
against that single instant.

Usage:
    resolver = AuthorizationResolver(GrantStore(db))

    if await resolver.has_permission(user_id, "users", "read"):
        ...

    decision = await resolver.check_any_permission(
        user_id, [("users", "update"), ("users", "activate")]
    )
"""

from datetime import datetime
from typing import Callable, Iterable, Sequence
from uuid import UUID

import structlog

from rbac_admin.utils.timezone import utc_now

from .cache import AuthzSnapshot, SnapshotCache
from .interfaces import (
    Decision,
    EffectivePermission,
    EffectiveRole,
    GrantMatch,
    GrantSource,
    PermissionPair,
)

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def _pairs(items: Iterable[tuple[str, str]]) -> list[PermissionPair]:
    return [PermissionPair(resource, action) for resource, action in items]


class AuthorizationResolver:
    """
    Resolves effective roles and permissions through a grant source.

    Holds no mutable state of its own; the optional snapshot cache is the
    only thing written to, and only with expiry-bounded snapshots.
    """

    def __init__(
        self,
        store: GrantSource,
        clock: Clock = utc_now,
        cache: SnapshotCache | None = None,
    ):
        self.store = store
        self.clock = clock
        self.cache = cache

    # ============================================================
    # EFFECTIVE SETS
    # ============================================================

    async def effective_roles(self, user_id: UUID) -> list[EffectiveRole]:
        """Roles the user holds now."""
        now = self.clock()
        if self.cache is not None:
            snapshot = await self._snapshot(user_id, now)
            return list(snapshot.roles)
        return await self.store.find_active_roles_for_user(user_id, now)

    async def effective_permissions(self, user_id: UUID) -> list[EffectivePermission]:
        """Permissions the user holds now, deduplicated by name."""
        now = self.clock()
        if self.cache is not None:
            snapshot = await self._snapshot(user_id, now)
            return list(snapshot.permissions)
        return await self.store.find_active_permissions_for_user(user_id, now)

    # ============================================================
    # DECISIONS
    # ============================================================

    async def check_permission(self, user_id: UUID, resource: str, action: str) -> Decision:
        return await self.check_any_permission(user_id, [(resource, action)])

    async def check_any_permission(
        self,
        user_id: UUID,
        pairs: Sequence[tuple[str, str]],
    ) -> Decision:
        """
        Allow when the user holds at least one of ``pairs``.

        Without a cache this is a single store query over the disjunction.
        """
        now = self.clock()
        wanted = _pairs(pairs)
        if not wanted:
            return Decision.deny("No permissions requested", evaluated_at=now)

        if self.cache is not None:
            snapshot = await self._snapshot(user_id, now)
            match = self._match_permission(snapshot, wanted)
        else:
            match = await self.store.find_matching_permission(user_id, wanted, now)

        if match is None:
            keys = ", ".join(p.key for p in wanted)
            return Decision.deny(f"Missing permission: {keys}", evaluated_at=now)
        return Decision.allow(
            f"Has permission: {match.permission_name}",
            matched=match,
            evaluated_at=now,
        )

    async def check_role(self, user_id: UUID, role_name: str) -> Decision:
        return await self.check_any_role(user_id, [role_name])

    async def check_any_role(self, user_id: UUID, role_names: Sequence[str]) -> Decision:
        """Allow when the user holds at least one of ``role_names``."""
        now = self.clock()
        names = list(role_names)
        if not names:
            return Decision.deny("No roles requested", evaluated_at=now)

        if self.cache is not None:
            snapshot = await self._snapshot(user_id, now)
            match = self._match_role(snapshot, names)
        else:
            match = await self.store.find_matching_role(user_id, names, now)

        if match is None:
            return Decision.deny(f"Missing role: {', '.join(names)}", evaluated_at=now)
        return Decision.allow(f"Has role: {match.role_name}", matched=match, evaluated_at=now)

    # ============================================================
    # BOOLEAN SHORTHANDS
    # ============================================================

    async def has_permission(self, user_id: UUID, resource: str, action: str) -> bool:
        decision = await self.check_permission(user_id, resource, action)
        return decision.allowed

    async def has_any_permission(
        self,
        user_id: UUID,
        pairs: Sequence[tuple[str, str]],
    ) -> bool:
        decision = await self.check_any_permission(user_id, pairs)
        return decision.allowed

    async def has_role(self, user_id: UUID, role_name: str) -> bool:
        decision = await self.check_role(user_id, role_name)
        return decision.allowed

    async def has_any_role(self, user_id: UUID, role_names: Sequence[str]) -> bool:
        decision = await self.check_any_role(user_id, role_names)
        return decision.allowed

    # ============================================================
    # CACHE
    # ============================================================

    async def invalidate(self, user_id: UUID) -> None:
        """Drop the cached snapshot for one user (after a grant change)."""
        if self.cache is not None:
            await self.cache.invalidate_user(user_id)

    async def invalidate_all(self) -> None:
        """Drop every cached snapshot (after a role or permission change)."""
        if self.cache is not None:
            await self.cache.invalidate_all()

    async def _snapshot(self, user_id: UUID, now: datetime) -> AuthzSnapshot:
        snapshot = await self.cache.get(user_id, now)
        if snapshot is not None:
            return snapshot

        roles = await self.store.find_active_roles_for_user(user_id, now)
        permissions = await self.store.find_active_permissions_for_user(user_id, now)
        snapshot = AuthzSnapshot.build(roles, permissions, now, self.cache.ttl)
        await self.cache.put(user_id, snapshot)

        logger.debug(
            "Authorization snapshot cached",
            user_id=str(user_id),
            roles=len(roles),
            permissions=len(permissions),
            valid_until=snapshot.valid_until.isoformat(),
        )
        return snapshot

    @staticmethod
    def _match_permission(
        snapshot: AuthzSnapshot,
        wanted: list[PermissionPair],
    ) -> GrantMatch | None:
        for pair in wanted:
            for perm in snapshot.permissions:
                if perm.pair == pair:
                    return GrantMatch(
                        role_id=perm.role_ids[0],
                        role_name=perm.role_names[0],
                        permission_id=perm.id,
                        permission_name=perm.name,
                    )
        return None

    @staticmethod
    def _match_role(snapshot: AuthzSnapshot, names: list[str]) -> GrantMatch | None:
        for name in names:
            for role in snapshot.roles:
                if role.name == name:
                    return GrantMatch(
                        role_id=role.id,
                        role_name=role.name,
                        user_role_grant_id=role.grant_id,
                    )
        return None
