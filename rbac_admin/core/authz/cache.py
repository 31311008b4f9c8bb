"""
Expiry-bounded snapshot cache for resolved roles and permissions.

A snapshot holds everything the resolver knows about one user at one
instant. It is valid until the earlier of ``computed_at + ttl`` and the
first expiry among the grants it was built from, so a cached answer never
outlives a grant that would have stopped counting.

Usage:
    cache = SnapshotCache(MemoryCacheBackend(), ttl=60)
    resolver = AuthorizationResolver(store, cache=cache)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

import structlog

from rbac_admin.core.config import Settings
from rbac_admin.utils.timezone import to_utc

from .interfaces import EffectivePermission, EffectiveRole

logger = structlog.get_logger()


class CacheBackend(Protocol):
    """Subset of the cache backend API the snapshot cache needs."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int | timedelta | None = None) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_pattern(self, pattern: str) -> int: ...


def _dt(value: str | None) -> datetime | None:
    return to_utc(datetime.fromisoformat(value)) if value else None


def _iso(value: datetime | None) -> str | None:
    return to_utc(value).isoformat() if value else None


@dataclass(frozen=True)
class AuthzSnapshot:
    """Effective roles and permissions of one user at ``computed_at``."""

    roles: tuple[EffectiveRole, ...]
    permissions: tuple[EffectivePermission, ...]
    computed_at: datetime
    valid_until: datetime

    @classmethod
    def build(
        cls,
        roles: list[EffectiveRole],
        permissions: list[EffectivePermission],
        now: datetime,
        ttl: int,
    ) -> "AuthzSnapshot":
        bound = now + timedelta(seconds=ttl)
        expiries = [r.expires_at for r in roles if r.expires_at]
        expiries += [p.valid_until for p in permissions if p.valid_until]
        for expiry in expiries:
            expiry = to_utc(expiry)
            if expiry < bound:
                bound = expiry
        return cls(
            roles=tuple(roles),
            permissions=tuple(permissions),
            computed_at=now,
            valid_until=bound,
        )

    def is_valid_at(self, now: datetime) -> bool:
        return self.computed_at <= now < self.valid_until

    def to_dict(self) -> dict[str, Any]:
        return {
            "computed_at": _iso(self.computed_at),
            "valid_until": _iso(self.valid_until),
            "roles": [
                {
                    "id": str(r.id),
                    "name": r.name,
                    "grant_id": str(r.grant_id),
                    "assigned_at": _iso(r.assigned_at),
                    "expires_at": _iso(r.expires_at),
                }
                for r in self.roles
            ],
            "permissions": [
                {
                    "id": str(p.id),
                    "name": p.name,
                    "resource": p.resource,
                    "action": p.action,
                    "role_ids": [str(i) for i in p.role_ids],
                    "role_names": list(p.role_names),
                    "valid_until": _iso(p.valid_until),
                }
                for p in self.permissions
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthzSnapshot":
        return cls(
            roles=tuple(
                EffectiveRole(
                    id=UUID(r["id"]),
                    name=r["name"],
                    grant_id=UUID(r["grant_id"]),
                    assigned_at=_dt(r.get("assigned_at")),
                    expires_at=_dt(r.get("expires_at")),
                )
                for r in data["roles"]
            ),
            permissions=tuple(
                EffectivePermission(
                    id=UUID(p["id"]),
                    name=p["name"],
                    resource=p["resource"],
                    action=p["action"],
                    role_ids=tuple(UUID(i) for i in p["role_ids"]),
                    role_names=tuple(p["role_names"]),
                    valid_until=_dt(p.get("valid_until")),
                )
                for p in data["permissions"]
            ),
            computed_at=_dt(data["computed_at"]),
            valid_until=_dt(data["valid_until"]),
        )


class SnapshotCache:
    """Stores ``AuthzSnapshot`` values per user in a cache backend."""

    def __init__(self, backend: CacheBackend, ttl: int = 60, prefix: str = "authz:"):
        self.backend = backend
        self.ttl = ttl
        self.prefix = prefix

    def _key(self, user_id: UUID) -> str:
        return f"{self.prefix}user:{user_id}"

    async def get(self, user_id: UUID, now: datetime) -> AuthzSnapshot | None:
        """Return the user's snapshot if it is still valid at ``now``."""
        data = await self.backend.get(self._key(user_id))
        if data is None:
            return None

        snapshot = AuthzSnapshot.from_dict(data)
        if not snapshot.is_valid_at(now):
            await self.backend.delete(self._key(user_id))
            return None
        return snapshot

    async def put(self, user_id: UUID, snapshot: AuthzSnapshot) -> None:
        remaining = (snapshot.valid_until - snapshot.computed_at).total_seconds()
        ttl = max(1, math.ceil(remaining))
        await self.backend.set(self._key(user_id), snapshot.to_dict(), ttl=ttl)

    async def invalidate_user(self, user_id: UUID) -> None:
        await self.backend.delete(self._key(user_id))

    async def invalidate_all(self) -> None:
        deleted = await self.backend.delete_pattern(f"{self.prefix}user:*")
        logger.debug("Authorization cache flushed", deleted=deleted)

    async def connect(self) -> None:
        await self.backend.connect()

    async def close(self) -> None:
        await self.backend.disconnect()


def build_snapshot_cache(settings: Settings) -> SnapshotCache | None:
    """Create the configured snapshot cache, or ``None`` when disabled."""
    config = settings.authz_cache
    if config.backend == "none":
        return None

    if config.backend == "memory":
        from rbac_admin.implementations.cache.memory import MemoryCacheBackend

        backend: CacheBackend = MemoryCacheBackend(default_ttl=config.ttl)
    else:
        from rbac_admin.implementations.cache.redis import RedisCacheBackend

        backend = RedisCacheBackend(
            redis_url=str(settings.redis.url),
            default_ttl=config.ttl,
            max_connections=settings.redis.max_connections,
        )

    return SnapshotCache(backend, ttl=config.ttl, prefix=config.prefix)
