"""
Authentication service.

Password hashing and token issuance are opaque primitives here: bcrypt via
passlib, HS256 JWTs via python-jose.
"""

from datetime import timedelta
from uuid import UUID
from dataclasses import dataclass

import structlog
from passlib.context import CryptContext
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.core.authz.interfaces import AuthenticatedIdentity, RequestOrigin
from rbac_admin.core.config import settings
from rbac_admin.core.exceptions import (
    ConflictError,
    InvalidInputError,
    UnauthenticatedError,
)
from rbac_admin.models.user import User
from rbac_admin.schemas.audit_log import AuditAction, ResourceType
from rbac_admin.services.audit import AuditRecorder
from rbac_admin.utils.timezone import utc_now

logger = structlog.get_logger()

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.auth.bcrypt_rounds,
)


@dataclass
class TokenPair:
    """Access and refresh token pair."""
    access_token: str
    refresh_token: str
    expires_in: int


def hash_password(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify password against hash."""
    return pwd_context.verify(plain, hashed)


def create_token(user_id: UUID, token_type: str, expires_delta: timedelta) -> str:
    """Create a signed JWT for ``user_id``."""
    payload = {
        "sub": str(user_id),
        "exp": utc_now() + expires_delta,
        "type": token_type,
    }
    return jwt.encode(
        payload,
        settings.auth.secret_key,
        algorithm=settings.auth.algorithm,
    )


def create_tokens(user_id: UUID) -> TokenPair:
    """Create access and refresh token pair."""
    access_ttl = timedelta(minutes=settings.auth.access_token_expire_minutes)
    return TokenPair(
        access_token=create_token(user_id, "access", access_ttl),
        refresh_token=create_token(
            user_id, "refresh", timedelta(days=settings.auth.refresh_token_expire_days)
        ),
        expires_in=int(access_ttl.total_seconds()),
    )


def decode_token(token: str, expected_type: str) -> UUID:
    """
    Verify a token and return its subject.

    Raises:
        UnauthenticatedError: TOKEN_EXPIRED or TOKEN_INVALID
    """
    try:
        payload = jwt.decode(
            token,
            settings.auth.secret_key,
            algorithms=[settings.auth.algorithm],
        )
    except ExpiredSignatureError as exc:
        raise UnauthenticatedError("Token expired", code="TOKEN_EXPIRED") from exc
    except JWTError as exc:
        raise UnauthenticatedError("Invalid token", code="TOKEN_INVALID") from exc

    if payload.get("type") != expected_type:
        raise UnauthenticatedError("Invalid token", code="TOKEN_INVALID")

    try:
        return UUID(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise UnauthenticatedError("Invalid token", code="TOKEN_INVALID") from exc


class AuthService:
    """Registration, login and token handling."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditRecorder(db)

    async def _get_active_user(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise UnauthenticatedError("Invalid or inactive user", code="USER_INVALID")
        return user

    async def resolve_identity(self, token: str) -> AuthenticatedIdentity:
        """Turn a bearer access token into an identity."""
        user = await self._get_active_user(decode_token(token, "access"))
        return AuthenticatedIdentity(
            user_id=user.id,
            username=user.username,
            email=user.email,
        )

    async def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        origin: RequestOrigin | None = None,
    ) -> tuple[User, TokenPair]:
        """Register a new user. New accounts hold no roles."""
        stmt = select(User).where(or_(User.email == email, User.username == username))
        if (await self.db.execute(stmt)).first() is not None:
            raise ConflictError(
                "User with this email or username already exists", code="USER_EXISTS"
            )

        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
        )
        self.db.add(user)
        await self.db.flush()

        await self.audit.record(
            action=AuditAction.USER_REGISTERED,
            resource_type=ResourceType.USER,
            resource_id=user.id,
            actor_id=user.id,
            actor_email=user.email,
            details={"username": username, "email": email},
            origin=origin,
        )

        return user, create_tokens(user.id)

    async def login(
        self,
        login: str,
        password: str,
        origin: RequestOrigin | None = None,
    ) -> tuple[User, TokenPair]:
        """
        Authenticate by username or email.

        Raises:
            UnauthenticatedError: INVALID_CREDENTIALS or ACCOUNT_DEACTIVATED
        """
        stmt = select(User).where(or_(User.username == login, User.email == login))
        user = (await self.db.execute(stmt)).scalar_one_or_none()

        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Login failed", login=login)
            await self.audit.record(
                action=AuditAction.LOGIN_FAILED,
                resource_type=ResourceType.USER,
                resource_id=user.id if user else None,
                actor_id=user.id if user else None,
                details={"login": login},
                origin=origin,
            )
            raise UnauthenticatedError("Invalid credentials", code="INVALID_CREDENTIALS")

        if not user.is_active:
            raise UnauthenticatedError("Account is deactivated", code="ACCOUNT_DEACTIVATED")

        user.last_login_at = utc_now()
        await self.db.flush()

        await self.audit.record(
            action=AuditAction.LOGIN,
            resource_type=ResourceType.USER,
            resource_id=user.id,
            actor_id=user.id,
            actor_email=user.email,
            origin=origin,
        )

        return user, create_tokens(user.id)

    async def refresh_tokens(self, refresh_token: str) -> TokenPair:
        """Issue a new pair from a valid refresh token."""
        user = await self._get_active_user(decode_token(refresh_token, "refresh"))
        return create_tokens(user.id)

    async def logout(
        self,
        identity: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> None:
        """Tokens are stateless; logging out only leaves an audit trail."""
        await self.audit.record(
            action=AuditAction.LOGOUT,
            resource_type=ResourceType.USER,
            resource_id=identity.user_id,
            actor_id=identity.user_id,
            actor_email=identity.email,
            origin=origin,
        )

    async def change_password(
        self,
        identity: AuthenticatedIdentity,
        current_password: str,
        new_password: str,
        origin: RequestOrigin | None = None,
    ) -> None:
        user = await self._get_active_user(identity.user_id)
        if not verify_password(current_password, user.password_hash):
            raise InvalidInputError(
                "Current password is incorrect", code="INVALID_CURRENT_PASSWORD"
            )

        user.password_hash = hash_password(new_password)
        await self.db.flush()

        await self.audit.record(
            action=AuditAction.PASSWORD_CHANGED,
            resource_type=ResourceType.USER,
            resource_id=user.id,
            actor_id=user.id,
            actor_email=user.email,
            origin=origin,
        )
