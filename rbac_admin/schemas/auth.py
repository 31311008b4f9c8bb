"""
Authentication schemas.
"""

import re

from pydantic import BaseModel, EmailStr, Field, field_validator

from rbac_admin.core.config import settings

from .user import UserResponse

_PASSWORD_CLASSES = (
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"\d"), "a digit"),
    (re.compile(r"[@$!%*?&]"), "a special character (@$!%*?&)"),
)


def validate_password_strength(value: str) -> str:
    """Minimum length plus one character from each required class."""
    if len(value) < settings.auth.password_min_length:
        raise ValueError(
            f"Password must be at least {settings.auth.password_min_length} characters"
        )
    for pattern, label in _PASSWORD_CLASSES:
        if not pattern.search(value):
            raise ValueError(f"Password must contain {label}")
    return value


class TokenResponse(BaseModel):
    """Token pair response."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshTokenRequest(BaseModel):
    """Refresh token request."""
    refresh_token: str


class RegisterRequest(BaseModel):
    """User registration request."""
    username: str = Field(min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9_]+$")
    email: EmailStr
    password: str
    first_name: str | None = Field(None, min_length=1, max_length=50)
    last_name: str | None = Field(None, min_length=1, max_length=50)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)


class AuthResponse(BaseModel):
    """User plus token pair, returned by register and login."""
    user: UserResponse
    tokens: TokenResponse


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)


class ProfileResponse(BaseModel):
    """The caller's account with effective roles and permissions."""
    user: UserResponse
    roles: list[str]
    permissions: list[str]
