"""
User schemas.
"""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class UserResponse(BaseModel):
    """User response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    username: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    full_name: str = ""
    is_active: bool
    is_verified: bool
    created_at: datetime
    updated_at: datetime | None = None
    last_login_at: datetime | None = None


class RoleSummary(BaseModel):
    """Role as seen from a user listing."""
    id: UUID
    name: str
    expires_at: datetime | None = None


class UserWithRolesResponse(UserResponse):
    roles: list[RoleSummary] = []


class UserUpdate(BaseModel):
    """User update schema."""
    email: EmailStr | None = None
    first_name: str | None = Field(None, min_length=1, max_length=50)
    last_name: str | None = Field(None, min_length=1, max_length=50)
    is_active: bool | None = None
    is_verified: bool | None = None

    @field_validator("email", "is_active", "is_verified")
    @classmethod
    def required_columns_not_null(cls, v):
        # Email and the flags can be omitted but not cleared
        if v is None:
            raise ValueError("field cannot be null")
        return v


class UserListResponse(BaseModel):
    """Paginated user list response."""
    users: list[UserWithRolesResponse]
    total: int
    page: int
    per_page: int
    pages: int


class AssignRoleRequest(BaseModel):
    role_id: UUID
    expires_at: datetime | None = None


class UserRoleGrantResponse(BaseModel):
    """A role grant held by a user."""
    grant_id: UUID
    role_id: UUID
    role_name: str
    role_description: str | None = None
    assigned_by: UUID | None = None
    assigned_at: datetime
    expires_at: datetime | None = None
    is_active: bool
    is_expired: bool


class EffectivePermissionResponse(BaseModel):
    """A permission the user holds now, with the roles conferring it."""
    id: UUID
    name: str
    resource: str
    action: str
    roles: list[str]
    valid_until: datetime | None = None
