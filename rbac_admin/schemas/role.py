"""
Role schemas.
"""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator

ROLE_NAME_PATTERN = r"^[a-zA-Z0-9_]+$"


class RoleCreate(BaseModel):
    name: str = Field(min_length=2, max_length=50, pattern=ROLE_NAME_PATTERN)
    description: str | None = Field(None, max_length=500)
    permission_ids: list[UUID] = []


class RoleUpdate(BaseModel):
    name: str | None = Field(None, min_length=2, max_length=50, pattern=ROLE_NAME_PATTERN)
    description: str | None = Field(None, max_length=500)

    @field_validator("name")
    @classmethod
    def name_not_null(cls, v: str | None) -> str:
        # Omit the field to keep the name; null would clear a required column
        if v is None:
            raise ValueError("name cannot be null")
        return v


class RoleResponse(BaseModel):
    """Role response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None = None
    is_active: bool
    is_protected: bool
    created_at: datetime
    updated_at: datetime | None = None
    permission_count: int = 0
    user_count: int = 0


class RoleListResponse(BaseModel):
    roles: list[RoleResponse]
    total: int
    page: int
    per_page: int
    pages: int


class RolePermissionGrantResponse(BaseModel):
    """A permission granted to a role."""
    grant_id: UUID
    permission_id: UUID
    name: str
    resource: str
    action: str
    description: str | None = None
    granted_by: UUID | None = None
    granted_at: datetime
    expires_at: datetime | None = None
    is_active: bool


class RoleHolderResponse(BaseModel):
    """A user holding a role."""
    user_id: UUID
    username: str
    email: str
    assigned_at: datetime
    expires_at: datetime | None = None


class RoleDetailResponse(RoleResponse):
    permissions: list[RolePermissionGrantResponse] = []
    users: list[RoleHolderResponse] = []


class GrantPermissionRequest(BaseModel):
    permission_id: UUID
    expires_at: datetime | None = None
