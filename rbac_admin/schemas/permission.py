"""
Permission schemas.
"""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator

IDENTIFIER_PATTERN = r"^[a-zA-Z0-9_]+$"


class PermissionCreate(BaseModel):
    """
    Permission create schema.

    ``name`` defaults to ``resource:action``.
    """
    resource: str = Field(min_length=2, max_length=50, pattern=IDENTIFIER_PATTERN)
    action: str = Field(min_length=2, max_length=50, pattern=IDENTIFIER_PATTERN)
    name: str | None = Field(None, min_length=3, max_length=100, pattern=r"^[a-zA-Z0-9_:]+$")
    description: str | None = Field(None, max_length=500)


class PermissionUpdate(BaseModel):
    name: str | None = Field(None, min_length=3, max_length=100, pattern=r"^[a-zA-Z0-9_:]+$")
    description: str | None = Field(None, max_length=500)

    @field_validator("name")
    @classmethod
    def name_not_null(cls, v: str | None) -> str:
        if v is None:
            raise ValueError("name cannot be null")
        return v


class PermissionResponse(BaseModel):
    """Permission response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    resource: str
    action: str
    description: str | None = None
    is_active: bool
    is_protected: bool
    created_at: datetime
    updated_at: datetime | None = None
    role_count: int = 0


class PermissionListResponse(BaseModel):
    permissions: list[PermissionResponse]
    total: int
    page: int
    per_page: int
    pages: int


class PermissionHolderResponse(BaseModel):
    """A role holding a permission."""
    role_id: UUID
    role_name: str
    granted_at: datetime
    expires_at: datetime | None = None


class PermissionDetailResponse(PermissionResponse):
    roles: list[PermissionHolderResponse] = []


class BulkPermissionCreate(BaseModel):
    permissions: list[PermissionCreate] = Field(min_length=1, max_length=100)


class BulkPermissionError(BaseModel):
    index: int
    resource: str
    action: str
    code: str
    detail: str


class BulkPermissionResponse(BaseModel):
    created: list[PermissionResponse]
    errors: list[BulkPermissionError]


class ResourceSummary(BaseModel):
    resource: str
    permission_count: int


class ActionSummary(BaseModel):
    action: str
    permission_count: int
