"""
Pydantic schemas for the permission API.

Request and response models for catalog rows, roles, query permission checks
and administrative updates.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.exceptions import UnknownEntityType
from app.features.permissions.types import AccessLevel, Audience, Operation, QueryPermission, RoleName


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Schema for a catalog row."""
    id: str
    access_level: AccessLevel
    entity_type: str
    field: Optional[str] = None
    audience: Audience
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionCountResponse(BaseModel):
    entity_type: str
    count: int


class AudienceUpdate(BaseModel):
    """Schema for setting the audience of a single catalog row."""
    audience: Audience


# ============================================================================
# Role Schemas
# ============================================================================

class RolePermissionsResponse(BaseModel):
    role: RoleName
    permissions: List[PermissionResponse] = []


# ============================================================================
# Operation Schemas
# ============================================================================

class OperationRequest(BaseModel):
    operation: str = Field(..., description='Operation such as "Read Lesson"')

    @field_validator("operation")
    @classmethod
    def operation_is_valid(cls, v: str) -> str:
        try:
            return str(Operation.parse(v))
        except UnknownEntityType as e:
            raise ValueError(str(e)) from None

    def to_operation(self) -> Operation:
        return Operation.parse(self.operation)


class QueryPermissionResponse(BaseModel):
    """Schema for a resolved query permission."""
    operation: str
    fields: List[str] = []
    granted: bool

    @classmethod
    def from_query_permission(cls, permission: QueryPermission) -> "QueryPermissionResponse":
        return cls(
            operation=str(permission.operation),
            fields=sorted(permission.fields),
            granted=permission.granted,
        )


class OperationAudienceUpdate(OperationRequest):
    """Schema for moving fields of an operation to an audience."""
    audience: Audience
    fields: List[str] = Field(default_factory=list, description="Fields; empty means all rows of the operation")


class RoleGrantRequest(OperationRequest):
    """Schema for granting fields of an operation to roles."""
    fields: List[str] = Field(default_factory=list, description="Fields; empty means all rows of the operation")
    roles: List[str] = Field(..., min_length=1, description="Role names")


class UpdatedCountResponse(BaseModel):
    operation: str
    count: int
