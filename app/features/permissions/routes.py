"""
Permission catalog API routes.

Provides endpoints for inspecting the catalog, resolving query permissions
and applying administrative audience changes and role grants.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.permissions.cache import QueryPermissionCache
from app.features.permissions.dependencies import (
    get_caller_roles,
    get_query_permission_cache,
    get_role_registry,
    require_role,
)
from app.features.permissions.roles import RoleRegistry, get_permissions_by_role
from app.features.permissions.schemas import (
    AudienceUpdate,
    OperationAudienceUpdate,
    OperationRequest,
    PermissionCountResponse,
    PermissionResponse,
    QueryPermissionResponse,
    RoleGrantRequest,
    RolePermissionsResponse,
    UpdatedCountResponse,
)
from app.features.permissions.service import (
    connect_role_permissions,
    count_permissions,
    get_query_permission,
    list_permissions,
    update_permission,
    update_permission_audience,
)
from app.features.permissions.types import AccessLevel, RoleName
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Catalog Routes
# ============================================================================

@router.get("/catalog", response_model=List[PermissionResponse])
async def list_catalog(
    type: Optional[str] = None,
    access_level: Optional[AccessLevel] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    """List catalog rows with optional filtering."""
    return await list_permissions(db, entity_type=type, access_level=access_level, skip=skip, limit=limit)


@router.get("/catalog/count", response_model=PermissionCountResponse)
async def count_catalog(
    type: str,
    db: AsyncSession = Depends(get_db),
):
    """Count the catalog rows of an entity type."""
    return PermissionCountResponse(entity_type=type, count=await count_permissions(db, type))


@router.put("/catalog/{permission_id}/audience", response_model=PermissionResponse)
async def set_permission_audience(
    permission_id: str,
    body: AudienceUpdate,
    db: AsyncSession = Depends(get_db),
    cache: Optional[QueryPermissionCache] = Depends(get_query_permission_cache),
    _roles: List[str] = Depends(require_role(RoleName.ADMIN)),
):
    """Set the audience of one catalog row (admin only)."""
    return await update_permission(db, permission_id, body.audience, cache=cache)


# ============================================================================
# Query Permission Routes
# ============================================================================

@router.post("/check", response_model=QueryPermissionResponse)
@limiter.limit("120/minute")
async def check_query_permission(
    request: Request,
    body: OperationRequest,
    db: AsyncSession = Depends(get_db),
    cache: Optional[QueryPermissionCache] = Depends(get_query_permission_cache),
    roles: List[str] = Depends(get_caller_roles),
):
    """Resolve the fields the current caller may use for an operation."""
    permission = await get_query_permission(db, body.to_operation(), roles, cache=cache)
    return QueryPermissionResponse.from_query_permission(permission)


@router.get("/roles/{role_name}", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role_name: str,
    db: AsyncSession = Depends(get_db),
):
    """List the permissions granted to a role."""
    role = RoleName.parse(role_name)
    permissions = await get_permissions_by_role(db, role)
    return RolePermissionsResponse(
        role=role,
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )


# ============================================================================
# Administrative Routes
# ============================================================================

@router.post("/audience", response_model=UpdatedCountResponse)
async def set_operation_audience(
    body: OperationAudienceUpdate,
    db: AsyncSession = Depends(get_db),
    cache: Optional[QueryPermissionCache] = Depends(get_query_permission_cache),
    _roles: List[str] = Depends(require_role(RoleName.ADMIN)),
):
    """Move fields of an operation to an audience (admin only)."""
    operation = body.to_operation()
    count = await update_permission_audience(db, operation, body.audience, body.fields, cache=cache)
    return UpdatedCountResponse(operation=str(operation), count=count)


@router.post("/grants", response_model=UpdatedCountResponse, status_code=status.HTTP_200_OK)
async def grant_role_permissions(
    body: RoleGrantRequest,
    db: AsyncSession = Depends(get_db),
    cache: Optional[QueryPermissionCache] = Depends(get_query_permission_cache),
    registry: RoleRegistry = Depends(get_role_registry),
    _roles: List[str] = Depends(require_role(RoleName.ADMIN)),
):
    """Grant fields of an operation to roles (admin only)."""
    operation = body.to_operation()
    count = await connect_role_permissions(db, operation, body.fields, body.roles, registry, cache=cache)
    return UpdatedCountResponse(operation=str(operation), count=count)
