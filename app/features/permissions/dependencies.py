"""
FastAPI dependencies for the permission engine.

Implements:
- Caller role lookup from the request state
- Role requirement for administrative routes
- Query permission resolution for resolvers
"""
from typing import List, Optional
from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.cache import QueryPermissionCache
from app.features.permissions.roles import RoleRegistry
from app.features.permissions.service import get_query_permission
from app.features.permissions.types import Operation, QueryPermission, RoleName
from app.utils import get_logger


log = get_logger(__name__)


def get_caller_roles(request: Request) -> List[str]:
    """
    Role names of the current caller.

    The identity middleware stores them on ``request.state.roles``; a request
    without them is anonymous.
    """
    roles = getattr(request.state, "roles", None) or []
    return [str(r).upper() for r in roles]


def get_query_permission_cache(request: Request) -> Optional[QueryPermissionCache]:
    return getattr(request.app.state, "query_permission_cache", None)


def get_role_registry(request: Request) -> RoleRegistry:
    registry = getattr(request.app.state, "role_registry", None)
    if registry is None:
        log.error("Role registry requested before bootstrap")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Permissions are not initialized",
        )
    return registry


def require_role(role: RoleName):
    """
    FastAPI dependency to require a role.

    Usage:
        @router.post("/grants")
        async def grant(roles: List[str] = Depends(require_role(RoleName.ADMIN))):
            ...

    Raises:
        HTTPException: 401 for anonymous callers, 403 without the role
    """
    async def role_dependency(roles: List[str] = Depends(get_caller_roles)) -> List[str]:
        if not roles:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
            )
        if role.value not in roles:
            log.debug(f"Caller roles {roles} lack {role.value}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {role.value} required",
            )
        return roles

    return role_dependency


def query_permission(operation: Operation):
    """
    FastAPI dependency resolving the caller's permission for an operation.

    Usage:
        @router.get("/lessons/{lesson_id}")
        async def get_lesson(
            perm: QueryPermission = Depends(query_permission(Operation.parse("Read Lesson")))
        ):
            return perm.restrict(lesson_row)

    UnmodeledOperation and StorageError propagate to the application's
    exception handlers.
    """
    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        roles: List[str] = Depends(get_caller_roles),
        cache: Optional[QueryPermissionCache] = Depends(get_query_permission_cache),
    ) -> QueryPermission:
        return await get_query_permission(db, operation, roles, cache=cache)

    return permission_dependency
