"""
Startup sequence of the permission engine.

1. ensure every known role exists and build the role registry
2. create (or complete) the permission suite of every entity type
3. apply the static policy file

Any error here must abort startup: the service may not serve traffic with a
partially initialized catalog.
"""
from dataclasses import dataclass
from typing import Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.cache import QueryPermissionCache
from app.features.permissions.entities import ENTITY_DESCRIPTORS
from app.features.permissions.fields import EntityDescriptor
from app.features.permissions.policy import PolicyFile
from app.features.permissions.roles import RoleRegistry, ensure_roles
from app.features.permissions.service import (
    connect_role_permissions,
    create_permission_suite,
    update_permission_audience,
)
from app.features.permissions.types import Audience
from app.utils import get_logger


log = get_logger(__name__)


@dataclass
class BootstrapResult:
    registry: RoleRegistry
    created: int = 0
    opened: int = 0
    granted: int = 0


async def apply_policy(
    db: AsyncSession,
    policy: PolicyFile,
    registry: RoleRegistry,
    cache: Optional[QueryPermissionCache] = None,
) -> tuple[int, int]:
    """
    Apply policy entries in file order.

    Returns:
        (rows opened to EVERYONE, new role grants)
    """
    opened = granted = 0
    for entry in policy.permissions:
        operation = entry.to_operation()
        if entry.public:
            opened += await update_permission_audience(
                db, operation, Audience.EVERYONE, entry.fields, cache=cache
            )
        else:
            granted += await connect_role_permissions(
                db, operation, entry.fields, entry.roles, registry, cache=cache
            )
    return opened, granted


async def bootstrap_permissions(
    db: AsyncSession,
    descriptors: Optional[Mapping[str, EntityDescriptor]] = None,
    policy: Optional[PolicyFile] = None,
    cache: Optional[QueryPermissionCache] = None,
) -> BootstrapResult:
    descriptors = ENTITY_DESCRIPTORS if descriptors is None else descriptors

    log.info("Bootstrapping permissions...")
    registry = await ensure_roles(db)
    result = BootstrapResult(registry=registry)

    for entity_type in descriptors:
        result.created += await create_permission_suite(db, entity_type, descriptors=descriptors)

    if policy is not None:
        result.opened, result.granted = await apply_policy(db, policy, registry)

    if cache is not None:
        cache.invalidate()

    log.info(
        f"Permissions ready: {len(descriptors)} types, {result.created} rows created, "
        f"{result.opened} opened, {result.granted} grants added"
    )
    return result
