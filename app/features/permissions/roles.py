"""
Role records and the validated role registry.

The registry is built once at startup by ensure_roles() and handed to every
call that grants or revokes, so role names are checked against both the
RoleName vocabulary and the stored rows.
"""
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid
from app.features.permissions.exceptions import StorageError, UnknownRole, is_unique_violation
from app.features.permissions.models import Permission, Role, role_permission
from app.features.permissions.service import insert_ignoring_conflicts
from app.features.permissions.types import RoleName
from app.utils import get_logger


log = get_logger(__name__)


ROLE_DESCRIPTIONS = {
    RoleName.ADMIN: "Administrator with access to every granted capability",
    RoleName.MEMBER: "Member of the resource's study or course",
    RoleName.OWNER: "Owner of the resource",
    RoleName.SELF: "The user the resource describes",
    RoleName.USER: "Any signed-in user",
}


class RoleRegistry:
    """Immutable mapping of RoleName to stored role id."""

    def __init__(self, role_ids: Mapping[RoleName, str]):
        self._role_ids = MappingProxyType(dict(role_ids))

    def id_for(self, name: str) -> str:
        role_name = RoleName.parse(name)
        try:
            return self._role_ids[role_name]
        except KeyError:
            raise UnknownRole(name) from None

    def resolve(self, names: Iterable[str]) -> List[str]:
        """
        Resolve role names to role ids.

        Raises:
            UnknownRole: if a name is not a RoleName or has no stored row
        """
        return list(dict.fromkeys(self.id_for(n) for n in names))

    def names(self) -> List[RoleName]:
        return sorted(self._role_ids, key=lambda r: r.value)


async def ensure_roles(
    db: AsyncSession,
    names: Optional[Iterable[RoleName]] = None,
) -> RoleRegistry:
    """
    Create any missing role rows and return the registry of all known roles.

    Safe to run from several booting processes at once.
    """
    wanted = [RoleName.parse(n) for n in (names if names is not None else RoleName)]
    rows = [
        {"id": generate_ulid(), "name": name.value, "description": ROLE_DESCRIPTIONS.get(name)}
        for name in wanted
    ]
    try:
        if rows:
            try:
                await db.execute(insert_ignoring_conflicts(db, Role.__table__, rows))
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                if not is_unique_violation(e):
                    raise
                log.info("Roles already created")
        result = await db.execute(select(Role.name, Role.id).where(Role.name.in_([n.value for n in wanted])))
        stored = {RoleName(name): role_id for name, role_id in result.all()}
    except SQLAlchemyError as e:
        await db.rollback()
        log.error(f"Error ensuring roles: {e}")
        raise StorageError("failed to ensure roles") from e

    log.info(f"Role registry ready with {len(stored)} roles")
    return RoleRegistry(stored)


async def get_permissions_by_role(db: AsyncSession, role_name: str) -> List[Permission]:
    """Get every permission granted to a role, ordered by type, access level and field."""
    role_name = RoleName.parse(role_name)
    stmt = (
        select(Permission)
        .join(role_permission, role_permission.c.permission_id == Permission.id)
        .join(Role, Role.id == role_permission.c.role_id)
        .where(Role.name == role_name.value)
        .order_by(Permission.entity_type, Permission.access_level, Permission.field)
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        log.error(f"Error fetching permissions for role {role_name.value}: {e}")
        raise StorageError(f"failed to fetch permissions for role {role_name.value}") from e
    return list(result.scalars().all())
