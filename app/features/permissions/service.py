"""
Permission catalog, suite generation and query permission resolution.

Implements:
- Suite generation: 3F + 3 AUTHENTICATED rows per entity type, inserted idempotently
- Audience relaxation: widening rows to EVERYONE from the field metadata
- Query permission resolution for an operation and a caller's roles
- Administrative audience updates and role grants driven by the policy file

Every write commits its own statement. SQLAlchemy errors surface as
StorageError; unique violations during initialization are recovered here.
"""
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import Table, case, delete, func, insert, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid
from app.features.permissions.cache import QueryPermissionCache, normalize_roles
from app.features.permissions.entities import get_descriptor
from app.features.permissions.exceptions import (
    DuplicateInitialization,
    PermissionNotFound,
    StorageError,
    UnmodeledOperation,
    is_unique_violation,
)
from app.features.permissions.fields import EntityDescriptor, extract_fields, field_names, filter_fields
from app.features.permissions.models import Permission, Role, role_permission
from app.features.permissions.types import (
    AccessLevel,
    Audience,
    FIELD_ACCESS_LEVELS,
    Operation,
    PermissableField,
    QueryPermission,
    TYPE_ACCESS_LEVELS,
)
from app.utils import get_logger

if TYPE_CHECKING:
    from app.features.permissions.roles import RoleRegistry


log = get_logger(__name__)

Descriptors = Optional[Mapping[str, EntityDescriptor]]


# ============================================================================
# Statement helpers
# ============================================================================

def insert_ignoring_conflicts(db: AsyncSession, table: Table, rows: Sequence[Dict[str, Any]]):
    """
    Build a bulk insert that skips rows hitting a unique constraint.

    PostgreSQL and SQLite use INSERT ... ON CONFLICT DO NOTHING. Other dialects
    get a plain insert, and the resulting IntegrityError is left to the caller.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table).values(list(rows)).on_conflict_do_nothing()
    if dialect == "sqlite":
        return sqlite.insert(table).values(list(rows)).on_conflict_do_nothing()
    return insert(table).values(list(rows))


async def _commit_write(db: AsyncSession, stmt, description: str) -> int:
    """
    Execute a write statement and commit it.

    Returns:
        The affected row count (0 when the driver cannot report it)

    Raises:
        DuplicateInitialization: on a unique constraint violation
        StorageError: on any other database error
    """
    try:
        result = await db.execute(stmt)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if is_unique_violation(e):
            raise DuplicateInitialization(description) from e
        log.error(f"Integrity error while trying to {description}: {e}")
        raise StorageError(f"failed to {description}") from e
    except SQLAlchemyError as e:
        await db.rollback()
        log.error(f"Database error while trying to {description}: {e}")
        raise StorageError(f"failed to {description}") from e
    return max(result.rowcount or 0, 0)


def _where_operation(stmt, operation: Operation):
    return stmt.where(
        Permission.access_level == operation.access_level.value,
        Permission.entity_type == operation.entity_type,
    )


def _normalize_fields(fields: Optional[Iterable[str]]) -> List[str]:
    return list(dict.fromkeys(f.strip().lower() for f in (fields or []) if f and f.strip()))


def _invalidate(cache: Optional[QueryPermissionCache]):
    if cache is not None:
        cache.invalidate()


# ============================================================================
# Suite Generation
# ============================================================================

def build_suite_rows(entity_type: str, fields: Sequence[PermissableField]) -> List[Dict[str, Any]]:
    """
    Build the 3F + 3 rows of a permission suite, all AUTHENTICATED:
    - Create/Read/Update rows for each field
    - one field-less row each for Connect/Disconnect/Delete
    """
    rows = []
    for al in FIELD_ACCESS_LEVELS:
        for f in fields:
            rows.append({
                "id": generate_ulid(),
                "access_level": al.value,
                "type": entity_type,
                "field": f.name,
                "audience": Audience.AUTHENTICATED.value,
            })
    for al in TYPE_ACCESS_LEVELS:
        rows.append({
            "id": generate_ulid(),
            "access_level": al.value,
            "type": entity_type,
            "field": None,
            "audience": Audience.AUTHENTICATED.value,
        })
    return rows


async def create_permission_suite(
    db: AsyncSession,
    entity_type: str,
    descriptors: Descriptors = None,
    cache: Optional[QueryPermissionCache] = None,
) -> int:
    """
    Create the permission suite of an entity type, then relax its audiences.

    Rows that already exist (earlier boot, concurrent boot of another
    instance) are skipped, so this is safe to call on every startup.

    Returns:
        Number of rows inserted by this call

    Raises:
        UnknownEntityType, InvalidFieldDeclaration: bad descriptor
        StorageError: the store failed; bootstrap must abort
    """
    fields = extract_fields(get_descriptor(entity_type, descriptors))
    rows = build_suite_rows(entity_type, fields)
    table = Permission.__table__

    inserted = 0
    try:
        inserted = await _commit_write(
            db,
            insert_ignoring_conflicts(db, table, rows),
            f"create permission suite for {entity_type}",
        )
    except DuplicateInitialization:
        log.info(f"Permissions for {entity_type} already created")

    if inserted:
        log.info(f"Created {inserted} permissions for type {entity_type}")
    else:
        log.debug(f"Permission suite for {entity_type} already present ({len(rows)} rows expected)")

    await update_permission_suite(db, entity_type, descriptors=descriptors, cache=cache)
    if inserted:
        _invalidate(cache)
    return inserted


async def update_permission_suite(
    db: AsyncSession,
    entity_type: str,
    descriptors: Descriptors = None,
    cache: Optional[QueryPermissionCache] = None,
) -> int:
    """
    Widen to EVERYONE every (access level, field) the metadata declares public.

    Never narrows an audience. A second run with unchanged metadata updates
    nothing.

    Returns:
        Number of rows widened
    """
    fields = extract_fields(get_descriptor(entity_type, descriptors))

    widened = 0
    for al in FIELD_ACCESS_LEVELS:
        public_fields = field_names(filter_fields(fields, al))
        if not public_fields:
            continue
        stmt = (
            update(Permission)
            .where(
                Permission.access_level == al.value,
                Permission.entity_type == entity_type,
                Permission.field.in_(public_fields),
                Permission.audience != Audience.EVERYONE.value,
            )
            .values(audience=Audience.EVERYONE.value)
            .execution_options(synchronize_session=False)
        )
        count = await _commit_write(db, stmt, f"relax {al.value} {entity_type} audience")
        if count:
            log.info(f"Made {count} {al.value} {entity_type} permissions public: {public_fields}")
        widened += count

    if widened:
        _invalidate(cache)
    return widened


async def delete_permission_suite(
    db: AsyncSession,
    entity_type: str,
    cache: Optional[QueryPermissionCache] = None,
) -> int:
    """Delete every permission of an entity type. Role grants cascade."""
    stmt = (
        delete(Permission)
        .where(Permission.entity_type == entity_type)
        .execution_options(synchronize_session=False)
    )
    count = await _commit_write(db, stmt, f"delete permission suite for {entity_type}")
    log.info(f"Deleted {count} permissions for type {entity_type}")
    _invalidate(cache)
    return count


async def count_permissions(
    db: AsyncSession,
    entity_type: str,
    access_level: Optional[AccessLevel] = None,
) -> int:
    stmt = select(func.count()).select_from(Permission).where(Permission.entity_type == entity_type)
    if access_level is not None:
        stmt = stmt.where(Permission.access_level == AccessLevel.parse(access_level).value)
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        log.error(f"Error counting permissions for {entity_type}: {e}")
        raise StorageError(f"failed to count permissions for {entity_type}") from e
    return result.scalar_one()


async def list_permissions(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    access_level: Optional[AccessLevel] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Permission]:
    stmt = select(Permission)
    if entity_type:
        stmt = stmt.where(Permission.entity_type == entity_type)
    if access_level:
        stmt = stmt.where(Permission.access_level == AccessLevel.parse(access_level).value)
    stmt = (
        stmt.order_by(Permission.entity_type, Permission.access_level, Permission.field)
        .offset(skip)
        .limit(limit)
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        log.error(f"Error listing permissions: {e}")
        raise StorageError("failed to list permissions") from e
    return list(result.scalars().all())


# ============================================================================
# Query Permission Resolution
# ============================================================================

async def get_query_permission(
    db: AsyncSession,
    operation: Operation,
    roles: Iterable[str] = (),
    cache: Optional[QueryPermissionCache] = None,
) -> QueryPermission:
    """
    Resolve the fields a caller may use for an operation.

    A row matches when its audience is EVERYONE or when it is granted to any
    of the caller's roles. Anonymous callers pass no roles.

    Raises:
        UnmodeledOperation: the catalog has no rows for the operation at all
        StorageError: the store failed

    A caller matching none of the rows gets an empty QueryPermission, which is
    an authorization outcome rather than an error.
    """
    role_names = normalize_roles(roles)
    version = None
    if cache is not None:
        cached = cache.get(operation, role_names)
        if cached is not None:
            return cached
        version = cache.version

    matched = Permission.audience == Audience.EVERYONE.value
    if role_names:
        granted_ids = (
            select(role_permission.c.permission_id)
            .join(Role, Role.id == role_permission.c.role_id)
            .where(Role.name.in_(role_names))
        )
        matched = or_(matched, Permission.id.in_(granted_ids))

    stmt = _where_operation(
        select(Permission.field, case((matched, 1), else_=0).label("matched")),
        operation,
    )
    try:
        result = await db.execute(stmt)
        rows = result.all()
    except SQLAlchemyError as e:
        log.error(f"Error resolving query permission for {operation}: {e}")
        raise StorageError(f"failed to resolve query permission for {operation}") from e

    if not rows:
        log.error(f"Operation {operation} has no permission rows")
        raise UnmodeledOperation(operation)

    fields = frozenset(f for f, m in rows if m and f is not None)
    permission = QueryPermission(
        operation=operation,
        fields=fields,
        granted=any(m for _, m in rows),
    )
    log.debug(f"Query permission {operation} roles={list(role_names)} fields={sorted(fields)}")

    if cache is not None:
        cache.put(operation, role_names, permission, version)
    return permission


# ============================================================================
# Administrative Updates
# ============================================================================

async def update_permission_audience(
    db: AsyncSession,
    operation: Operation,
    audience: Audience,
    fields: Optional[Iterable[str]] = None,
    cache: Optional[QueryPermissionCache] = None,
) -> int:
    """
    Set the audience of the named fields of an operation.

    With no fields, every row of the operation is updated (the only way to
    address the field-less Connect/Disconnect/Delete rows). Unlike audience
    relaxation this can narrow as well as widen.
    Named fields that match no row of the operation are logged and skipped.

    Raises:
        UnmodeledOperation: the catalog has no rows for the operation
    """
    audience = Audience.parse(audience)
    names = _normalize_fields(fields)

    permission_ids = await _resolve_permission_ids(db, operation, names)
    if not permission_ids:
        return 0

    stmt = (
        update(Permission)
        .where(Permission.id.in_(permission_ids), Permission.audience != audience.value)
        .values(audience=audience.value)
        .execution_options(synchronize_session=False)
    )
    count = await _commit_write(db, stmt, f"update {operation} audience")

    log.info(f"Updated {count} permissions of {operation} to audience {audience.value} (fields={names or 'all'})")
    _invalidate(cache)
    return count


async def update_permission(
    db: AsyncSession,
    permission_id: str,
    audience: Audience,
    cache: Optional[QueryPermissionCache] = None,
) -> Permission:
    """Set the audience of a single permission row."""
    audience = Audience.parse(audience)
    try:
        result = await db.execute(select(Permission).where(Permission.id == permission_id))
        permission = result.scalars().first()
        if permission is None:
            raise PermissionNotFound(permission_id)
        permission.audience = audience.value
        await db.commit()
        await db.refresh(permission)
    except SQLAlchemyError as e:
        await db.rollback()
        log.error(f"Error updating permission {permission_id}: {e}")
        raise StorageError(f"failed to update permission {permission_id}") from e

    log.info(f"Permission {permission_id} audience set to {audience.value}")
    _invalidate(cache)
    return permission


async def _resolve_permission_ids(
    db: AsyncSession,
    operation: Operation,
    fields: List[str],
) -> List[str]:
    try:
        result = await db.execute(_where_operation(select(Permission.id, Permission.field), operation))
        rows = result.all()
    except SQLAlchemyError as e:
        log.error(f"Error resolving permissions for {operation}: {e}")
        raise StorageError(f"failed to resolve permissions for {operation}") from e

    if not rows:
        raise UnmodeledOperation(operation)
    if not fields:
        return [permission_id for permission_id, _ in rows]

    by_field = {f: permission_id for permission_id, f in rows if f is not None}
    missing = [f for f in fields if f not in by_field]
    if missing:
        log.warning(f"Fields {missing} not found for operation {operation}")
    return [by_field[f] for f in fields if f in by_field]


async def connect_role_permissions(
    db: AsyncSession,
    operation: Operation,
    fields: Optional[Iterable[str]],
    role_names: Iterable[str],
    registry: "RoleRegistry",
    cache: Optional[QueryPermissionCache] = None,
) -> int:
    """
    Grant the named fields of an operation to roles.

    With no fields, every row of the operation is granted. Existing grants are
    left alone, so repeating a grant is not an error.

    Returns:
        Number of new grants

    Raises:
        UnknownRole: a role name is not known to the registry
        UnmodeledOperation: the catalog has no rows for the operation
    """
    role_ids = registry.resolve(role_names)
    names = _normalize_fields(fields)
    if not role_ids:
        log.warning(f"No roles given for {operation}, nothing granted")
        return 0

    permission_ids = await _resolve_permission_ids(db, operation, names)
    if not permission_ids:
        return 0

    rows = [
        {"role_id": role_id, "permission_id": permission_id}
        for role_id in role_ids
        for permission_id in permission_ids
    ]
    try:
        count = await _commit_write(
            db,
            insert_ignoring_conflicts(db, role_permission, rows),
            f"grant {operation} to roles",
        )
    except DuplicateInitialization:
        log.info(f"Permissions of {operation} already granted")
        count = 0

    log.info(f"Granted {count} permissions of {operation} (fields={names or 'all'}) to {list(role_names)}")
    _invalidate(cache)
    return count


async def revoke_role_permissions(
    db: AsyncSession,
    operation: Operation,
    fields: Optional[Iterable[str]],
    role_names: Iterable[str],
    registry: "RoleRegistry",
    cache: Optional[QueryPermissionCache] = None,
) -> int:
    """Remove grants of the named fields of an operation from roles."""
    role_ids = registry.resolve(role_names)
    names = _normalize_fields(fields)

    permission_ids = _where_operation(select(Permission.id), operation)
    if names:
        permission_ids = permission_ids.where(Permission.field.in_(names))
    stmt = delete(role_permission).where(
        role_permission.c.role_id.in_(role_ids),
        role_permission.c.permission_id.in_(permission_ids),
    )
    count = await _commit_write(db, stmt, f"revoke {operation} from roles")
    log.info(f"Revoked {count} grants of {operation} from {list(role_names)}")
    _invalidate(cache)
    return count
