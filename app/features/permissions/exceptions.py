"""
Errors raised by the permission engine.

StorageError is fatal during bootstrap and always propagated at runtime.
DuplicateInitialization never leaves the engine: suite creation and grant
insertion recover from it locally.
"""
from sqlalchemy.exc import IntegrityError


class PermissionEngineError(Exception):
    """Base class for permission engine errors."""


class StorageError(PermissionEngineError):
    """The backing store is unreachable or a statement failed."""


class DuplicateInitialization(PermissionEngineError):
    """A unique constraint rejected rows that already exist."""


class UnmodeledOperation(PermissionEngineError):
    """The catalog has no rows at all for an operation."""

    def __init__(self, operation):
        self.operation = operation
        super().__init__(f"operation {operation} is not modeled in the permission catalog")


NotFound = UnmodeledOperation


class InvalidFieldDeclaration(PermissionEngineError, ValueError):
    """An entity descriptor declares a field the engine cannot use."""


class UnknownEntityType(PermissionEngineError):
    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"unknown entity type: {entity_type!r}")


class UnknownRole(PermissionEngineError):
    def __init__(self, role_name: str):
        self.role_name = role_name
        super().__init__(f"unknown role: {role_name!r}")


class PermissionNotFound(PermissionEngineError):
    def __init__(self, permission_id: str):
        self.permission_id = permission_id
        super().__init__(f"permission {permission_id!r} not found")


class PolicyError(PermissionEngineError):
    """The static policy description is missing or malformed."""


UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    """
    True when an IntegrityError was caused by a unique constraint.

    PostgreSQL drivers expose the SQLSTATE (asyncpg as ``sqlstate``, psycopg as
    ``pgcode``); SQLite only reports it in the message.
    """
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION
    message = str(orig)
    return "UNIQUE constraint failed" in message or "duplicate key" in message
