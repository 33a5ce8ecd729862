"""
Value types shared by the permission engine.

Access levels, audiences and role names are closed vocabularies; operations,
permissable fields and resolved query permissions are immutable values that
never hit the database on their own.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Iterable, Mapping, Optional

from app.features.permissions.exceptions import UnknownEntityType, UnknownRole


class AccessLevel(str, Enum):
    CREATE = "Create"
    READ = "Read"
    UPDATE = "Update"
    CONNECT = "Connect"
    DISCONNECT = "Disconnect"
    DELETE = "Delete"

    @classmethod
    def parse(cls, value: str) -> "AccessLevel":
        """Parse an access level case-insensitively ("read", "READ", "Read")."""
        if isinstance(value, AccessLevel):
            return value
        for level in cls:
            if level.value.lower() == str(value).strip().lower():
                return level
        raise ValueError(f"invalid access level: {value!r}")

    def __str__(self) -> str:
        return self.value


# Levels that carry one permission row per field
FIELD_ACCESS_LEVELS = (AccessLevel.CREATE, AccessLevel.READ, AccessLevel.UPDATE)
# Levels that carry a single type-level row with a NULL field
TYPE_ACCESS_LEVELS = (AccessLevel.CONNECT, AccessLevel.DISCONNECT, AccessLevel.DELETE)


class Audience(str, Enum):
    EVERYONE = "EVERYONE"
    AUTHENTICATED = "AUTHENTICATED"

    @classmethod
    def parse(cls, value: str) -> "Audience":
        if isinstance(value, Audience):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"invalid audience: {value!r}") from None

    def __str__(self) -> str:
        return self.value


class RoleName(str, Enum):
    """Roles the engine knows how to grant. Assignment to principals lives elsewhere."""
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    OWNER = "OWNER"
    SELF = "SELF"
    USER = "USER"

    @classmethod
    def parse(cls, value: str) -> "RoleName":
        if isinstance(value, RoleName):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise UnknownRole(value) from None

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Operation:
    """An (access level, entity type) pair, e.g. ``Read Lesson``."""
    access_level: AccessLevel
    entity_type: str

    def __post_init__(self):
        object.__setattr__(self, "access_level", AccessLevel.parse(self.access_level))
        if not self.entity_type:
            raise ValueError("operation requires an entity type")

    @classmethod
    def parse(cls, value: str, entity_types: Optional[Iterable[str]] = None) -> "Operation":
        """
        Parse ``"<access level> <entity type>"``, both parts case-insensitively.

        The entity type is resolved to its canonical name among ``entity_types``,
        which defaults to the entity descriptor table.

        Raises:
            ValueError: malformed operation or unknown access level
            UnknownEntityType: the entity type is not one of ``entity_types``
        """
        parts = str(value).split()
        if len(parts) != 2:
            raise ValueError(f"invalid operation: {value!r}")
        access_level = AccessLevel.parse(parts[0])

        if entity_types is None:
            from app.features.permissions.entities import ENTITY_DESCRIPTORS
            entity_types = ENTITY_DESCRIPTORS
        canonical = {t.lower(): t for t in entity_types}
        try:
            entity_type = canonical[parts[1].lower()]
        except KeyError:
            raise UnknownEntityType(parts[1]) from None
        return cls(access_level, entity_type)

    @property
    def has_fields(self) -> bool:
        return self.access_level in FIELD_ACCESS_LEVELS

    def __str__(self) -> str:
        return f"{self.access_level.value} {self.entity_type}"


@dataclass(frozen=True)
class PermissableField:
    name: str
    allowed_access_levels: FrozenSet[AccessLevel] = frozenset()

    def can(self, access_level: AccessLevel) -> bool:
        return access_level in self.allowed_access_levels


@dataclass(frozen=True)
class QueryPermission:
    """
    Resolved permission of one caller for one operation.

    ``fields`` holds the field names the caller may read or write.
    ``granted`` is true when any catalog row of the operation matched the
    caller; for Connect, Disconnect and Delete it is the whole answer since
    those rows carry no field.
    """
    operation: Operation
    fields: FrozenSet[str] = field(default_factory=frozenset)
    granted: bool = False

    def allows(self, field_name: str) -> bool:
        return field_name.lower() in self.fields

    def restrict(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Drop every key of ``data`` the caller may not use for this operation."""
        return {k: v for k, v in data.items() if self.allows(k)}
