"""
Permission catalog and role-grant graph models.

- permission: one row per (access level, entity type, field); the field is
  NULL for the type-level levels Connect, Disconnect and Delete
- role: the vocabulary used when granting capabilities
- role_permission: many-to-many grants between roles and permissions

Deleting a permission or a role cascades to its grants.
"""
from sqlalchemy import String, ForeignKey, Table, Column, Text, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.permissions.types import Audience


# ============================================================================
# Association Tables for Many-to-Many Relationships
# ============================================================================

role_permission = Table(
    "role_permission",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("role.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permission.id", ondelete="CASCADE"), primary_key=True),
    Column("granted_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    Permission row governing one field (or the whole type) for one access level.

    Examples:
    - access_level="Read", entity_type="Lesson", field="title", audience="EVERYONE"
    - access_level="Delete", entity_type="Lesson", field=None, audience="AUTHENTICATED"
    """
    __tablename__ = "permission"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    access_level: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column("type", String(100), nullable=False, index=True)
    field: Mapped[str | None] = mapped_column(String(100), nullable=True)
    audience: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Audience.AUTHENTICATED.value,
        server_default=Audience.AUTHENTICATED.value,
    )

    # Grants are read with explicit queries, never through lazy loads
    roles: Mapped[list["Role"]] = relationship(
        "Role",
        secondary=role_permission,
        back_populates="permissions",
        lazy="raise",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Permission(id={self.id}, access_level={self.access_level}, type={self.entity_type}, "
            f"field={self.field!r}, audience={self.audience})>"
        )


# NULL fields compare distinct in a plain unique constraint, so the index is
# built over coalesce(field, '') to keep type-level rows unique as well.
Index(
    "uq_permission_access_level_type_field",
    Permission.access_level,
    Permission.entity_type,
    func.coalesce(Permission.field, ""),
    unique=True,
)


class Role(Base, TimestampMixin):
    """
    Role record. Names come from RoleName (ADMIN, MEMBER, OWNER, SELF, USER).
    Which principals hold a role is decided outside the engine.
    """
    __tablename__ = "role"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permission,
        back_populates="roles",
        lazy="raise",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"
