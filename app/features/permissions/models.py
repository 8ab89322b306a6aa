"""
Role and Permission models.

Roles form a closed set (RoleCode). Each role owns a set of permission
codes through the role_permissions association. The rows are seeded from
the static table in app.features.permissions.gate and are only read for
display; authorization decisions use the static table directly.
"""
import enum
from sqlalchemy import String, ForeignKey, Table, Column, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class RoleCode(str, enum.Enum):
    """System roles. super_admin bypasses every permission and scope check."""
    SUPER_ADMIN = "super_admin"
    SECURITY_ENGINEER = "security_engineer"
    DEV_ENGINEER = "dev_engineer"


# Role-Permission relationship
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Permission(Base, TimestampMixin):
    """
    Permission identified by an opaque `<module>:<action>` code.

    Codes are compared for equality only, never parsed; module and action
    are stored for filtering in the admin UI.
    """
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    module: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    roles: Mapped[list["Role"]] = relationship(
        "Role",
        secondary=role_permissions,
        back_populates="permissions",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, code={self.code!r})>"


class Role(Base, TimestampMixin):
    """Seeded role row mirroring a RoleCode."""
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    code: Mapped[RoleCode] = mapped_column(SQLEnum(RoleCode), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        back_populates="roles",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, code={self.code})>"
