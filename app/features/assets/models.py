"""
Asset model.
"""
from sqlalchemy import String, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Asset(Base, TimestampMixin):
    """
    Network asset under protection.

    Belongs to at most one project. Project-scoped assets are visible to
    the project's owner and members; unscoped assets only to their creator.

    Attributes:
        type: server, network_device, database, storage_device, custom
        environment: production, pre_production, staging, testing, development, disaster_recovery
        importance: extremely_high, high, medium, low
        status: active, inactive, maintenance
        tags: comma separated labels
    """
    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="server")
    domain: Mapped[str | None] = mapped_column(String(255))
    ip: Mapped[str | None] = mapped_column(String(45))
    port: Mapped[str | None] = mapped_column(String(100))
    os: Mapped[str | None] = mapped_column(String(100))
    owner: Mapped[str | None] = mapped_column(String(100))
    environment: Mapped[str | None] = mapped_column(String(50))
    department: Mapped[str | None] = mapped_column(String(100))
    importance: Mapped[str | None] = mapped_column(String(20), index=True)
    tags: Mapped[str | None] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    description: Mapped[str | None] = mapped_column(Text)

    project_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    created_by: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    # Relationships
    project = relationship("Project", lazy="selectin")

    __table_args__ = (
        Index("ix_assets_project_created", "project_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Asset(id={self.id}, name={self.name!r}, project_id={self.project_id})>"
