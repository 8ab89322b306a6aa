"""
Project models.

A project groups assets and vulnerabilities. Its owner and its members
(ProjectMember rows) are the users entitled to see and work on its data.
"""
from datetime import datetime
import enum
from sqlalchemy import String, ForeignKey, Text, DateTime, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid, as_utc, utcnow
from app.features.permissions.models import RoleCode


class ProjectStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"
    ARCHIVED = "archived"


# Roles a user may hold inside a project
MEMBER_ROLES = (RoleCode.SECURITY_ENGINEER, RoleCode.DEV_ENGINEER)


class Project(Base, TimestampMixin):
    """
    Project owned by one user with zero or more members.

    A project whose end date has passed is expired: it stays readable but
    rejects new asset and vulnerability submissions.
    """
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str | None] = mapped_column(String(50), nullable=True)  # web_project, api_interface, mobile_app, software_app
    priority: Mapped[str | None] = mapped_column(String(20), nullable=True)  # high, medium, low
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    owner_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    created_by: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Null end date means the project never expires
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[ProjectStatus] = mapped_column(
        SQLEnum(ProjectStatus),
        default=ProjectStatus.ACTIVE,
        nullable=False,
        index=True
    )

    # Relationships
    owner: Mapped["User"] = relationship("User", foreign_keys=[owner_id], lazy="selectin")  # type: ignore
    members: Mapped[list["ProjectMember"]] = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.end_date is None:
            return False
        return (now or utcnow()) > as_utc(self.end_date)

    def can_submit(self, now: datetime | None = None) -> bool:
        return self.status == ProjectStatus.ACTIVE and not self.is_expired(now)

    def has_member(self, user_id: str, *roles: RoleCode) -> bool:
        for member in self.members:
            if member.user_id == user_id and (not roles or member.role in roles):
                return True
        return False

    def has_access(self, user_id: str) -> bool:
        """Owner or member."""
        return self.owner_id == user_id or self.has_member(user_id)

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name={self.name!r}, status={self.status})>"


class ProjectMember(Base, TimestampMixin):
    """Membership of a user in a project, with the role they hold there."""
    __tablename__ = "project_members"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    project_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role: Mapped[RoleCode] = mapped_column(SQLEnum(RoleCode), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    project: Mapped["Project"] = relationship("Project", back_populates="members", lazy="selectin")
    user: Mapped["User"] = relationship("User", lazy="selectin")  # type: ignore

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
    )

    def __repr__(self) -> str:
        return f"<ProjectMember(project_id={self.project_id}, user_id={self.user_id}, role={self.role})>"
