"""
Vulnerability model and its lifecycle enums.
"""
from datetime import datetime
import enum
from sqlalchemy import String, ForeignKey, Text, DateTime, Integer, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class VulnStatus(str, enum.Enum):
    UNFIXED = "unfixed"
    FIXING = "fixing"
    FIXED = "fixed"
    RETESTING = "retesting"
    COMPLETED = "completed"
    IGNORED = "ignored"


TERMINAL_STATUSES = frozenset({VulnStatus.COMPLETED, VulnStatus.IGNORED})

# Statuses that require an assignee
ASSIGNED_STATUSES = frozenset({VulnStatus.FIXING, VulnStatus.FIXED, VulnStatus.RETESTING})


class Severity(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class Vulnerability(Base, TimestampMixin):
    """
    A vulnerability found on an asset of a project.

    status only changes through app.features.vulnerabilities.lifecycle.
    fixed_by_id/fixed_at are set exactly when the record has passed
    through `fixed` (and are cleared when an audit fails), and
    assignee_id is non-null in fixing, fixed and retesting.

    `version` is an optimistic lock: a concurrent transition that loaded
    an older version fails on flush instead of overwriting.
    """
    __tablename__ = "vulnerabilities"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    vuln_type: Mapped[str | None] = mapped_column(String(100))
    cve_id: Mapped[str | None] = mapped_column(String(50), index=True)
    vuln_url: Mapped[str | None] = mapped_column(String(500))
    fix_suggestion: Mapped[str | None] = mapped_column(Text)

    severity: Mapped[Severity] = mapped_column(SQLEnum(Severity), nullable=False, index=True)
    status: Mapped[VulnStatus] = mapped_column(
        SQLEnum(VulnStatus),
        default=VulnStatus.UNFIXED,
        nullable=False,
        index=True
    )

    project_id: Mapped[str] = mapped_column(String(26), ForeignKey("projects.id"), nullable=False, index=True)
    asset_id: Mapped[str] = mapped_column(String(26), ForeignKey("assets.id"), nullable=False, index=True)

    reporter_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    assignee_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True, index=True)
    fixed_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fix_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    fixed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    retest_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ignore_reason: Mapped[str | None] = mapped_column(Text)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    project = relationship("Project", lazy="selectin")
    asset = relationship("Asset", lazy="selectin")
    reporter = relationship("User", foreign_keys=[reporter_id], lazy="selectin")
    assignee = relationship("User", foreign_keys=[assignee_id], lazy="selectin")
    fixed_by = relationship("User", foreign_keys=[fixed_by_id], lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_vulnerabilities_status_deadline", "status", "fix_deadline"),
        Index("ix_vulnerabilities_project_status", "project_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Vulnerability(id={self.id}, title={self.title!r}, status={self.status})>"
