"""
DeadlineReminder ledger.
"""
from datetime import date, datetime
import enum
from sqlalchemy import String, ForeignKey, Integer, Date, DateTime, Text, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class ReminderStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class DeadlineReminder(Base, TimestampMixin):
    """
    One row per (vulnerability, days-left threshold, reminder date).

    The row is committed before the reminder is dispatched and is never
    deleted, so a threshold fires at most once per day even when the
    dispatch fails. The unique constraint makes a concurrent second scan
    lose on insert instead of sending a duplicate.
    """
    __tablename__ = "deadline_reminders"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    vuln_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("vulnerabilities.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    days_left: Mapped[int] = mapped_column(Integer, nullable=False)
    reminder_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    assignee_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    assignee_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[ReminderStatus] = mapped_column(
        SQLEnum(ReminderStatus),
        default=ReminderStatus.PENDING,
        nullable=False
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("vuln_id", "days_left", "reminder_date", name="uq_deadline_reminders_vuln_days_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeadlineReminder(vuln_id={self.vuln_id}, days_left={self.days_left}, "
            f"date={self.reminder_date}, status={self.status})>"
        )
