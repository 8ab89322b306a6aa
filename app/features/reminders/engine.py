"""
Deadline reminder engine.

Once a day, every open vulnerability with an assignee and a fix deadline
is checked; when the deadline is 1, 2 or 3 days away (rounded up) the
assignee gets one reminder for that threshold. The ledger row is
committed before dispatch, so re-running the scan the same day is a
no-op and failed dispatches are not retried until the next threshold.
Deadlines already in the past are ignored.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import math
from typing import Iterable, List, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.clock import Clock
from app.core.database.base import as_utc
from app.core.errors import ReminderDispatchFailed, StorageError
from app.features.notifications.dispatcher import NotificationDispatcher, NotificationEvent, NotificationKind
from app.features.reminders.models import DeadlineReminder, ReminderStatus
from app.features.vulnerabilities.models import TERMINAL_STATUSES, Vulnerability
from app.utils import get_logger


log = get_logger(__name__)


def days_until(deadline: datetime, now: datetime) -> int:
    """Whole days left before the deadline, rounded up."""
    return math.ceil((as_utc(deadline) - now) / timedelta(days=1))


@dataclass(frozen=True)
class ReminderCandidate:
    vuln_id: str
    days_left: int
    title: str
    severity: str
    status: str
    fix_deadline: datetime
    project_id: str
    project_name: str
    assignee_id: str
    assignee_email: Optional[str]

    def to_event(self) -> NotificationEvent:
        return NotificationEvent(
            NotificationKind.VULN_DEADLINE_REMINDER,
            self.assignee_id,
            {
                "vuln_id": self.vuln_id,
                "title": self.title,
                "severity": self.severity,
                "status": self.status,
                "project_id": self.project_id,
                "project_name": self.project_name,
                "days_left": self.days_left,
                "fix_deadline": self.fix_deadline.isoformat(),
            },
        )


@dataclass
class ReminderRunSummary:
    reminder_date: date
    candidates: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    unrecorded: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "reminder_date": self.reminder_date.isoformat(),
            "candidates": self.candidates,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "unrecorded": self.unrecorded,
            "errors": list(self.errors),
        }


class DeadlineReminderEngine:

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        clock: Clock,
        thresholds: Iterable[int] = config.REMINDER_THRESHOLDS,
    ):
        self.dispatcher = dispatcher
        self.clock = clock
        self.thresholds = frozenset(thresholds)

    async def find_candidates(self, db: AsyncSession, now: datetime) -> List[ReminderCandidate]:
        """Open, assigned vulnerabilities whose deadline falls on a threshold."""
        result = await db.execute(
            select(Vulnerability)
            .where(
                Vulnerability.status.not_in(TERMINAL_STATUSES),
                Vulnerability.fix_deadline.is_not(None),
                Vulnerability.assignee_id.is_not(None),
            )
            .order_by(Vulnerability.fix_deadline)
        )

        candidates = []
        for vuln in result.scalars().all():
            deadline = as_utc(vuln.fix_deadline)
            if deadline <= now:
                continue
            days_left = days_until(deadline, now)
            if days_left not in self.thresholds:
                continue
            candidates.append(ReminderCandidate(
                vuln_id=vuln.id,
                days_left=days_left,
                title=vuln.title,
                severity=vuln.severity.value,
                status=vuln.status.value,
                fix_deadline=deadline,
                project_id=vuln.project_id,
                project_name=vuln.project.name if vuln.project else "",
                assignee_id=vuln.assignee_id,
                assignee_email=vuln.assignee.email if vuln.assignee else None,
            ))
        return candidates

    async def already_reminded(self, db: AsyncSession, candidate: ReminderCandidate, today: date) -> bool:
        result = await db.execute(
            select(DeadlineReminder.id).where(
                DeadlineReminder.vuln_id == candidate.vuln_id,
                DeadlineReminder.days_left == candidate.days_left,
                DeadlineReminder.reminder_date == today,
            )
        )
        return result.first() is not None

    async def run(self, db: AsyncSession) -> ReminderRunSummary:
        """
        Scan once and send due reminders.

        Returns:
            Counts of candidates, sent, failed and skipped (already reminded) reminders
        """
        now = self.clock.now()
        today = self.clock.today()
        summary = ReminderRunSummary(reminder_date=today)

        try:
            candidates = await self.find_candidates(db, now)
        except SQLAlchemyError as e:
            log.exception("Failed to load reminder candidates")
            raise StorageError() from e
        summary.candidates = len(candidates)

        for candidate in candidates:
            if await self.already_reminded(db, candidate, today):
                summary.skipped += 1
                continue

            reminder = DeadlineReminder(
                vuln_id=candidate.vuln_id,
                days_left=candidate.days_left,
                reminder_date=today,
                assignee_id=candidate.assignee_id,
                assignee_email=candidate.assignee_email,
                status=ReminderStatus.PENDING,
            )
            db.add(reminder)
            try:
                await db.commit()
            except IntegrityError:
                # Another scan recorded this threshold first
                await db.rollback()
                summary.skipped += 1
                continue

            try:
                await self.dispatcher.send(candidate.to_event())
            except Exception as e:
                failure = ReminderDispatchFailed(candidate.vuln_id, candidate.days_left, e)
                log.error(failure.message)
                reminder.status = ReminderStatus.FAILED
                reminder.error = str(e)[:1000]
                summary.failed += 1
                summary.errors.append(failure.message)
            else:
                reminder.status = ReminderStatus.SENT
                reminder.sent_at = self.clock.now()
                summary.sent += 1

            outcome = reminder.status
            try:
                await db.commit()
            except SQLAlchemyError as e:
                # The ledger row keeps its pending status; it still blocks a resend today
                await db.rollback()
                message = (
                    f"Failed to record {outcome.value} reminder for vulnerability "
                    f"{candidate.vuln_id} ({candidate.days_left} days left): {e}"
                )
                log.error(message)
                summary.errors.append(message)
                summary.unrecorded += 1

        log.info(
            "Deadline reminder scan for %s: %d candidates, %d sent, %d failed, %d skipped, %d unrecorded",
            today, summary.candidates, summary.sent, summary.failed, summary.skipped, summary.unrecorded,
        )
        return summary
