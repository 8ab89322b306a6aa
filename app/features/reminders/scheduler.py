"""
Daily trigger for the deadline reminder engine.
"""
import asyncio
from typing import Any, Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import config
from app.features.reminders.engine import DeadlineReminderEngine, ReminderRunSummary
from app.utils import get_logger


log = get_logger(__name__)


class ReminderScheduler:
    """
    Runs the reminder scan every day at a fixed local time.

    A single instance is assumed per database; the ledger's unique
    constraint still prevents duplicates if two instances overlap.
    """

    JOB_ID = "deadline_reminders"

    def __init__(
        self,
        engine: DeadlineReminderEngine,
        session_factory: async_sessionmaker[AsyncSession],
        hour: int = config.REMINDER_HOUR,
        minute: int = config.REMINDER_MINUTE,
        timezone: str = config.SCHEDULER_TIMEZONE,
    ):
        self.engine = engine
        self.session_factory = session_factory
        self.hour = hour
        self.minute = minute
        self.timezone = timezone
        self.scheduler = AsyncIOScheduler(timezone=timezone)
        self.last_run: Optional[ReminderRunSummary] = None
        self._lock = asyncio.Lock()

    async def run_once(self) -> ReminderRunSummary:
        """Run a scan now; concurrent calls wait for the one in progress."""
        async with self._lock:
            async with self.session_factory() as db:
                summary = await self.engine.run(db)
            self.last_run = summary
            return summary

    async def _run_job(self) -> None:
        try:
            await self.run_once()
        except Exception:
            log.exception("Scheduled deadline reminder scan failed")

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            self._run_job,
            CronTrigger(hour=self.hour, minute=self.minute, timezone=self.timezone),
            id=self.JOB_ID,
            name="Fix deadline reminders",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        log.info("Reminder scheduler started: daily at %02d:%02d %s", self.hour, self.minute, self.timezone)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("Reminder scheduler stopped")

    def status(self) -> Dict[str, Any]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run.isoformat() if next_run else None,
            })
        return {
            "running": self.scheduler.running,
            "timezone": self.timezone,
            "jobs": jobs,
            "last_run": self.last_run.as_dict() if self.last_run else None,
        }
