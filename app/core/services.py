"""
Application service container.

Built once at startup and stored on `app.state.services`; routes resolve
it with `Depends(get_services)`. Tests build their own with a fixed
clock and recording dispatchers.
"""
from dataclasses import dataclass
from typing import Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import Request

from app.core import config
from app.core.clock import Clock
from app.features.audit.recorder import AuditRecorder
from app.features.notifications.dispatcher import InAppNotificationDispatcher, NotificationDispatcher
from app.features.notifications.queue import NotificationQueue
from app.features.reminders.engine import DeadlineReminderEngine
from app.features.reminders.scheduler import ReminderScheduler
from app.features.vulnerabilities.lifecycle import LifecycleEngine


@dataclass
class Services:
    clock: Clock
    audit: AuditRecorder
    dispatcher: NotificationDispatcher
    notifications: NotificationQueue
    lifecycle: LifecycleEngine
    reminders: DeadlineReminderEngine
    scheduler: ReminderScheduler

    async def start(self, enable_scheduler: bool = config.ENABLE_SCHEDULER) -> None:
        self.notifications.start()
        if enable_scheduler:
            self.scheduler.start()

    async def stop(self) -> None:
        self.scheduler.shutdown()
        await self.notifications.stop()


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    clock: Optional[Clock] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    thresholds: Iterable[int] = config.REMINDER_THRESHOLDS,
) -> Services:
    """Wire the default services; any collaborator can be substituted."""
    clock = clock or Clock()
    dispatcher = dispatcher or InAppNotificationDispatcher(session_factory)
    audit = AuditRecorder()
    notifications = NotificationQueue(dispatcher)
    reminders = DeadlineReminderEngine(dispatcher, clock, thresholds)
    return Services(
        clock=clock,
        audit=audit,
        dispatcher=dispatcher,
        notifications=notifications,
        lifecycle=LifecycleEngine(audit, notifications, clock),
        reminders=reminders,
        scheduler=ReminderScheduler(reminders, session_factory),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
