"""
Notification events and dispatchers.

A dispatcher delivers one event to one recipient and raises on failure.
Callers decide what a failure means: the outbound queue logs it, the
reminder engine marks its ledger row as failed.
"""
from dataclasses import dataclass, field
import enum
from typing import Any, Dict, Protocol
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.notifications.models import Notification
from app.utils import get_logger


log = get_logger(__name__)


class NotificationKind(str, enum.Enum):
    VULN_SUBMITTED = "vuln_submitted"
    VULN_ASSIGNED = "vuln_assigned"
    VULN_STATUS_CHANGED = "vuln_status_changed"
    VULN_DEADLINE_REMINDER = "vuln_deadline_reminder"
    PROJECT_MEMBER_ADDED = "project_member_added"


@dataclass(frozen=True)
class NotificationEvent:
    kind: NotificationKind
    recipient_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    async def send(self, event: NotificationEvent) -> None:
        ...


class NotificationPublisher(Protocol):
    def publish(self, event: NotificationEvent) -> None:
        ...


def render(event: NotificationEvent) -> tuple[str, str]:
    """Build the (title, content) shown to the recipient."""
    p = event.payload
    title = p.get("title", "")
    project = p.get("project_name", "")

    if event.kind == NotificationKind.VULN_SUBMITTED:
        return (
            f"New vulnerability submitted: {title}",
            f"A {p.get('severity')} vulnerability was submitted to project {project} by {p.get('actor_name')}.",
        )
    if event.kind == NotificationKind.VULN_ASSIGNED:
        deadline = p.get("fix_deadline")
        content = f"{p.get('actor_name')} assigned you a {p.get('severity')} vulnerability in project {project}."
        if deadline:
            content += f" Fix deadline: {deadline}."
        return f"Vulnerability assigned: {title}", content
    if event.kind == NotificationKind.VULN_STATUS_CHANGED:
        return (
            f"Vulnerability status changed: {title}",
            f"Status changed from {p.get('from_status')} to {p.get('to_status')} by {p.get('actor_name')} "
            f"in project {project}.",
        )
    if event.kind == NotificationKind.VULN_DEADLINE_REMINDER:
        return (
            f"Fix deadline in {p.get('days_left')} day(s): {title}",
            f"The {p.get('severity')} vulnerability in project {project} is {p.get('status')} "
            f"and must be fixed by {p.get('fix_deadline')}.",
        )
    if event.kind == NotificationKind.PROJECT_MEMBER_ADDED:
        return (
            f"Added to project: {project}",
            f"{p.get('actor_name')} added you to project {project} as {p.get('role')}.",
        )
    return event.kind.value, ""


class InAppNotificationDispatcher:
    """Delivers events as Notification rows, each in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def send(self, event: NotificationEvent) -> None:
        title, content = render(event)
        async with self.session_factory() as db:
            db.add(Notification(
                user_id=event.recipient_id,
                kind=event.kind.value,
                title=title,
                content=content,
                data=event.payload,
            ))
            await db.commit()
        log.debug("Delivered %s to user %s", event.kind.value, event.recipient_id)
