"""
Reminder ledger and scheduler routes.
"""
from datetime import date
from typing import Annotated, Optional
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.services import Services, get_services
from app.features.permissions.dependencies import require_permission
from app.features.reminders.models import DeadlineReminder, ReminderStatus
from app.features.reminders.schemas import DeadlineReminderResponse, ReminderRunResponse, SchedulerStatusResponse
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["reminders"])


@router.get("/", response_model=list[DeadlineReminderResponse])
async def list_reminders(
    user: Annotated[User, Depends(require_permission("system:log"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    vuln_id: Optional[str] = None,
    reminder_date: Optional[date] = None,
    reminder_status: Optional[ReminderStatus] = None,
    skip: int = 0,
    limit: int = 100
):
    """List deadline reminder ledger rows, newest first."""
    stmt = select(DeadlineReminder)
    if vuln_id:
        stmt = stmt.where(DeadlineReminder.vuln_id == vuln_id)
    if reminder_date:
        stmt = stmt.where(DeadlineReminder.reminder_date == reminder_date)
    if reminder_status:
        stmt = stmt.where(DeadlineReminder.status == reminder_status)
    result = await db.execute(
        stmt.order_by(DeadlineReminder.reminder_date.desc(), DeadlineReminder.days_left).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.post("/run", response_model=ReminderRunResponse)
async def run_reminders(
    user: Annotated[User, Depends(require_permission("system:config"))],
    services: Annotated[Services, Depends(get_services)]
):
    """Run the deadline reminder scan now."""
    log.info("Manual deadline reminder scan requested by %s", user.id)
    summary = await services.scheduler.run_once()
    return ReminderRunResponse(**summary.as_dict())


@router.get("/scheduler", response_model=SchedulerStatusResponse)
async def scheduler_status(
    user: Annotated[User, Depends(require_permission("system:config"))],
    services: Annotated[Services, Depends(get_services)]
):
    """Report whether the scheduler runs and when the next scan is due."""
    return services.scheduler.status()
