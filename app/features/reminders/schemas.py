"""
Pydantic schemas for the reminder ledger and scheduler.
"""
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from app.features.reminders.models import ReminderStatus


class DeadlineReminderResponse(BaseModel):
    id: str
    vuln_id: str
    days_left: int
    reminder_date: date
    assignee_id: Optional[str] = None
    assignee_email: Optional[str] = None
    status: ReminderStatus
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReminderRunResponse(BaseModel):
    reminder_date: date
    candidates: int
    sent: int
    failed: int
    skipped: int
    unrecorded: int = 0
    errors: List[str] = []


class SchedulerJob(BaseModel):
    id: str
    name: str
    next_run_time: Optional[datetime] = None


class SchedulerStatusResponse(BaseModel):
    running: bool
    timezone: str
    jobs: List[SchedulerJob] = []
    last_run: Optional[ReminderRunResponse] = None
