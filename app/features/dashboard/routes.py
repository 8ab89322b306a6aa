"""
Dashboard summary routes.

Every count goes through the same scope predicates as the list routes,
so the numbers never include records the user could not open.
"""
from typing import Annotated, Dict
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import as_utc
from app.core.database.engine import get_db
from app.core.services import Services, get_services
from app.features.assets.models import Asset
from app.features.permissions.dependencies import require_permission
from app.features.permissions.scope import EntityKind, access_scope
from app.features.projects.models import Project
from app.features.users.models import User
from app.features.vulnerabilities.models import TERMINAL_STATUSES, Vulnerability


router = APIRouter(tags=["dashboard"])


class DashboardResponse(BaseModel):
    projects: int
    assets: int
    vulnerabilities: int
    by_status: Dict[str, int]
    by_severity: Dict[str, int]
    overdue: int
    my_open_assignments: int


@router.get("/", response_model=DashboardResponse)
async def get_dashboard(
    user: Annotated[User, Depends(require_permission("dashboard:view"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Summary counts for the current user's visible data."""
    vuln_scope = access_scope.predicate(user, EntityKind.VULNERABILITY)

    projects = await db.scalar(
        select(func.count(Project.id)).where(access_scope.predicate(user, EntityKind.PROJECT))
    )
    assets = await db.scalar(
        select(func.count(Asset.id)).where(access_scope.predicate(user, EntityKind.ASSET))
    )

    by_status = {
        status.value: count for status, count in (await db.execute(
            select(Vulnerability.status, func.count(Vulnerability.id)).where(vuln_scope).group_by(Vulnerability.status)
        )).all()
    }
    by_severity = {
        severity.value: count for severity, count in (await db.execute(
            select(Vulnerability.severity, func.count(Vulnerability.id)).where(vuln_scope).group_by(Vulnerability.severity)
        )).all()
    }

    open_vulns = (await db.execute(
        select(Vulnerability.fix_deadline, Vulnerability.assignee_id)
        .where(vuln_scope, Vulnerability.status.not_in(TERMINAL_STATUSES))
    )).all()
    now = services.clock.now()
    overdue = sum(1 for deadline, _ in open_vulns if deadline is not None and as_utc(deadline) < now)
    mine = sum(1 for _, assignee_id in open_vulns if assignee_id == user.id)

    return DashboardResponse(
        projects=projects or 0,
        assets=assets or 0,
        vulnerabilities=sum(by_status.values()),
        by_status=by_status,
        by_severity=by_severity,
        overdue=overdue,
        my_open_assignments=mine,
    )
