"""
System feature routes: runtime configuration and instance-wide statistics.

Both are super admin tools; unlike the dashboard, the statistics are not
scoped to the caller.
"""
from datetime import timedelta
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import InvalidRequest, NotFound
from app.core.services import Services, get_services
from app.features.assets.models import Asset
from app.features.audit.models import AuditLog
from app.features.audit.recorder import snapshot
from app.features.permissions.dependencies import require_permission
from app.features.projects.models import Project
from app.features.reminders.models import DeadlineReminder
from app.features.system.models import SystemConfig, parse_config_value
from app.features.system.schemas import (
    ActiveCount,
    BreakdownCount,
    SystemConfigCreate,
    SystemConfigListResponse,
    SystemConfigResponse,
    SystemConfigUpdate,
    SystemStatsResponse,
    VulnerabilityStats,
)
from app.features.users.models import User
from app.features.vulnerabilities.models import TERMINAL_STATUSES, Vulnerability
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["system"])

ENTITY_KIND = "system_config"
AUDIT_FIELDS = ("key", "value", "type", "group", "is_public")
RECENT_ACTIVITY_WINDOW = timedelta(days=7)


async def _get_config(db: AsyncSession, key: str) -> SystemConfig:
    result = await db.execute(select(SystemConfig).where(SystemConfig.key == key))
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFound("config", key)
    return entry


async def _count_by(db: AsyncSession, column) -> dict:
    rows = (await db.execute(select(column, func.count()).group_by(column))).all()
    return {getattr(value, "value", value): count for value, count in rows}


@router.get("/stats", response_model=SystemStatsResponse)
async def get_stats(
    _user: Annotated[User, Depends(require_permission("system:stats"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Counts across the whole instance."""
    now = services.clock.now()

    users_total = await db.scalar(select(func.count(User.id)))
    users_active = await db.scalar(select(func.count(User.id)).where(User.is_active.is_(True)))
    assets_total = await db.scalar(select(func.count(Asset.id)))
    assets_active = await db.scalar(select(func.count(Asset.id)).where(Asset.status == "active"))

    projects = await _count_by(db, Project.status)
    vulns_by_status = await _count_by(db, Vulnerability.status)
    vulns_by_severity = await _count_by(db, Vulnerability.severity)
    reminders = await _count_by(db, DeadlineReminder.status)
    terminal = {s.value for s in TERMINAL_STATUSES}

    recent = await db.scalar(
        select(func.count(AuditLog.id)).where(AuditLog.created_at >= now - RECENT_ACTIVITY_WINDOW)
    )

    return SystemStatsResponse(
        users=ActiveCount(total=users_total or 0, active=users_active or 0),
        projects=BreakdownCount(total=sum(projects.values()), by_status=projects),
        assets=ActiveCount(total=assets_total or 0, active=assets_active or 0),
        vulnerabilities=VulnerabilityStats(
            total=sum(vulns_by_status.values()),
            open=sum(count for s, count in vulns_by_status.items() if s not in terminal),
            by_status=vulns_by_status,
            by_severity=vulns_by_severity,
        ),
        reminders=BreakdownCount(total=sum(reminders.values()), by_status=reminders),
        recent_activities=recent or 0,
        generated_at=now,
    )


@router.get("/configs", response_model=SystemConfigListResponse)
async def list_configs(
    _user: Annotated[User, Depends(require_permission("system:config"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    group: Optional[str] = None,
    is_public: Optional[bool] = None
):
    """List configuration entries, ordered by group and key."""
    stmt = select(SystemConfig)
    if group:
        stmt = stmt.where(SystemConfig.group == group)
    if is_public is not None:
        stmt = stmt.where(SystemConfig.is_public.is_(is_public))

    result = await db.execute(stmt.order_by(SystemConfig.group, SystemConfig.key))
    items = [SystemConfigResponse.model_validate(entry) for entry in result.scalars().all()]
    return SystemConfigListResponse(items=items, total=len(items))


@router.get("/configs/{key}", response_model=SystemConfigResponse)
async def get_config(
    key: str,
    _user: Annotated[User, Depends(require_permission("system:config"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await _get_config(db, key)


@router.post("/configs", response_model=SystemConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_config(
    config_data: SystemConfigCreate,
    user: Annotated[User, Depends(require_permission("system:config"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Create a configuration entry with a unique key."""
    existing = await db.execute(select(SystemConfig.id).where(SystemConfig.key == config_data.key))
    if existing.first() is not None:
        raise InvalidRequest(f"Config key {config_data.key!r} already exists")

    entry = SystemConfig(**config_data.model_dump())
    db.add(entry)
    await db.flush()
    services.audit.record(db, user.id, ENTITY_KIND, entry.id, "create", after=snapshot(entry, AUDIT_FIELDS))
    await db.commit()
    log.info("Config %s created by %s", entry.key, user.username)
    return entry


@router.put("/configs/{key}", response_model=SystemConfigResponse)
async def update_config(
    key: str,
    update_data: SystemConfigUpdate,
    user: Annotated[User, Depends(require_permission("system:config"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Update a configuration entry. The value must still match its type."""
    entry = await _get_config(db, key)
    changes = update_data.model_dump(exclude_unset=True)

    new_type = changes.get("type") or entry.type
    new_value = changes["value"] if changes.get("value") is not None else entry.value
    try:
        parse_config_value(new_type, new_value)
    except ValueError as e:
        raise InvalidRequest(f"Value does not match type {new_type.value}: {e}") from e

    before = snapshot(entry, AUDIT_FIELDS)
    for field, value in changes.items():
        if value is not None or field == "description":
            setattr(entry, field, value)

    services.audit.record(
        db, user.id, ENTITY_KIND, entry.id, "update",
        before=before, after=snapshot(entry, AUDIT_FIELDS),
    )
    await db.commit()
    await db.refresh(entry)
    return entry


@router.delete("/configs/{key}")
async def delete_config(
    key: str,
    user: Annotated[User, Depends(require_permission("system:config"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    entry = await _get_config(db, key)
    services.audit.record(db, user.id, ENTITY_KIND, entry.id, "delete", before=snapshot(entry, AUDIT_FIELDS))
    await db.delete(entry)
    await db.commit()
    return {"message": "Config deleted successfully"}
