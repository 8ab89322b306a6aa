"""
Asset feature routes.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock
from app.core.database.engine import get_db
from app.core.errors import InvalidRequest, ProjectExpired, ProjectInactive, Unauthorized
from app.core.services import Services, get_services
from app.features.assets.models import Asset
from app.features.assets.schemas import AssetCreate, AssetListResponse, AssetResponse, AssetUpdate
from app.features.audit.recorder import snapshot
from app.features.permissions.dependencies import require_permission
from app.features.permissions.models import RoleCode
from app.features.permissions.scope import EntityKind, access_scope
from app.features.projects.models import Project, ProjectStatus
from app.features.users.models import User
from app.features.vulnerabilities.models import Vulnerability


router = APIRouter(tags=["assets"])

AUDIT_FIELDS = ("name", "type", "domain", "ip", "importance", "status", "project_id")


async def _check_target_project(db: AsyncSession, user: User, project_id: str, clock: Clock) -> Project:
    """The user must take part in the project, and it must accept submissions."""
    project = await access_scope.get_visible(db, user, EntityKind.PROJECT, project_id)
    if user.role != RoleCode.SUPER_ADMIN and not project.has_access(user.id):
        raise Unauthorized("asset:create", "Only project members can add assets to this project")
    if project.status != ProjectStatus.ACTIVE:
        raise ProjectInactive(project.id, project.status.value)
    if project.is_expired(clock.now()):
        raise ProjectExpired(project.id)
    return project


def _asset_values(data: dict) -> dict:
    if data.get("ip") is not None:
        data["ip"] = str(data["ip"])
    return data


@router.post("/", response_model=AssetResponse, status_code=status.HTTP_201_CREATED)
async def create_asset(
    asset_data: AssetCreate,
    user: Annotated[User, Depends(require_permission("asset:create"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Create an asset, optionally inside a project."""
    if asset_data.project_id:
        await _check_target_project(db, user, asset_data.project_id, services.clock)

    asset = Asset(**_asset_values(asset_data.model_dump()), created_by=user.id)
    db.add(asset)
    await db.flush()
    services.audit.record(
        db, user.id, EntityKind.ASSET.value, asset.id, "create",
        after=snapshot(asset, AUDIT_FIELDS), project_id=asset.project_id,
    )
    await db.commit()
    return asset


@router.get("/", response_model=AssetListResponse)
async def list_assets(
    user: Annotated[User, Depends(require_permission("asset:view"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    project_id: Optional[str] = None,
    keyword: Optional[str] = None,
    type: Optional[str] = None,
    importance: Optional[str] = None,
    skip: int = 0,
    limit: int = 20
):
    """List assets visible to the current user."""
    stmt = access_scope.select_visible(user, EntityKind.ASSET, project_id)
    if keyword:
        pattern = f"%{keyword}%"
        stmt = stmt.where(or_(Asset.name.ilike(pattern), Asset.domain.ilike(pattern), Asset.ip.ilike(pattern)))
    if type:
        stmt = stmt.where(Asset.type == type)
    if importance:
        stmt = stmt.where(Asset.importance == importance)

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    result = await db.execute(stmt.order_by(Asset.created_at.desc(), Asset.id).offset(skip).limit(limit))

    return AssetListResponse(
        items=[AssetResponse.model_validate(asset) for asset in result.scalars().all()],
        total=total,
        page=(skip // limit) + 1 if limit > 0 else 1,
        page_size=limit,
        pages=(total + limit - 1) // limit if limit > 0 else 0,
    )


@router.get("/{asset_id}", response_model=AssetResponse)
async def get_asset(
    asset_id: str,
    user: Annotated[User, Depends(require_permission("asset:view"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get an asset visible to the current user."""
    return await access_scope.get_visible(db, user, EntityKind.ASSET, asset_id)


@router.patch("/{asset_id}", response_model=AssetResponse)
async def update_asset(
    asset_id: str,
    update_data: AssetUpdate,
    user: Annotated[User, Depends(require_permission("asset:edit"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Update an asset visible to the current user."""
    asset = await access_scope.get_visible(db, user, EntityKind.ASSET, asset_id)
    changes = _asset_values(update_data.model_dump(exclude_unset=True))

    if changes.get("project_id") and changes["project_id"] != asset.project_id:
        await _check_target_project(db, user, changes["project_id"], services.clock)

    before = snapshot(asset, AUDIT_FIELDS)
    for field, value in changes.items():
        if value is not None or field in ("description", "project_id"):
            setattr(asset, field, value)

    services.audit.record(
        db, user.id, EntityKind.ASSET.value, asset.id, "update",
        before=before, after=snapshot(asset, AUDIT_FIELDS), project_id=asset.project_id,
    )
    await db.commit()
    await db.refresh(asset)
    return asset


@router.delete("/{asset_id}")
async def delete_asset(
    asset_id: str,
    user: Annotated[User, Depends(require_permission("asset:delete"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Delete an asset that no vulnerability refers to."""
    asset = await access_scope.get_visible(db, user, EntityKind.ASSET, asset_id)

    count = await db.execute(select(func.count(Vulnerability.id)).where(Vulnerability.asset_id == asset.id))
    if count.scalar():
        raise InvalidRequest("Asset is referenced by vulnerabilities and cannot be deleted")

    services.audit.record(
        db, user.id, EntityKind.ASSET.value, asset.id, "delete",
        before=snapshot(asset, AUDIT_FIELDS), project_id=asset.project_id,
    )
    await db.delete(asset)
    await db.commit()
    return {"message": "Asset deleted successfully"}
