"""
Permission catalogue API routes.

The catalogue is read-only: role grants come from the static role table
and are mirrored into the roles/permissions tables at startup.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.dependencies import require_any_permission
from app.features.permissions.gate import ALL_CODES, allows, permissions_for
from app.features.permissions.models import Permission, Role, RoleCode
from app.features.permissions.schemas import (
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionResponse,
    RoleWithPermissions,
    UserPermissionsResponse,
)
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

# Anyone who manages users or configuration may browse the catalogue
can_browse = require_any_permission(["user:view", "system:config"])


@router.get("/", response_model=List[PermissionResponse])
async def list_permissions(
    module: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_browse)
):
    """List the permission catalogue, optionally for one module."""
    stmt = select(Permission).order_by(Permission.module, Permission.code)
    if module:
        stmt = stmt.where(Permission.module == module)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/roles", response_model=List[RoleWithPermissions])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_browse)
):
    """List system roles with their granted permissions."""
    result = await db.execute(select(Role).order_by(Role.code))
    return result.scalars().all()


@router.get("/me", response_model=UserPermissionsResponse)
async def get_my_permissions(
    current_user: User = Depends(get_current_user)
):
    """Get the permission codes the current user's role grants."""
    if current_user.role == RoleCode.SUPER_ADMIN:
        codes = sorted(ALL_CODES)
    else:
        codes = permissions_for(current_user.role)
    return UserPermissionsResponse(user_id=current_user.id, role=current_user.role, permissions=codes)


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    current_user: User = Depends(get_current_user)
):
    """Check whether the current user's role grants a permission code."""
    granted = allows(current_user.role, check_request.permission)
    reason = None
    if not granted:
        if check_request.permission not in ALL_CODES:
            reason = "Unknown permission code"
        else:
            reason = f"Role {current_user.role.value} does not grant {check_request.permission}"
    return PermissionCheckResponse(
        permission=check_request.permission,
        has_permission=granted,
        reason=reason,
    )
