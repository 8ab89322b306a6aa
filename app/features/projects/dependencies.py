"""
Project-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import Unauthorized
from app.features.permissions.dependencies import require_permission
from app.features.permissions.models import RoleCode
from app.features.permissions.scope import EntityKind, access_scope
from app.features.projects.models import Project
from app.features.users.models import User


async def get_visible_project(
    project_id: str,
    user: Annotated[User, Depends(require_permission("project:view"))],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Project:
    """
    Get a project the user may see.

    Raises:
        NotFound: if the project doesn't exist or is outside the user's scope
    """
    return await access_scope.get_visible(db, user, EntityKind.PROJECT, project_id)


async def get_editable_project(
    project_id: str,
    user: Annotated[User, Depends(require_permission("project:edit"))],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Project:
    """
    Get a project the user may edit: its owner or a super admin.

    Raises:
        NotFound: if the project is outside the user's scope
        Unauthorized: if the user can see but not edit the project
    """
    project = await access_scope.get_visible(db, user, EntityKind.PROJECT, project_id)
    if user.role != RoleCode.SUPER_ADMIN and project.owner_id != user.id:
        raise Unauthorized("project:edit", "Only the project owner can edit this project")
    return project
