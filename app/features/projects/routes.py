"""
Project feature routes.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import InvalidRequest, NotFound
from app.core.services import Services, get_services
from app.features.assets.models import Asset
from app.features.audit.recorder import snapshot
from app.features.notifications.dispatcher import NotificationEvent, NotificationKind
from app.features.permissions.dependencies import require_permission
from app.features.permissions.scope import EntityKind, access_scope
from app.features.projects.dependencies import get_editable_project, get_visible_project
from app.features.projects.models import MEMBER_ROLES, Project, ProjectMember, ProjectStatus
from app.features.projects.schemas import (
    ProjectCreate,
    ProjectListResponse,
    ProjectMemberCreate,
    ProjectMemberResponse,
    ProjectResponse,
    ProjectUpdate,
)
from app.features.users.models import User
from app.features.vulnerabilities.models import Vulnerability
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["projects"])

AUDIT_FIELDS = ("name", "type", "priority", "owner_id", "start_date", "end_date", "status")


async def _get_active_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise InvalidRequest("User not found or disabled")
    return user


@router.post("/", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectCreate,
    user: Annotated[User, Depends(require_permission("project:create"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Create a project; the owner defaults to the creator."""
    owner_id = project_data.owner_id or user.id
    if owner_id != user.id:
        await _get_active_user(db, owner_id)

    project = Project(
        **project_data.model_dump(exclude={"owner_id"}),
        owner_id=owner_id,
        created_by=user.id,
        members=[],
    )
    db.add(project)
    await db.flush()
    services.audit.record(
        db, user.id, EntityKind.PROJECT.value, project.id, "create",
        after=snapshot(project, AUDIT_FIELDS), project_id=project.id,
    )
    await db.commit()
    log.info("Project %s created by %s", project.id, user.id)
    return ProjectResponse.from_project(project, services.clock.now())


@router.get("/", response_model=ProjectListResponse)
async def list_projects(
    user: Annotated[User, Depends(require_permission("project:view"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)],
    keyword: Optional[str] = None,
    project_status: Optional[ProjectStatus] = None,
    skip: int = 0,
    limit: int = 20
):
    """List the projects visible to the current user."""
    stmt = access_scope.select_visible(user, EntityKind.PROJECT)
    if keyword:
        pattern = f"%{keyword}%"
        stmt = stmt.where(or_(Project.name.ilike(pattern), Project.description.ilike(pattern)))
    if project_status is not None:
        stmt = stmt.where(Project.status == project_status)

    # Get total count
    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0

    result = await db.execute(stmt.order_by(Project.created_at.desc(), Project.id).offset(skip).limit(limit))
    now = services.clock.now()
    items = [ProjectResponse.from_project(project, now) for project in result.scalars().all()]

    return ProjectListResponse(
        items=items,
        total=total,
        page=(skip // limit) + 1 if limit > 0 else 1,
        page_size=limit,
        pages=(total + limit - 1) // limit if limit > 0 else 0,
    )


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project: Annotated[Project, Depends(get_visible_project)],
    services: Annotated[Services, Depends(get_services)]
):
    """Get a project visible to the current user."""
    return ProjectResponse.from_project(project, services.clock.now())


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    update_data: ProjectUpdate,
    project: Annotated[Project, Depends(get_editable_project)],
    user: Annotated[User, Depends(require_permission("project:edit"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Update a project (owner or super admin)."""
    changes = update_data.model_dump(exclude_unset=True)
    if changes.get("owner_id"):
        await _get_active_user(db, changes["owner_id"])

    before = snapshot(project, AUDIT_FIELDS)
    for field, value in changes.items():
        if value is not None or field in ("end_date", "start_date", "description"):
            setattr(project, field, value)
    if project.start_date and project.end_date and project.end_date < project.start_date:
        raise InvalidRequest("end_date must not be before start_date")

    services.audit.record(
        db, user.id, EntityKind.PROJECT.value, project.id, "update",
        before=before, after=snapshot(project, AUDIT_FIELDS), project_id=project.id,
    )
    await db.commit()
    return ProjectResponse.from_project(project, services.clock.now())


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    user: Annotated[User, Depends(require_permission("project:delete"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Delete a project that has no vulnerabilities and no assets."""
    project = await access_scope.get_visible(db, user, EntityKind.PROJECT, project_id)

    count = await db.execute(
        select(func.count(Vulnerability.id)).where(Vulnerability.project_id == project.id)
    )
    if count.scalar():
        raise InvalidRequest("Project still has vulnerabilities; archive it instead")

    count = await db.execute(select(func.count(Asset.id)).where(Asset.project_id == project.id))
    if count.scalar():
        raise InvalidRequest("Project still has assets; move or delete them first")

    services.audit.record(
        db, user.id, EntityKind.PROJECT.value, project.id, "delete",
        before=snapshot(project, AUDIT_FIELDS), project_id=project.id,
    )
    await db.delete(project)
    await db.commit()
    return {"message": "Project deleted successfully"}


# Member management
@router.get("/{project_id}/members", response_model=list[ProjectMemberResponse])
async def list_members(
    project: Annotated[Project, Depends(get_visible_project)]
):
    """List the members of a project."""
    return sorted(project.members, key=lambda member: member.joined_at)


@router.post("/{project_id}/members", response_model=ProjectMemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    member_data: ProjectMemberCreate,
    project: Annotated[Project, Depends(get_editable_project)],
    user: Annotated[User, Depends(require_permission("project:edit"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Add a user to a project.

    The role held in the project must be a member role and must match
    the user's system role.
    """
    if member_data.role not in MEMBER_ROLES:
        raise InvalidRequest("Project members must be security or development engineers")
    new_member = await _get_active_user(db, member_data.user_id)
    if new_member.role != member_data.role:
        raise InvalidRequest("Member role must match the user's system role")
    if project.has_member(new_member.id):
        raise InvalidRequest("User is already a member of this project")

    member = ProjectMember(user_id=new_member.id, role=member_data.role, joined_at=services.clock.now())
    project.members.append(member)
    await db.flush()

    services.audit.record(
        db, user.id, EntityKind.PROJECT.value, project.id, "add_member",
        project_id=project.id,
        details={"user_id": new_member.id, "role": member_data.role.value},
    )
    await db.commit()

    services.notifications.publish(NotificationEvent(
        NotificationKind.PROJECT_MEMBER_ADDED,
        new_member.id,
        {
            "project_id": project.id,
            "project_name": project.name,
            "role": member_data.role.value,
            "actor_id": user.id,
            "actor_name": user.display_name,
        },
    ))
    return member


@router.delete("/{project_id}/members/{user_id}")
async def remove_member(
    user_id: str,
    project: Annotated[Project, Depends(get_editable_project)],
    user: Annotated[User, Depends(require_permission("project:edit"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Remove a user from a project."""
    member = next((m for m in project.members if m.user_id == user_id), None)
    if member is None:
        raise NotFound("member", user_id)

    project.members.remove(member)
    services.audit.record(
        db, user.id, EntityKind.PROJECT.value, project.id, "remove_member",
        project_id=project.id,
        details={"user_id": user_id, "role": member.role.value},
    )
    await db.commit()
    return {"message": "Member removed successfully"}
