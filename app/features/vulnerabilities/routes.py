"""
Vulnerability feature routes.

Status only changes through the lifecycle routes; each one delegates to
the LifecycleEngine, which performs its own permission, scope and state
checks.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import InvalidRequest
from app.core.services import Services, get_services
from app.features.audit.recorder import snapshot
from app.features.permissions.dependencies import require_permission
from app.features.permissions.scope import EntityKind, access_scope
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.vulnerabilities.lifecycle import load_timeline
from app.features.vulnerabilities.models import Severity, VulnStatus, Vulnerability
from app.features.vulnerabilities.schemas import (
    AssignRequest,
    AuditRequest,
    CommentRequest,
    IgnoreRequest,
    StatusChangeRequest,
    TimelineEntry,
    VulnerabilityCreate,
    VulnerabilityDetail,
    VulnerabilityListResponse,
    VulnerabilityResponse,
    VulnerabilityUpdate,
)


router = APIRouter(tags=["vulnerabilities"])

CurrentUser = Annotated[User, Depends(get_current_user)]
Session = Annotated[AsyncSession, Depends(get_db)]
AppServices = Annotated[Services, Depends(get_services)]

EDIT_FIELDS = ("title", "severity", "description", "vuln_type", "cve_id", "vuln_url", "fix_suggestion")


@router.post("/", response_model=VulnerabilityResponse, status_code=status.HTTP_201_CREATED)
async def submit_vulnerability(vuln_data: VulnerabilityCreate, user: CurrentUser, db: Session, services: AppServices):
    """Submit a vulnerability found on a project asset."""
    data = vuln_data.model_dump()
    return await services.lifecycle.submit(
        db,
        user,
        project_id=data.pop("project_id"),
        asset_id=data.pop("asset_id"),
        title=data.pop("title"),
        severity=data.pop("severity"),
        **data,
    )


@router.get("/", response_model=VulnerabilityListResponse)
async def list_vulnerabilities(
    user: Annotated[User, Depends(require_permission("vuln:view"))],
    db: Session,
    project_id: Optional[str] = None,
    vuln_status: Optional[VulnStatus] = None,
    severity: Optional[Severity] = None,
    assignee_id: Optional[str] = None,
    keyword: Optional[str] = None,
    skip: int = 0,
    limit: int = 20
):
    """List vulnerabilities visible to the current user."""
    stmt = access_scope.select_visible(user, EntityKind.VULNERABILITY, project_id)
    if vuln_status is not None:
        stmt = stmt.where(Vulnerability.status == vuln_status)
    if severity is not None:
        stmt = stmt.where(Vulnerability.severity == severity)
    if assignee_id:
        stmt = stmt.where(Vulnerability.assignee_id == assignee_id)
    if keyword:
        pattern = f"%{keyword}%"
        stmt = stmt.where(or_(Vulnerability.title.ilike(pattern), Vulnerability.cve_id.ilike(pattern)))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    result = await db.execute(
        stmt.order_by(Vulnerability.submitted_at.desc(), Vulnerability.id).offset(skip).limit(limit)
    )

    return VulnerabilityListResponse(
        items=[VulnerabilityResponse.model_validate(vuln) for vuln in result.scalars().all()],
        total=total,
        page=(skip // limit) + 1 if limit > 0 else 1,
        page_size=limit,
        pages=(total + limit - 1) // limit if limit > 0 else 0,
    )


@router.get("/{vuln_id}", response_model=VulnerabilityDetail)
async def get_vulnerability(
    vuln_id: str,
    user: Annotated[User, Depends(require_permission("vuln:view"))],
    db: Session
):
    """Get a vulnerability visible to the current user."""
    vuln = await access_scope.get_visible(db, user, EntityKind.VULNERABILITY, vuln_id)
    return VulnerabilityDetail.from_vuln(vuln)


@router.patch("/{vuln_id}", response_model=VulnerabilityResponse)
async def update_vulnerability(
    vuln_id: str,
    update_data: VulnerabilityUpdate,
    user: Annotated[User, Depends(require_permission("vuln:edit"))],
    db: Session,
    services: AppServices
):
    """Edit the descriptive fields of an open vulnerability."""
    vuln = await access_scope.get_visible(db, user, EntityKind.VULNERABILITY, vuln_id, for_update=True)
    if vuln.is_terminal:
        raise InvalidRequest(f"Vulnerability is {vuln.status.value} and can no longer be edited")

    before = snapshot(vuln, EDIT_FIELDS)
    for field, value in update_data.model_dump(exclude_unset=True).items():
        if value is not None or field not in ("title", "severity"):
            setattr(vuln, field, value)

    services.audit.record(
        db, user.id, EntityKind.VULNERABILITY.value, vuln.id, "update",
        before=before, after=snapshot(vuln, EDIT_FIELDS), project_id=vuln.project_id,
    )
    await db.commit()
    return vuln


@router.get("/{vuln_id}/timeline", response_model=list[TimelineEntry])
async def get_timeline(
    vuln_id: str,
    user: Annotated[User, Depends(require_permission("vuln:view"))],
    db: Session
):
    """Audit entries of a vulnerability, oldest first."""
    vuln = await access_scope.get_visible(db, user, EntityKind.VULNERABILITY, vuln_id)
    return await load_timeline(db, vuln)


# Lifecycle events
@router.post("/{vuln_id}/assign", response_model=VulnerabilityResponse)
async def assign_vulnerability(vuln_id: str, body: AssignRequest, user: CurrentUser, db: Session, services: AppServices):
    """Assign an unfixed vulnerability to a development engineer."""
    return await services.lifecycle.assign(db, user, vuln_id, body.assignee_id, body.fix_deadline, body.comment)


@router.post("/{vuln_id}/fix", response_model=VulnerabilityResponse)
async def fix_vulnerability(
    vuln_id: str, user: CurrentUser, db: Session, services: AppServices, body: Optional[CommentRequest] = None
):
    """Mark an assigned vulnerability as fixed."""
    return await services.lifecycle.fix(db, user, vuln_id, body.comment if body else None)


@router.post("/{vuln_id}/retest", response_model=VulnerabilityResponse)
async def retest_vulnerability(
    vuln_id: str, user: CurrentUser, db: Session, services: AppServices, body: Optional[CommentRequest] = None
):
    """Start retesting a fixed vulnerability."""
    return await services.lifecycle.retest(db, user, vuln_id, body.comment if body else None)


@router.post("/{vuln_id}/audit", response_model=VulnerabilityResponse)
async def audit_vulnerability(vuln_id: str, body: AuditRequest, user: CurrentUser, db: Session, services: AppServices):
    """Record the retest outcome: completed when passed, back to fixing otherwise."""
    return await services.lifecycle.audit(db, user, vuln_id, body.passed, body.comment)


@router.post("/{vuln_id}/ignore", response_model=VulnerabilityResponse)
async def ignore_vulnerability(vuln_id: str, body: IgnoreRequest, user: CurrentUser, db: Session, services: AppServices):
    """Ignore an open vulnerability, giving a reason."""
    return await services.lifecycle.ignore(db, user, vuln_id, body.reason)


@router.post("/{vuln_id}/status", response_model=VulnerabilityResponse)
async def change_vulnerability_status(
    vuln_id: str, body: StatusChangeRequest, user: CurrentUser, db: Session, services: AppServices
):
    """Override the status of a vulnerability."""
    return await services.lifecycle.change_status(db, user, vuln_id, body.status, body.comment)
