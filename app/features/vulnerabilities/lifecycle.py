"""
Vulnerability lifecycle engine.

    unfixed -> fixing -> fixed -> retesting -> completed
                  ^                    |
                  +---- audit fail ----+

`ignored` is reachable from any non-terminal state; `completed` and
`ignored` are terminal. A holder of `vuln:change_status` may move a
record to any status directly; such overrides are audited separately.

Every operation checks, in order: the permission code, the actor's
scope (records outside it are NotFound), then the state and role
guard. Guards run before anything is modified, so a rejected event
leaves the record untouched. A successful event writes the record and
exactly one audit row in the same transaction, commits, and only then
publishes its notification events.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import Clock
from app.core.database.base import as_utc
from app.core.errors import (
    InvalidRequest,
    InvalidTransition,
    ProjectExpired,
    ProjectInactive,
    StorageError,
)
from app.features.assets.models import Asset
from app.features.audit.models import AuditLog
from app.features.audit.recorder import AuditRecorder, snapshot
from app.features.notifications.dispatcher import NotificationEvent, NotificationKind, NotificationPublisher
from app.features.permissions.gate import check
from app.features.permissions.models import RoleCode
from app.features.permissions.scope import EntityKind, access_scope
from app.features.projects.models import Project, ProjectStatus
from app.features.users.models import User
from app.features.vulnerabilities.models import (
    ASSIGNED_STATUSES,
    TERMINAL_STATUSES,
    Severity,
    VulnStatus,
    Vulnerability,
)
from app.utils import get_logger


log = get_logger(__name__)


# Fields captured in the before/after audit snapshots
SNAPSHOT_FIELDS = (
    "status",
    "assignee_id",
    "fix_deadline",
    "fixed_by_id",
    "fixed_at",
    "retest_at",
    "completed_at",
    "ignore_reason",
)

# Descriptive fields accepted at submission time
DETAIL_FIELDS = ("description", "vuln_type", "cve_id", "vuln_url", "fix_suggestion")


class LifecycleEngine:

    def __init__(self, recorder: AuditRecorder, publisher: NotificationPublisher, clock: Clock):
        self.recorder = recorder
        self.publisher = publisher
        self.clock = clock

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def submit(
        self,
        db: AsyncSession,
        actor: User,
        project_id: str,
        asset_id: str,
        title: str,
        severity: Severity,
        **details: Any,
    ) -> Vulnerability:
        """
        File a new vulnerability in `unfixed`.

        Raises:
            Unauthorized: actor lacks vuln:create
            NotFound: project outside the actor's scope
            InvalidTransition: actor is not a security engineer participating in the project
            ProjectInactive / ProjectExpired: project does not accept submissions
            InvalidRequest: asset does not belong to the project
        """
        check(actor, "vuln:create")
        project: Project = await access_scope.get_visible(db, actor, EntityKind.PROJECT, project_id)

        if not self._is_admin(actor):
            if actor.role != RoleCode.SECURITY_ENGINEER:
                raise InvalidTransition(None, "submit", actor.role.value, "only security engineers submit")
            if not project.has_access(actor.id):
                raise InvalidTransition(None, "submit", actor.role.value, "actor is not a project participant")

        now = self.clock.now()
        if project.status != ProjectStatus.ACTIVE:
            raise ProjectInactive(project.id, project.status.value)
        if project.is_expired(now):
            raise ProjectExpired(project.id)

        asset = await db.get(Asset, asset_id)
        if asset is None or asset.project_id != project.id:
            raise InvalidRequest("Asset does not belong to the project")

        unknown = set(details) - set(DETAIL_FIELDS)
        if unknown:
            raise InvalidRequest(f"Unknown fields: {', '.join(sorted(unknown))}")

        vuln = Vulnerability(
            title=title,
            severity=Severity(severity),
            status=VulnStatus.UNFIXED,
            project_id=project.id,
            asset_id=asset.id,
            reporter_id=actor.id,
            submitted_at=now,
            **details,
        )
        db.add(vuln)
        try:
            await db.flush()
        except SQLAlchemyError as e:
            await db.rollback()
            log.exception("Failed to insert vulnerability into project %s", project_id)
            raise StorageError() from e

        self.recorder.record(
            db,
            actor.id,
            EntityKind.VULNERABILITY.value,
            vuln.id,
            "submit",
            before=None,
            after=snapshot(vuln, SNAPSHOT_FIELDS),
            project_id=project.id,
            details={"title": title, "severity": vuln.severity.value, "asset_id": asset.id},
        )
        event = NotificationEvent(
            NotificationKind.VULN_SUBMITTED,
            project.owner_id,
            self._payload(vuln, actor, project=project),
        )
        await self._commit(db, vuln.id, "submit", actor.role.value)
        self._publish([event])
        log.info("Vulnerability %s submitted to project %s by %s", vuln.id, project.id, actor.id)
        return vuln

    async def assign(
        self,
        db: AsyncSession,
        actor: User,
        vuln_id: str,
        assignee_id: str,
        fix_deadline: Optional[datetime] = None,
        comment: Optional[str] = None,
    ) -> Vulnerability:
        """unfixed -> fixing. The assignee must be an active dev engineer in the project."""
        check(actor, "vuln:assign")
        vuln = await self._load(db, actor, vuln_id)
        self._guard(vuln, actor, "assign", {VulnStatus.UNFIXED}, RoleCode.SECURITY_ENGINEER)

        assignee = await db.get(User, assignee_id)
        if assignee is None or not assignee.is_active:
            raise InvalidRequest("Assignee not found or disabled")
        if assignee.role != RoleCode.DEV_ENGINEER:
            raise InvalidRequest("Assignee must be a development engineer")
        if not vuln.project.has_access(assignee.id):
            raise InvalidRequest("Assignee is not a member of the project")

        now = self.clock.now()
        if fix_deadline is not None:
            fix_deadline = as_utc(fix_deadline)
            if fix_deadline <= now:
                raise InvalidRequest("Fix deadline must be in the future")

        before = snapshot(vuln, SNAPSHOT_FIELDS)
        vuln.status = VulnStatus.FIXING
        vuln.assignee_id = assignee.id
        vuln.assignee = assignee
        vuln.fix_deadline = fix_deadline

        events = [NotificationEvent(
            NotificationKind.VULN_ASSIGNED,
            assignee.id,
            self._payload(vuln, actor, from_status=before["status"]),
        )]
        return await self._finish(db, actor, vuln, "assign", before, events, comment)

    async def fix(
        self,
        db: AsyncSession,
        actor: User,
        vuln_id: str,
        comment: Optional[str] = None,
    ) -> Vulnerability:
        """fixing -> fixed. Only the assignee (or a super admin) may mark the fix."""
        check(actor, "vuln:fix")
        vuln = await self._load(db, actor, vuln_id)
        self._guard(vuln, actor, "fix", {VulnStatus.FIXING}, RoleCode.DEV_ENGINEER)
        if not self._is_admin(actor) and vuln.assignee_id != actor.id:
            raise InvalidTransition(vuln.status.value, "fix", actor.role.value, "actor is not the assignee")

        before = snapshot(vuln, SNAPSHOT_FIELDS)
        vuln.status = VulnStatus.FIXED
        vuln.fixed_by_id = actor.id
        vuln.fixed_at = self.clock.now()

        events = [self._status_event(vuln.reporter_id, vuln, actor, before)]
        return await self._finish(db, actor, vuln, "fix", before, events, comment)

    async def retest(
        self,
        db: AsyncSession,
        actor: User,
        vuln_id: str,
        comment: Optional[str] = None,
    ) -> Vulnerability:
        """fixed -> retesting. The engineer starting the retest is expected to audit it."""
        check(actor, "vuln:retest")
        vuln = await self._load(db, actor, vuln_id)
        self._guard(vuln, actor, "retest", {VulnStatus.FIXED}, RoleCode.SECURITY_ENGINEER)

        before = snapshot(vuln, SNAPSHOT_FIELDS)
        vuln.status = VulnStatus.RETESTING
        vuln.retest_at = self.clock.now()

        events = [self._status_event(actor.id, vuln, actor, before)]
        return await self._finish(db, actor, vuln, "retest", before, events, comment)

    async def audit(
        self,
        db: AsyncSession,
        actor: User,
        vuln_id: str,
        passed: bool,
        comment: Optional[str] = None,
    ) -> Vulnerability:
        """
        retesting -> completed (pass) or retesting -> fixing (fail).

        A failed audit clears fixed_by/fixed_at so the record reads as
        not fixed until the assignee fixes it again.
        """
        event = "audit_pass" if passed else "audit_fail"
        check(actor, "vuln:retest")
        vuln = await self._load(db, actor, vuln_id)
        self._guard(vuln, actor, event, {VulnStatus.RETESTING}, RoleCode.SECURITY_ENGINEER)

        before = snapshot(vuln, SNAPSHOT_FIELDS)
        if passed:
            vuln.status = VulnStatus.COMPLETED
            vuln.completed_at = self.clock.now()
            recipients = self._distinct(vuln.reporter_id, vuln.assignee_id)
        else:
            vuln.status = VulnStatus.FIXING
            vuln.fixed_by_id = None
            vuln.fixed_by = None
            vuln.fixed_at = None
            recipients = self._distinct(vuln.assignee_id)

        events = [self._status_event(user_id, vuln, actor, before) for user_id in recipients]
        return await self._finish(db, actor, vuln, event, before, events, comment)

    async def ignore(
        self,
        db: AsyncSession,
        actor: User,
        vuln_id: str,
        reason: str,
    ) -> Vulnerability:
        """Any non-terminal status -> ignored. A reason is mandatory."""
        check(actor, "vuln:ignore")
        vuln = await self._load(db, actor, vuln_id)
        allowed = set(VulnStatus) - TERMINAL_STATUSES
        self._guard(vuln, actor, "ignore", allowed, RoleCode.SECURITY_ENGINEER)
        if not reason or not reason.strip():
            raise InvalidRequest("An ignore reason is required")

        before = snapshot(vuln, SNAPSHOT_FIELDS)
        vuln.status = VulnStatus.IGNORED
        vuln.ignore_reason = reason.strip()

        events = [self._status_event(vuln.project.owner_id, vuln, actor, before)]
        return await self._finish(db, actor, vuln, "ignore", before, events, reason.strip())

    async def change_status(
        self,
        db: AsyncSession,
        actor: User,
        vuln_id: str,
        target: VulnStatus | str,
        comment: Optional[str] = None,
    ) -> Vulnerability:
        """
        Override: move the record straight to `target`.

        The role guard is skipped but the target must be a known status,
        and the field invariants still hold: statuses that need an
        assignee require one, `fixed`/`retesting` carry fixed_by/fixed_at,
        and moving back before `fixed` clears them.
        """
        check(actor, "vuln:change_status")
        vuln = await self._load(db, actor, vuln_id)
        role = actor.role.value

        try:
            target = VulnStatus(target)
        except ValueError:
            raise InvalidTransition(vuln.status.value, "change_status", role, f"unknown status '{target}'")
        if target == vuln.status:
            raise InvalidTransition(vuln.status.value, "change_status", role, "record is already in that status")
        if target in ASSIGNED_STATUSES and vuln.assignee_id is None:
            raise InvalidTransition(vuln.status.value, "change_status", role, f"'{target.value}' requires an assignee")

        now = self.clock.now()
        before = snapshot(vuln, SNAPSHOT_FIELDS)
        vuln.status = target
        if target in (VulnStatus.FIXED, VulnStatus.RETESTING):
            if vuln.fixed_at is None:
                vuln.fixed_by_id = vuln.assignee_id
                vuln.fixed_at = now
        elif target in (VulnStatus.UNFIXED, VulnStatus.FIXING):
            vuln.fixed_by_id = None
            vuln.fixed_by = None
            vuln.fixed_at = None
        if target == VulnStatus.RETESTING:
            vuln.retest_at = now
        elif target == VulnStatus.COMPLETED:
            vuln.completed_at = now
        elif target == VulnStatus.IGNORED and comment:
            vuln.ignore_reason = comment

        events = [self._status_event(self._next_owner(vuln), vuln, actor, before)]
        return await self._finish(
            db, actor, vuln, "change_status", before, events, comment, override=True
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _is_admin(actor: User) -> bool:
        return actor.role == RoleCode.SUPER_ADMIN

    async def _load(self, db: AsyncSession, actor: User, vuln_id: str) -> Vulnerability:
        return await access_scope.get_visible(db, actor, EntityKind.VULNERABILITY, vuln_id, for_update=True)

    def _guard(
        self,
        vuln: Vulnerability,
        actor: User,
        event: str,
        allowed: set[VulnStatus],
        role: RoleCode,
    ) -> None:
        if vuln.status not in allowed:
            raise InvalidTransition(vuln.status.value, event, actor.role.value, "not allowed from this status")
        if not self._is_admin(actor) and actor.role != role:
            raise InvalidTransition(vuln.status.value, event, actor.role.value, f"requires role {role.value}")

    @staticmethod
    def _distinct(*user_ids: Optional[str]) -> List[str]:
        seen: List[str] = []
        for user_id in user_ids:
            if user_id and user_id not in seen:
                seen.append(user_id)
        return seen

    @staticmethod
    def _next_owner(vuln: Vulnerability) -> str:
        """The user expected to act on the record in its current status."""
        if vuln.status == VulnStatus.FIXING and vuln.assignee_id:
            return vuln.assignee_id
        if vuln.status in (VulnStatus.FIXED, VulnStatus.RETESTING, VulnStatus.COMPLETED):
            return vuln.reporter_id
        return vuln.project.owner_id

    def _payload(
        self,
        vuln: Vulnerability,
        actor: User,
        project: Optional[Project] = None,
        from_status: Optional[str] = None,
    ) -> Dict[str, Any]:
        project = project or vuln.project
        return {
            "vuln_id": vuln.id,
            "title": vuln.title,
            "severity": vuln.severity.value,
            "project_id": project.id,
            "project_name": project.name,
            "actor_id": actor.id,
            "actor_name": actor.display_name,
            "from_status": from_status,
            "to_status": vuln.status.value,
            "fix_deadline": vuln.fix_deadline.isoformat() if vuln.fix_deadline else None,
        }

    def _status_event(
        self,
        recipient_id: str,
        vuln: Vulnerability,
        actor: User,
        before: Dict[str, Any],
    ) -> NotificationEvent:
        return NotificationEvent(
            NotificationKind.VULN_STATUS_CHANGED,
            recipient_id,
            self._payload(vuln, actor, from_status=before["status"]),
        )

    async def _finish(
        self,
        db: AsyncSession,
        actor: User,
        vuln: Vulnerability,
        event: str,
        before: Dict[str, Any],
        events: List[NotificationEvent],
        comment: Optional[str] = None,
        override: bool = False,
    ) -> Vulnerability:
        details: Dict[str, Any] = {"event": event}
        if comment:
            details["comment"] = comment
        if override:
            details["override"] = True

        self.recorder.record(
            db,
            actor.id,
            EntityKind.VULNERABILITY.value,
            vuln.id,
            event if not override else "change_status",
            before=before,
            after=snapshot(vuln, SNAPSHOT_FIELDS),
            project_id=vuln.project_id,
            details=details,
        )
        await self._commit(db, vuln.id, event, actor.role.value, before["status"])
        self._publish(events)
        log.info(
            "Vulnerability %s %s -> %s (%s by %s)",
            vuln.id, before["status"], vuln.status.value, event, actor.id,
        )
        return vuln

    async def _commit(
        self,
        db: AsyncSession,
        vuln_id: str,
        event: str,
        role: str,
        state: Optional[str] = None,
    ) -> None:
        # Rollback expires every loaded instance, so only plain values are used below
        try:
            await db.commit()
        except StaleDataError:
            # Another transition committed first
            await db.rollback()
            raise InvalidTransition(state, event, role, "record was modified concurrently")
        except SQLAlchemyError as e:
            await db.rollback()
            log.exception("Failed to commit %s on vulnerability %s", event, vuln_id)
            raise StorageError() from e

    def _publish(self, events: List[NotificationEvent]) -> None:
        for event in events:
            self.publisher.publish(event)


async def load_timeline(db: AsyncSession, vuln: Vulnerability) -> List[AuditLog]:
    """Audit entries of one vulnerability, oldest first."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.resource_type == EntityKind.VULNERABILITY.value, AuditLog.resource_id == vuln.id)
        .order_by(AuditLog.created_at, AuditLog.id)
    )
    return list(result.scalars().all())
