"""Tests for the vulnerability lifecycle engine."""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.errors import (
    InvalidRequest,
    InvalidTransition,
    NotFound,
    ProjectExpired,
    ProjectInactive,
    StorageError,
    Unauthorized,
)
from app.features.audit.models import AuditLog
from app.features.audit.recorder import AuditRecorder
from app.features.notifications.dispatcher import NotificationKind
from app.features.projects.models import ProjectStatus
from app.features.users.models import User
from app.features.vulnerabilities.lifecycle import LifecycleEngine, load_timeline
from app.features.vulnerabilities.models import Severity, VulnStatus, Vulnerability

from conftest import NOW, make_project, make_asset, make_vuln


async def reload(session_factory, vuln_id) -> Vulnerability:
    async with session_factory() as session:
        return await session.get(Vulnerability, vuln_id)


async def audit_count(session_factory, vuln_id) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(AuditLog.id)).where(AuditLog.resource_id == vuln_id)
        )
        return result.scalar()


async def submit(lifecycle, db, world, actor=None):
    return await lifecycle.submit(
        db,
        actor or world.sec_member,
        project_id=world.project.id,
        asset_id=world.asset.id,
        title="Stored XSS in profile page",
        severity=Severity.HIGH,
        cve_id="CVE-2026-0001",
    )


# Scenarios

@pytest.mark.asyncio
async def test_member_submits_vulnerability(db, world, lifecycle, publisher, session_factory):
    vuln = await submit(lifecycle, db, world)

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.UNFIXED
    assert stored.reporter_id == world.sec_member.id
    assert stored.submitted_at is not None
    assert stored.cve_id == "CVE-2026-0001"
    assert await audit_count(session_factory, vuln.id) == 1

    assert [(e.kind, e.recipient_id) for e in publisher.events] == [
        (NotificationKind.VULN_SUBMITTED, world.sec.id),
    ]


@pytest.mark.asyncio
async def test_assign_to_project_developer(db, world, lifecycle, publisher, session_factory):
    vuln = await submit(lifecycle, db, world)
    publisher.events.clear()
    deadline = NOW + timedelta(days=5)

    await lifecycle.assign(db, world.sec_member, vuln.id, world.dev.id, deadline)

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.FIXING
    assert stored.assignee_id == world.dev.id
    assert stored.fix_deadline is not None
    assert len(publisher.events) == 1
    event = publisher.events[0]
    assert event.kind == NotificationKind.VULN_ASSIGNED
    assert event.recipient_id == world.dev.id
    assert event.payload["project_name"] == "Payments portal"


@pytest.mark.asyncio
async def test_other_developer_cannot_fix(db, world, lifecycle, publisher, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.FIXING, assignee=world.dev)

    with pytest.raises(InvalidTransition) as exc:
        await lifecycle.fix(db, world.dev2, vuln.id)
    assert exc.value.state == "fixing"
    assert exc.value.event == "fix"
    assert exc.value.role == "dev_engineer"

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.FIXING
    assert stored.fixed_by_id is None
    assert stored.fixed_at is None
    assert publisher.events == []
    assert await audit_count(session_factory, vuln.id) == 0


@pytest.mark.asyncio
async def test_fix_retest_and_failed_audit(db, world, lifecycle, publisher, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.FIXING, assignee=world.dev)

    await lifecycle.fix(db, world.dev, vuln.id, "escaped output")
    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.FIXED
    assert stored.fixed_by_id == world.dev.id
    assert stored.fixed_at is not None
    assert publisher.events[-1].recipient_id == world.sec.id

    await lifecycle.retest(db, world.sec_member, vuln.id)
    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.RETESTING
    assert stored.retest_at is not None
    assert publisher.events[-1].recipient_id == world.sec_member.id

    await lifecycle.audit(db, world.sec_member, vuln.id, passed=False, comment="still exploitable")
    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.FIXING
    assert stored.fixed_by_id is None
    assert stored.fixed_at is None
    assert stored.assignee_id == world.dev.id
    assert publisher.events[-1].recipient_id == world.dev.id

    assert len(publisher.events) == 3
    assert await audit_count(session_factory, vuln.id) == 3


@pytest.mark.asyncio
async def test_audit_pass_notifies_reporter_and_assignee(db, world, lifecycle, publisher, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.RETESTING, assignee=world.dev)

    await lifecycle.audit(db, world.sec_member, vuln.id, passed=True)

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.COMPLETED
    assert stored.completed_at is not None
    assert stored.fixed_by_id == world.dev.id
    assert {e.recipient_id for e in publisher.events} == {world.sec.id, world.dev.id}
    assert len(publisher.events) == 2


# Submission guards

@pytest.mark.asyncio
async def test_submit_requires_permission(db, world, lifecycle):
    with pytest.raises(Unauthorized):
        await submit(lifecycle, db, world, actor=world.dev)


@pytest.mark.asyncio
async def test_submit_into_foreign_project_is_not_found(db, world, lifecycle):
    with pytest.raises(NotFound):
        await submit(lifecycle, db, world, actor=world.outsider_sec)


@pytest.mark.asyncio
async def test_submit_rejected_for_expired_project(db, world, lifecycle, session_factory):
    expired = await make_project(db, "Old audit", world.sec, end_date=NOW - timedelta(days=1))
    asset = await make_asset(db, "old-host", world.sec, expired)

    with pytest.raises(ProjectExpired):
        await lifecycle.submit(
            db, world.sec, project_id=expired.id, asset_id=asset.id, title="Weak TLS", severity=Severity.LOW,
        )
    async with session_factory() as session:
        count = await session.execute(select(func.count(Vulnerability.id)).where(Vulnerability.project_id == expired.id))
        assert count.scalar() == 0


@pytest.mark.asyncio
async def test_submit_rejected_for_inactive_project(db, world, lifecycle):
    archived = await make_project(db, "Archived", world.sec, status=ProjectStatus.ARCHIVED)
    asset = await make_asset(db, "archived-host", world.sec, archived)

    with pytest.raises(ProjectInactive) as exc:
        await lifecycle.submit(
            db, world.sec, project_id=archived.id, asset_id=asset.id, title="Open redirect", severity="medium",
        )
    assert exc.value.project_status == "archived"


@pytest.mark.asyncio
async def test_submit_requires_asset_of_the_project(db, world, lifecycle):
    with pytest.raises(InvalidRequest):
        await lifecycle.submit(
            db, world.admin, project_id=world.project.id, asset_id=world.other_asset.id,
            title="Debug endpoint exposed", severity=Severity.MEDIUM,
        )


# Assignment guards

@pytest.mark.asyncio
async def test_assign_rejects_non_member_and_wrong_role(db, world, lifecycle, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec)

    with pytest.raises(InvalidRequest):
        await lifecycle.assign(db, world.sec, vuln.id, world.outsider_dev.id)
    with pytest.raises(InvalidRequest):
        await lifecycle.assign(db, world.sec, vuln.id, world.sec_member.id)
    with pytest.raises(InvalidRequest):
        await lifecycle.assign(db, world.sec, vuln.id, world.dev.id, NOW - timedelta(hours=1))

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.UNFIXED
    assert stored.assignee_id is None


@pytest.mark.asyncio
async def test_developer_cannot_assign(db, world, lifecycle):
    vuln = await make_vuln(db, world.project, world.asset, world.sec)
    with pytest.raises(Unauthorized):
        await lifecycle.assign(db, world.dev, vuln.id, world.dev2.id)


@pytest.mark.asyncio
async def test_super_admin_may_fix_for_the_assignee(db, world, lifecycle, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.FIXING, assignee=world.dev)

    await lifecycle.fix(db, world.admin, vuln.id)

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.FIXED
    assert stored.fixed_by_id == world.admin.id


# Ignore

@pytest.mark.asyncio
async def test_ignore_requires_reason_and_notifies_owner(db, world, lifecycle, publisher, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec_member, VulnStatus.FIXING, assignee=world.dev)

    with pytest.raises(InvalidRequest):
        await lifecycle.ignore(db, world.sec_member, vuln.id, "   ")

    await lifecycle.ignore(db, world.sec_member, vuln.id, "accepted risk")
    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.IGNORED
    assert stored.ignore_reason == "accepted risk"
    assert [e.recipient_id for e in publisher.events] == [world.sec.id]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [VulnStatus.COMPLETED, VulnStatus.IGNORED])
async def test_terminal_states_cannot_be_ignored(db, world, lifecycle, status):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, status, assignee=world.dev)
    with pytest.raises(InvalidTransition):
        await lifecycle.ignore(db, world.admin, vuln.id, "duplicate")


# Override

@pytest.mark.asyncio
async def test_override_is_audited_as_change_status(db, world, lifecycle, publisher, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.FIXING, assignee=world.dev)

    await lifecycle.change_status(db, world.sec, vuln.id, "retesting", comment="verified out of band")

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.RETESTING
    assert stored.fixed_by_id == world.dev.id
    assert stored.fixed_at is not None

    async with session_factory() as session:
        entries = await load_timeline(session, stored)
    assert [e.action for e in entries] == ["change_status"]
    assert entries[0].details["override"] is True
    assert entries[0].before["status"] == "fixing"
    assert entries[0].after["status"] == "retesting"
    assert publisher.events[-1].recipient_id == world.sec.id


@pytest.mark.asyncio
async def test_override_back_to_unfixed_clears_fix_fields(db, world, lifecycle, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.FIXED, assignee=world.dev)

    await lifecycle.change_status(db, world.admin, vuln.id, VulnStatus.UNFIXED)

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.UNFIXED
    assert stored.fixed_by_id is None
    assert stored.fixed_at is None


@pytest.mark.asyncio
async def test_override_guards(db, world, lifecycle):
    vuln = await make_vuln(db, world.project, world.asset, world.sec)

    with pytest.raises(InvalidTransition):
        await lifecycle.change_status(db, world.sec, vuln.id, "reopened")
    with pytest.raises(InvalidTransition):
        await lifecycle.change_status(db, world.sec, vuln.id, VulnStatus.UNFIXED)
    # fixing needs an assignee
    with pytest.raises(InvalidTransition):
        await lifecycle.change_status(db, world.sec, vuln.id, VulnStatus.FIXING)


# Properties

EVENTS = {
    "assign": {VulnStatus.UNFIXED},
    "fix": {VulnStatus.FIXING},
    "retest": {VulnStatus.FIXED},
    "audit_pass": {VulnStatus.RETESTING},
    "audit_fail": {VulnStatus.RETESTING},
    "ignore": {VulnStatus.UNFIXED, VulnStatus.FIXING, VulnStatus.FIXED, VulnStatus.RETESTING},
}

ILLEGAL = [
    (status, event)
    for event, allowed in EVENTS.items()
    for status in VulnStatus
    if status not in allowed
]


async def fire(lifecycle, db, world, event, vuln_id):
    actor = world.admin
    if event == "assign":
        return await lifecycle.assign(db, actor, vuln_id, world.dev2.id)
    if event == "fix":
        return await lifecycle.fix(db, actor, vuln_id)
    if event == "retest":
        return await lifecycle.retest(db, actor, vuln_id)
    if event == "audit_pass":
        return await lifecycle.audit(db, actor, vuln_id, passed=True)
    if event == "audit_fail":
        return await lifecycle.audit(db, actor, vuln_id, passed=False)
    return await lifecycle.ignore(db, actor, vuln_id, "not applicable")


@pytest.mark.asyncio
@pytest.mark.parametrize("status,event", ILLEGAL)
async def test_illegal_events_leave_record_unchanged(db, world, lifecycle, publisher, session_factory, status, event):
    assignee = None if status == VulnStatus.UNFIXED else world.dev
    vuln = await make_vuln(db, world.project, world.asset, world.sec, status, assignee=assignee)
    before = await reload(session_factory, vuln.id)

    with pytest.raises(InvalidTransition) as exc:
        await fire(lifecycle, db, world, event, vuln.id)
    assert exc.value.state == status.value

    after = await reload(session_factory, vuln.id)
    for field in ("status", "assignee_id", "fixed_by_id", "fixed_at", "version"):
        assert getattr(after, field) == getattr(before, field)
    assert publisher.events == []
    assert await audit_count(session_factory, vuln.id) == 0


@pytest.mark.asyncio
async def test_each_transition_writes_one_consistent_audit_row(db, world, lifecycle, session_factory):
    vuln = await submit(lifecycle, db, world)
    steps = [
        lambda: lifecycle.assign(db, world.sec_member, vuln.id, world.dev.id, NOW + timedelta(days=3)),
        lambda: lifecycle.fix(db, world.dev, vuln.id),
        lambda: lifecycle.retest(db, world.sec_member, vuln.id),
        lambda: lifecycle.audit(db, world.sec_member, vuln.id, passed=True),
    ]
    for n, step in enumerate(steps, start=2):
        await step()
        assert await audit_count(session_factory, vuln.id) == n

        stored = await reload(session_factory, vuln.id)
        async with session_factory() as session:
            latest = (await load_timeline(session, stored))[-1]
        assert latest.after["status"] == stored.status.value
        assert latest.after["assignee_id"] == stored.assignee_id
        assert latest.after["fixed_by_id"] == stored.fixed_by_id

    assert stored.status == VulnStatus.COMPLETED


@pytest.mark.asyncio
async def test_concurrent_transition_loses_with_invalid_transition(db, world, lifecycle, session_factory):
    vuln = await make_vuln(db, world.project, world.asset, world.sec)

    async with session_factory() as stale:
        # Load the record before the competing transition commits
        await stale.get(Vulnerability, vuln.id)
        actor = await stale.get(User, world.sec.id)

        async with session_factory() as winner:
            await lifecycle.assign(winner, world.sec, vuln.id, world.dev.id)

        with pytest.raises(InvalidTransition) as exc:
            await lifecycle.assign(stale, actor, vuln.id, world.dev2.id)
        assert exc.value.state == "unfixed"
        assert exc.value.role == "security_engineer"

    stored = await reload(session_factory, vuln.id)
    assert stored.status == VulnStatus.FIXING
    assert stored.assignee_id == world.dev.id
    assert await audit_count(session_factory, vuln.id) == 1


class BrokenAuditRecorder(AuditRecorder):
    """Writes an audit row that violates a NOT NULL constraint."""

    def record(self, db, actor_id, entity_kind, entity_id, action, **kwargs):
        return super().record(db, actor_id, entity_kind, entity_id, None, **kwargs)


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_the_whole_transition(db, world, publisher, clock, session_factory):
    lifecycle = LifecycleEngine(BrokenAuditRecorder(), publisher, clock)
    vuln = await make_vuln(db, world.project, world.asset, world.sec)
    vuln_id = vuln.id

    with pytest.raises(StorageError):
        await lifecycle.assign(db, world.sec, vuln_id, world.dev.id)

    stored = await reload(session_factory, vuln_id)
    assert stored.status == VulnStatus.UNFIXED
    assert stored.assignee_id is None
    assert publisher.events == []
