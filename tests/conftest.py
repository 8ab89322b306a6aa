"""Pytest configuration and shared fixtures for the VulnTrack backend."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.clock import FixedClock
from app.core.database.engine import build_engine, build_session_factory, get_db, init_db
from app.core.services import build_services
from app.features.assets.models import Asset
from app.features.audit.recorder import AuditRecorder
from app.features.notifications.dispatcher import NotificationEvent
from app.features.permissions.models import RoleCode
from app.features.projects.models import Project, ProjectMember, ProjectStatus
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.features.vulnerabilities.lifecycle import LifecycleEngine
from app.features.vulnerabilities.models import Severity, VulnStatus, Vulnerability


NOW = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)


class RecordingPublisher:
    """Collects published events instead of queueing them."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    def publish(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def for_user(self, user_id: str) -> List[NotificationEvent]:
        return [e for e in self.events if e.recipient_id == user_id]


class RecordingDispatcher:
    """Records sent events; raises while `fail` is set."""

    def __init__(self, fail: bool = False):
        self.sent: List[NotificationEvent] = []
        self.attempts = 0
        self.fail = fail

    async def send(self, event: NotificationEvent) -> None:
        self.attempts += 1
        if self.fail:
            raise ConnectionError("smtp unavailable")
        self.sent.append(event)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def lifecycle(publisher, clock):
    return LifecycleEngine(AuditRecorder(), publisher, clock)


async def make_user(db, username: str, role: RoleCode, is_active: bool = True) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        real_name=username.replace("_", " ").title(),
        role=role,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    return user


async def make_project(
    db,
    name: str,
    owner: User,
    members: tuple = (),
    status: ProjectStatus = ProjectStatus.ACTIVE,
    end_date: Optional[datetime] = None,
) -> Project:
    project = Project(
        name=name,
        owner_id=owner.id,
        created_by=owner.id,
        status=status,
        end_date=end_date,
        members=[ProjectMember(user_id=m.id, role=m.role) for m in members],
    )
    db.add(project)
    await db.commit()
    return project


async def make_asset(db, name: str, creator: User, project: Optional[Project] = None) -> Asset:
    asset = Asset(name=name, created_by=creator.id, project_id=project.id if project else None)
    db.add(asset)
    await db.commit()
    return asset


async def make_vuln(
    db,
    project: Project,
    asset: Asset,
    reporter: User,
    status: VulnStatus = VulnStatus.UNFIXED,
    assignee: Optional[User] = None,
    fix_deadline: Optional[datetime] = None,
    title: str = "SQL injection in login form",
) -> Vulnerability:
    """Insert a vulnerability directly in the given status, with consistent fields."""
    vuln = Vulnerability(
        title=title,
        severity=Severity.HIGH,
        status=status,
        project_id=project.id,
        asset_id=asset.id,
        reporter_id=reporter.id,
        assignee_id=assignee.id if assignee else None,
        submitted_at=NOW - timedelta(days=1),
        fix_deadline=fix_deadline,
    )
    if status in (VulnStatus.FIXED, VulnStatus.RETESTING, VulnStatus.COMPLETED) and assignee:
        vuln.fixed_by_id = assignee.id
        vuln.fixed_at = NOW - timedelta(hours=2)
    db.add(vuln)
    await db.commit()
    return vuln


@dataclass
class World:
    """
    One active project owned by `sec`, with `sec_member`, `dev` and `dev2`
    as members, plus an unrelated project owned by `outsider_sec`.
    """
    admin: User
    sec: User
    sec_member: User
    dev: User
    dev2: User
    outsider_sec: User
    outsider_dev: User
    project: Project
    other_project: Project
    asset: Asset
    other_asset: Asset
    extra: dict = field(default_factory=dict)


@pytest.fixture
async def world(db) -> World:
    admin = await make_user(db, "admin", RoleCode.SUPER_ADMIN)
    sec = await make_user(db, "sec_owner", RoleCode.SECURITY_ENGINEER)
    sec_member = await make_user(db, "sec_member", RoleCode.SECURITY_ENGINEER)
    dev = await make_user(db, "dev_one", RoleCode.DEV_ENGINEER)
    dev2 = await make_user(db, "dev_two", RoleCode.DEV_ENGINEER)
    outsider_sec = await make_user(db, "outsider_sec", RoleCode.SECURITY_ENGINEER)
    outsider_dev = await make_user(db, "outsider_dev", RoleCode.DEV_ENGINEER)

    project = await make_project(db, "Payments portal", sec, members=(sec_member, dev, dev2))
    other_project = await make_project(db, "Internal wiki", outsider_sec)
    asset = await make_asset(db, "payments-web-01", sec, project)
    other_asset = await make_asset(db, "wiki-01", outsider_sec, other_project)

    return World(
        admin=admin,
        sec=sec,
        sec_member=sec_member,
        dev=dev,
        dev2=dev2,
        outsider_sec=outsider_sec,
        outsider_dev=outsider_dev,
        project=project,
        other_project=other_project,
        asset=asset,
        other_asset=other_asset,
    )


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
async def services(session_factory, clock):
    services = build_services(session_factory, clock=clock)
    services.notifications.start()
    yield services
    await services.notifications.stop()


@pytest.fixture
async def client(session_factory, services):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
