"""Tests for the AccessScope resolver across projects, assets and vulnerabilities."""
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from app.core.errors import NotFound
from app.features.assets.models import Asset
from app.features.permissions.scope import EntityKind, access_scope
from app.features.projects.models import Project
from app.features.vulnerabilities.models import Vulnerability

from conftest import make_asset, make_vuln


async def visible_ids(db, user, kind, project_id=None):
    result = await db.execute(access_scope.select_visible(user, kind, project_id))
    return {entity.id for entity in result.scalars().all()}


@pytest.fixture
async def data(db, world):
    """Vulnerabilities in both projects and an asset outside any project."""
    world.extra["vuln"] = await make_vuln(db, world.project, world.asset, world.sec_member)
    world.extra["other_vuln"] = await make_vuln(db, world.other_project, world.other_asset, world.outsider_sec)
    world.extra["loose_asset"] = await make_asset(db, "laptop-17", world.sec_member)
    return world


@pytest.mark.asyncio
async def test_super_admin_sees_everything(db, data):
    assert await visible_ids(db, data.admin, EntityKind.PROJECT) == {data.project.id, data.other_project.id}
    assert await visible_ids(db, data.admin, EntityKind.VULNERABILITY) == {
        data.extra["vuln"].id, data.extra["other_vuln"].id,
    }
    assert len(await visible_ids(db, data.admin, EntityKind.ASSET)) == 3


@pytest.mark.asyncio
async def test_security_engineer_sees_owned_member_and_created_rows(db, data):
    # owner
    assert await visible_ids(db, data.sec, EntityKind.PROJECT) == {data.project.id}
    assert await visible_ids(db, data.sec, EntityKind.VULNERABILITY) == {data.extra["vuln"].id}

    # member, plus the asset they created outside any project
    assert await visible_ids(db, data.sec_member, EntityKind.ASSET) == {
        data.asset.id, data.extra["loose_asset"].id,
    }


@pytest.mark.asyncio
async def test_dev_engineer_sees_only_project_rows(db, data):
    assert await visible_ids(db, data.dev, EntityKind.PROJECT) == {data.project.id}
    assert await visible_ids(db, data.dev, EntityKind.ASSET) == {data.asset.id}
    assert await visible_ids(db, data.dev, EntityKind.VULNERABILITY) == {data.extra["vuln"].id}


@pytest.mark.asyncio
async def test_dev_engineer_does_not_see_assets_they_created_outside_projects(db, data):
    own = await make_asset(db, "dev-sandbox", data.outsider_dev)
    assert own.id not in await visible_ids(db, data.outsider_dev, EntityKind.ASSET)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", list(EntityKind))
async def test_users_without_membership_see_nothing_of_a_project(db, data, kind):
    for user in (data.outsider_dev, data.outsider_sec):
        assert await visible_ids(db, user, kind, project_id=data.project.id) == set()


@pytest.mark.asyncio
async def test_project_filter_restricts_to_that_project(db, data):
    assert await visible_ids(db, data.sec, EntityKind.VULNERABILITY, project_id=data.project.id) == {
        data.extra["vuln"].id,
    }
    assert await visible_ids(db, data.admin, EntityKind.VULNERABILITY, project_id=data.other_project.id) == {
        data.extra["other_vuln"].id,
    }


@pytest.mark.asyncio
async def test_no_list_leaks_rows_outside_the_predicate(db, data):
    """Every listed row satisfies owner/member/creator rules for its kind."""
    users = (data.sec, data.sec_member, data.dev, data.dev2, data.outsider_sec, data.outsider_dev)
    for user in users:
        projects = (await db.execute(select(Project))).scalars().all()
        reachable = {p.id for p in projects if p.has_access(user.id)}

        for vuln_id in await visible_ids(db, user, EntityKind.VULNERABILITY):
            vuln = await db.get(Vulnerability, vuln_id)
            assert vuln.project_id in reachable or vuln.reporter_id == user.id

        for asset_id in await visible_ids(db, user, EntityKind.ASSET):
            asset = await db.get(Asset, asset_id)
            assert asset.project_id in reachable or asset.created_by == user.id


@pytest.mark.asyncio
async def test_unknown_role_matches_nothing(db, data):
    stranger = SimpleNamespace(id=data.sec.id, role="auditor", is_active=True)
    for kind in EntityKind:
        assert await visible_ids(db, stranger, kind) == set()
        assert await visible_ids(db, stranger, kind, project_id=data.project.id) == set()


@pytest.mark.asyncio
async def test_get_visible_hides_out_of_scope_records(db, data):
    vuln = await access_scope.get_visible(db, data.dev, EntityKind.VULNERABILITY, data.extra["vuln"].id)
    assert vuln.id == data.extra["vuln"].id

    with pytest.raises(NotFound):
        await access_scope.get_visible(db, data.dev, EntityKind.VULNERABILITY, data.extra["other_vuln"].id)
    with pytest.raises(NotFound):
        await access_scope.get_visible(db, data.outsider_sec, EntityKind.PROJECT, data.project.id)
    with pytest.raises(NotFound):
        await access_scope.get_visible(db, data.admin, EntityKind.ASSET, "01HZZZZZZZZZZZZZZZZZZZZZZZ")


@pytest.mark.asyncio
async def test_is_participant(db, data):
    assert await access_scope.is_participant(db, data.sec.id, data.project.id)
    assert await access_scope.is_participant(db, data.dev.id, data.project.id)
    assert not await access_scope.is_participant(db, data.outsider_dev.id, data.project.id)
