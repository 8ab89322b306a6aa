"""HTTP tests against the FastAPI app, using the shared fixtures."""
from datetime import timedelta

import pytest

from app.features.permissions.models import RoleCode
from app.features.vulnerabilities.models import VulnStatus

from conftest import NOW, auth, make_asset, make_project, make_user, make_vuln


@pytest.mark.asyncio
async def test_root_and_health(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "online"

    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client):
    response = await client.get("/vulnerabilities/")
    assert response.status_code in (401, 403)

    response = await client.get("/vulnerabilities/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_disabled_user_is_rejected(client, db):
    user = await make_user(db, "former_dev", RoleCode.DEV_ENGINEER, is_active=False)
    response = await client.get("/users/me", headers=auth(user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_my_permissions(client, world):
    response = await client.get("/permissions/me", headers=auth(world.dev))
    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "dev_engineer"
    assert "vuln:fix" in data["permissions"]
    assert "vuln:create" not in data["permissions"]

    response = await client.post("/permissions/check", json={"permission": "vuln:assign"}, headers=auth(world.dev))
    assert response.json()["has_permission"] is False


@pytest.mark.asyncio
async def test_full_lifecycle_over_http(client, world, services):
    sec, dev = auth(world.sec_member), auth(world.dev)

    response = await client.post("/vulnerabilities/", json={
        "project_id": world.project.id,
        "asset_id": world.asset.id,
        "title": "IDOR on invoice download",
        "severity": "critical",
    }, headers=sec)
    assert response.status_code == 201
    vuln = response.json()
    assert vuln["status"] == "unfixed"

    deadline = (NOW + timedelta(days=3)).isoformat()
    response = await client.post(
        f"/vulnerabilities/{vuln['id']}/assign",
        json={"assignee_id": world.dev.id, "fix_deadline": deadline},
        headers=sec,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "fixing"

    response = await client.post(f"/vulnerabilities/{vuln['id']}/fix", json={"comment": "patched"}, headers=dev)
    assert response.json()["status"] == "fixed"

    response = await client.post(f"/vulnerabilities/{vuln['id']}/retest", headers=sec)
    assert response.json()["status"] == "retesting"

    response = await client.post(f"/vulnerabilities/{vuln['id']}/audit", json={"passed": True}, headers=sec)
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = await client.get(f"/vulnerabilities/{vuln['id']}/timeline", headers=sec)
    assert [entry["action"] for entry in response.json()] == ["submit", "assign", "fix", "retest", "audit_pass"]

    response = await client.get(f"/vulnerabilities/{vuln['id']}", headers=dev)
    detail = response.json()
    assert detail["project_name"] == "Payments portal"
    assert detail["assignee_name"] == world.dev.real_name
    assert detail["fixed_by_id"] == world.dev.id

    await services.notifications.drain()
    response = await client.get("/notifications/", headers=dev)
    kinds = [item["kind"] for item in response.json()["items"]]
    assert "vuln_assigned" in kinds
    assert response.json()["unread"] == len(kinds)


@pytest.mark.asyncio
async def test_invalid_transition_is_a_conflict(client, db, world):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.FIXING, assignee=world.dev)

    response = await client.post(f"/vulnerabilities/{vuln.id}/fix", headers=auth(world.dev2))

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "InvalidTransition"
    assert (body["state"], body["event"], body["role"]) == ("fixing", "fix", "dev_engineer")


@pytest.mark.asyncio
async def test_developer_cannot_submit(client, world):
    response = await client.post("/vulnerabilities/", json={
        "project_id": world.project.id,
        "asset_id": world.asset.id,
        "title": "Verbose errors",
        "severity": "low",
    }, headers=auth(world.dev))
    assert response.status_code == 403
    assert response.json()["error"] == "Unauthorized"


@pytest.mark.asyncio
async def test_invalid_payload_is_a_bad_request(client, world):
    response = await client.post("/vulnerabilities/", json={
        "project_id": world.project.id,
        "asset_id": world.asset.id,
        "title": "Verbose errors",
        "severity": "urgent",
    }, headers=auth(world.sec))
    assert response.status_code == 400
    assert "severity" in response.json()


@pytest.mark.asyncio
async def test_outsider_cannot_see_vulnerability(client, db, world):
    vuln = await make_vuln(db, world.project, world.asset, world.sec)
    outsider = auth(world.outsider_dev)

    response = await client.get(f"/vulnerabilities/{vuln.id}", headers=outsider)
    assert response.status_code == 404

    response = await client.get("/vulnerabilities/", params={"project_id": world.project.id}, headers=outsider)
    assert response.status_code == 200
    assert response.json()["total"] == 0

    response = await client.get(f"/projects/{world.project.id}", headers=outsider)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_terminal_vulnerability_cannot_be_edited(client, db, world):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.IGNORED)

    response = await client.patch(f"/vulnerabilities/{vuln.id}", json={"title": "Renamed"}, headers=auth(world.sec))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_admin_manages_projects_and_members(client, world, db, services):
    admin = auth(world.admin)
    response = await client.post("/projects/", json={
        "name": "Mobile banking",
        "owner_id": world.sec.id,
        "end_date": (NOW + timedelta(days=30)).isoformat(),
    }, headers=admin)
    assert response.status_code == 201
    project = response.json()
    assert project["owner_id"] == world.sec.id
    assert project["can_submit_vulns"] is True

    # role must match the user's system role
    response = await client.post(
        f"/projects/{project['id']}/members",
        json={"user_id": world.dev.id, "role": "security_engineer"},
        headers=admin,
    )
    assert response.status_code == 400

    response = await client.post(
        f"/projects/{project['id']}/members",
        json={"user_id": world.dev.id, "role": "dev_engineer"},
        headers=admin,
    )
    assert response.status_code == 201

    response = await client.get(f"/projects/{project['id']}/members", headers=auth(world.dev))
    assert [m["user_id"] for m in response.json()] == [world.dev.id]

    await services.notifications.drain()
    response = await client.get("/notifications/", headers=auth(world.dev))
    assert response.json()["items"][0]["kind"] == "project_member_added"

    response = await client.post(
        f"/projects/{project['id']}/members",
        json={"user_id": world.dev2.id, "role": "dev_engineer"},
        headers=auth(world.sec),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_mark_notifications_read(client, world, services):
    from app.features.notifications.dispatcher import NotificationEvent, NotificationKind

    for title in ("one", "two"):
        services.notifications.publish(NotificationEvent(
            NotificationKind.VULN_STATUS_CHANGED, world.dev.id, {"title": title},
        ))
    await services.notifications.drain()
    headers = auth(world.dev)

    items = (await client.get("/notifications/", headers=headers)).json()["items"]
    response = await client.post(f"/notifications/{items[0]['id']}/read", headers=headers)
    assert response.json()["is_read"] is True

    response = await client.post("/notifications/read-all", headers=headers)
    assert response.json() == {"updated": 1}

    response = await client.get("/notifications/", params={"unread_only": True}, headers=headers)
    assert response.json()["total"] == 0

    response = await client.post(f"/notifications/{items[0]['id']}/read", headers=auth(world.sec))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_dashboard_counts_are_scoped(client, db, world):
    await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.FIXING,
                    assignee=world.dev, fix_deadline=NOW - timedelta(days=1))
    await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.UNFIXED)
    await make_vuln(db, world.other_project, world.other_asset, world.outsider_sec)

    response = await client.get("/dashboard/", headers=auth(world.dev))
    data = response.json()
    assert data["projects"] == 1
    assert data["vulnerabilities"] == 2
    assert data["by_status"] == {"fixing": 1, "unfixed": 1}
    assert data["my_open_assignments"] == 1
    assert data["overdue"] == 1

    response = await client.get("/dashboard/", headers=auth(world.admin))
    assert response.json()["vulnerabilities"] == 3


@pytest.mark.asyncio
async def test_reminder_run_and_ledger(client, db, world):
    vuln = await make_vuln(db, world.project, world.asset, world.sec, VulnStatus.FIXING,
                           assignee=world.dev, fix_deadline=NOW + timedelta(days=1))
    admin = auth(world.admin)

    response = await client.post("/reminders/run", headers=auth(world.sec))
    assert response.status_code == 403

    response = await client.post("/reminders/run", headers=admin)
    assert response.status_code == 200
    assert response.json()["sent"] == 1

    response = await client.get("/reminders/", params={"vuln_id": vuln.id}, headers=admin)
    rows = response.json()
    assert len(rows) == 1
    assert rows[0]["days_left"] == 1
    assert rows[0]["status"] == "sent"

    response = await client.get("/reminders/scheduler", headers=admin)
    assert response.json()["last_run"]["sent"] == 1


@pytest.mark.asyncio
async def test_audit_log_requires_system_log(client, world):
    response = await client.get("/audit-logs/", headers=auth(world.sec))
    assert response.status_code == 403

    response = await client.get("/audit-logs/", headers=auth(world.admin))
    assert response.status_code == 200
    assert response.json()["page"] == 1


@pytest.mark.asyncio
async def test_project_with_assets_cannot_be_deleted(client, db, world):
    project = await make_project(db, "Vendor portal", world.sec)
    empty = await make_project(db, "Retired intranet", world.sec)
    await make_asset(db, "vendor-web-01", world.admin, project)
    admin = auth(world.admin)

    response = await client.delete(f"/projects/{project.id}", headers=admin)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidRequest"

    response = await client.get(f"/projects/{project.id}", headers=admin)
    assert response.status_code == 200

    response = await client.delete(f"/projects/{empty.id}", headers=admin)
    assert response.status_code == 200

    response = await client.get(f"/projects/{empty.id}", headers=admin)
    assert response.status_code == 404
