"""
HTTP adapter tests (in-process ASGI client against the SQLite-backed engine).
"""

from __future__ import annotations

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from slotguard.core.config import Settings
from slotguard.main import create_app

MANAGER, PRODUCER, HOST, VIEWER = 2, 3, 4, 5


@pytest.fixture
async def client(access):
    settings = Settings(_env_file=None, redis_url="", log_format="text", log_level="warning")
    app = create_app(engine=access, settings=settings)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def as_user(user_id: uuid.UUID) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


class TestSystem:
    async def test_health_check(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_metrics(self, client, org_id):
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "slotguard_cache_entries" in response.text
        assert "slotguard_uptime_seconds" in response.text

    async def test_api_root(self, client):
        response = await client.get("/api/v1/")
        assert response.status_code == 200
        assert response.json()["api"] == "v1"


class TestIdentity:
    async def test_missing_header(self, client, org_id):
        response = await client.get(f"/api/v1/orgs/{org_id}/me")
        assert response.status_code == 401

    async def test_malformed_header(self, client, org_id):
        response = await client.get(f"/api/v1/orgs/{org_id}/me", headers={"X-User-Id": "alice"})
        assert response.status_code == 401


class TestRoles:
    async def test_get_config_requires_roles_manage(self, client, org_id, add_member):
        viewer = await add_member(org_id, VIEWER)
        response = await client.get(f"/api/v1/orgs/{org_id}/roles", headers=as_user(viewer))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_get_config(self, client, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        response = await client.get(f"/api/v1/orgs/{org_id}/roles", headers=as_user(manager))
        assert response.status_code == 200
        data = response.json()
        assert data["org_id"] == str(org_id)
        assert len(data["permission_keys"]) == 18
        assert [s["slot"] for s in data["slots"]] == list(range(1, 11))

    async def test_patch_roles(self, client, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        body = {
            "updates": {
                "3": {"label": " Bookers "},
                "6": {"is_active": True, "overrides": [{"key": "notes:read", "allowed": True}]},
            }
        }
        response = await client.patch(
            f"/api/v1/orgs/{org_id}/roles", json=body, headers=as_user(manager)
        )
        assert response.status_code == 200
        slots = {s["slot"]: s for s in response.json()["slots"]}
        assert slots[3]["label"] == "Bookers"
        assert slots[6]["is_active"] is True
        assert slots[6]["effective"] == ["notes:read"]

    async def test_patch_with_bad_slot_writes_nothing(self, client, org_id, add_member, access):
        manager = await add_member(org_id, MANAGER)
        body = {"updates": {"3": {"label": "Bookers"}, "12": {"label": "Nope"}}}
        response = await client.patch(
            f"/api/v1/orgs/{org_id}/roles", json=body, headers=as_user(manager)
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SLOT"
        assert (await access.get_effective_role(org_id, 3)).label == "Role 3"

    async def test_patch_rejects_long_label(self, client, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        body = {"updates": {"3": {"label": "x" * 81}}}
        response = await client.patch(
            f"/api/v1/orgs/{org_id}/roles", json=body, headers=as_user(manager)
        )
        assert response.status_code == 422

    async def test_active_roles(self, client, org_id, add_member):
        viewer = await add_member(org_id, VIEWER)
        response = await client.get(
            f"/api/v1/orgs/{org_id}/roles/active", headers=as_user(viewer)
        )
        assert response.status_code == 200
        assert [r["slot"] for r in response.json()["data"]] == [1, 2, 3, 4, 5]

    async def test_active_roles_requires_membership(self, client, org_id):
        response = await client.get(
            f"/api/v1/orgs/{org_id}/roles/active", headers=as_user(uuid.uuid4())
        )
        assert response.status_code == 403


class TestAccess:
    async def test_me(self, client, org_id, add_member):
        host = await add_member(org_id, HOST)
        response = await client.get(f"/api/v1/orgs/{org_id}/me", headers=as_user(host))
        assert response.status_code == 200
        data = response.json()
        assert data["slot"] == HOST
        assert data["bookable_talent"] is True
        assert "directory:listed_internal" in data["permissions"]

    async def test_me_for_non_member(self, client, org_id):
        response = await client.get(f"/api/v1/orgs/{org_id}/me", headers=as_user(uuid.uuid4()))
        assert response.status_code == 200
        data = response.json()
        assert data["slot"] is None
        assert data["permissions"] == []

    async def test_permission_check(self, client, org_id, add_member):
        viewer = await add_member(org_id, VIEWER)
        url = f"/api/v1/orgs/{org_id}/permissions"
        allowed = await client.get(f"{url}/booking:view", headers=as_user(viewer))
        denied = await client.get(f"{url}/booking:delete", headers=as_user(viewer))
        unknown = await client.get(f"{url}/booking:teleport", headers=as_user(viewer))
        assert allowed.json() == {"key": "booking:view", "allowed": True}
        assert denied.json()["allowed"] is False
        assert unknown.json()["allowed"] is False


class TestMembers:
    async def test_sole_manager_self_demotion(self, client, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        url = f"/api/v1/orgs/{org_id}/members/{manager}"

        response = await client.patch(url, json={"slot": PRODUCER}, headers=as_user(manager))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "CONFIRM_REQUIRED"

        response = await client.patch(
            url, json={"slot": PRODUCER, "confirm": True}, headers=as_user(manager)
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "LAST_MANAGER"

    async def test_change_slot(self, client, org_id, add_member):
        admin = await add_member(org_id, 1)
        target = await add_member(org_id, VIEWER)
        response = await client.patch(
            f"/api/v1/orgs/{org_id}/members/{target}",
            json={"slot": HOST},
            headers=as_user(admin),
        )
        assert response.status_code == 200
        assert response.json()["slot"] == HOST
        assert response.json()["user_id"] == str(target)

    async def test_remove_member(self, client, org_id, add_member):
        admin = await add_member(org_id, 1)
        target = await add_member(org_id, VIEWER)
        url = f"/api/v1/orgs/{org_id}/members/{target}"

        response = await client.delete(url, headers=as_user(admin))
        assert response.status_code == 204

        response = await client.delete(url, headers=as_user(admin))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "MEMBERSHIP_NOT_FOUND"

    async def test_list_members_requires_settings_manage(self, client, org_id, add_member):
        viewer = await add_member(org_id, VIEWER)
        response = await client.get(f"/api/v1/orgs/{org_id}/members", headers=as_user(viewer))
        assert response.status_code == 403

    async def test_list_members(self, client, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        hosts = sorted([await add_member(org_id, HOST) for _ in range(3)])

        response = await client.get(
            f"/api/v1/orgs/{org_id}/members",
            params={"slot": HOST, "page": 2, "pageSize": 2},
            headers=as_user(manager),
        )
        assert response.status_code == 200
        body = response.json()
        assert (body["page"], body["page_size"], body["total"]) == (2, 2, 3)
        assert [item["user_id"] for item in body["items"]] == [str(hosts[2])]
        assert body["items"][0]["slot"] == HOST
        assert body["items"][0]["is_active"] is True

    async def test_list_members_bad_slot(self, client, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        response = await client.get(
            f"/api/v1/orgs/{org_id}/members", params={"slot": 0}, headers=as_user(manager)
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SLOT"
