"""Tests for tenant administration endpoints.

Tests cover:
- Bootstrap, including production and shared-key gating
- Brokerages, offices and teams
- Users and memberships
- Presets (create, list, partial update)
"""

from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from listingflow.api import create_app
from listingflow.core.config import Environment, Settings
from listingflow.db import MemoryKeyValueStore
from listingflow.services.organization import bootstrap_allowed

BOOTSTRAP_BODY = {
    "brokerageName": "Coastal Homes",
    "officeName": "Main",
    "adminName": "Sam Admin",
    "adminEmail": "sam@coastal.test",
}


async def _client_for(settings: Settings) -> AsyncClient:
    app = create_app(settings, kv=MemoryKeyValueStore())
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestBootstrap:
    """Tests for POST /api/bootstrap."""

    async def test_bootstrap_creates_tenant(self, bootstrapped):
        assert bootstrapped["brokerage"]["name"] == "Harbour Realty"
        assert bootstrapped["office"]["brokerageId"] == bootstrapped["brokerage"]["id"]
        assert bootstrapped["team"]["officeId"] == bootstrapped["office"]["id"]
        assert bootstrapped["adminUser"]["email"] == "grace@harbour.test"
        assert bootstrapped["membership"]["role"] == "BrokerageAdmin"
        assert bootstrapped["membership"]["scopeType"] == "brokerage"
        assert bootstrapped["actorHeaders"] == {
            "X-LF-User-Id": bootstrapped["adminUser"]["id"],
            "X-LF-Role": "BrokerageAdmin",
            "X-LF-Brokerage-Id": bootstrapped["brokerage"]["id"],
            "X-LF-Office-Id": bootstrapped["office"]["id"],
            "X-LF-Team-Id": bootstrapped["team"]["id"],
        }

    async def test_bootstrap_without_team(self, api_client: AsyncClient):
        response = await api_client.post("/api/bootstrap", json=BOOTSTRAP_BODY)
        data = response.json()["data"]
        assert data["team"] is None
        assert "X-LF-Team-Id" not in data["actorHeaders"]

    async def test_bootstrap_writes_audit_events(self, api_client: AsyncClient, admin_headers):
        response = await api_client.get("/api/audit-events", headers=admin_headers)
        types = [e["eventType"] for e in response.json()["data"]["events"]]
        assert types == ["MEMBERSHIP_CHANGED", "USER_INVITED"]

    async def test_bootstrap_requires_fields(self, api_client: AsyncClient):
        response = await api_client.post("/api/bootstrap", json={"brokerageName": "Solo"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_FAILED"

    async def test_disabled_in_production_without_key(self):
        client = await _client_for(Settings(environment=Environment.PRODUCTION))
        async with client:
            response = await client.post("/api/bootstrap", json=BOOTSTRAP_BODY)
        assert response.status_code == 403
        assert response.json()["error"] == {
            "code": "FORBIDDEN",
            "message": "Bootstrap is disabled",
            "details": {},
        }

    @pytest.mark.parametrize(
        ("provided", "expected_status"),
        [(None, 403), ("wrong-key", 403), ("s3cret-key", 200)],
    )
    async def test_shared_key(self, provided, expected_status):
        settings = Settings(environment=Environment.PRODUCTION, bootstrap_key="s3cret-key")
        headers = {"X-LF-Bootstrap-Key": provided} if provided else {}
        client = await _client_for(settings)
        async with client:
            response = await client.post("/api/bootstrap", json=BOOTSTRAP_BODY, headers=headers)
        assert response.status_code == expected_status

    def test_gate_follows_bootstrap_enabled(self):
        settings = Settings(environment=Environment.DEV, bootstrap_key="s3cret-key")
        assert bootstrap_allowed(settings, "s3cret-key") is True

        closed = MagicMock(bootstrap_enabled=False, bootstrap_key=settings.bootstrap_key)
        assert bootstrap_allowed(closed, "s3cret-key") is False


class TestOfficesAndTeams:
    """Tests for brokerage, office and team endpoints."""

    async def test_get_brokerage(self, api_client: AsyncClient, bootstrapped, admin_headers):
        response = await api_client.get("/api/brokerages", headers=admin_headers)
        data = response.json()["data"]
        assert data["brokerage"]["id"] == bootstrapped["brokerage"]["id"]
        assert "brokerages" not in data

        every = await api_client.get(
            "/api/brokerages", params={"all": "true"}, headers=admin_headers
        )
        assert [b["id"] for b in every.json()["data"]["brokerages"]] == [
            bootstrapped["brokerage"]["id"]
        ]

    async def test_create_and_list_offices(self, api_client: AsyncClient, admin_headers):
        created = await api_client.post(
            "/api/offices", json={"name": "  South  "}, headers=admin_headers
        )
        assert created.status_code == 200
        assert created.json()["data"]["office"]["name"] == "South"

        listed = await api_client.get("/api/offices", headers=admin_headers)
        assert sorted(o["name"] for o in listed.json()["data"]["offices"]) == ["North", "South"]

    async def test_office_admin_cannot_create_office(
        self, api_client: AsyncClient, bootstrapped, make_headers
    ):
        headers = make_headers(
            "usr_oa", "OfficeAdmin", bootstrapped["brokerage"]["id"], bootstrapped["office"]["id"]
        )
        response = await api_client.post("/api/offices", json={"name": "West"}, headers=headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_office_name_required(self, api_client: AsyncClient, admin_headers):
        response = await api_client.post("/api/offices", json={"name": " "}, headers=admin_headers)
        assert response.status_code == 400

    async def test_teams(self, api_client: AsyncClient, bootstrapped, admin_headers):
        office_id = bootstrapped["office"]["id"]
        created = await api_client.post(
            "/api/teams", json={"officeId": office_id, "name": "Bravo"}, headers=admin_headers
        )
        assert created.status_code == 200
        assert created.json()["data"]["team"]["officeId"] == office_id

        listed = await api_client.get(
            "/api/teams", params={"officeId": office_id}, headers=admin_headers
        )
        assert sorted(t["name"] for t in listed.json()["data"]["teams"]) == ["Alpha", "Bravo"]

    async def test_teams_require_office_id(self, api_client: AsyncClient, admin_headers):
        response = await api_client.get("/api/teams", headers=admin_headers)
        assert response.status_code == 400

    async def test_office_admin_limited_to_own_office(
        self, api_client: AsyncClient, bootstrapped, admin_headers, make_headers
    ):
        other = await api_client.post("/api/offices", json={"name": "South"}, headers=admin_headers)
        other_id = other.json()["data"]["office"]["id"]
        headers = make_headers(
            "usr_oa", "OfficeAdmin", bootstrapped["brokerage"]["id"], bootstrapped["office"]["id"]
        )
        response = await api_client.post(
            "/api/teams", json={"officeId": other_id, "name": "Rogue"}, headers=headers
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "TENANT_SCOPE_VIOLATION"


class TestUsersAndMemberships:
    """Tests for user and membership endpoints."""

    async def test_create_user_without_membership(self, api_client: AsyncClient, admin_headers):
        response = await api_client.post(
            "/api/users",
            json={"email": " Lee@Harbour.test ", "name": "Lee"},
            headers=admin_headers,
        )
        data = response.json()["data"]
        assert data["user"]["email"] == "lee@harbour.test"
        assert data["membership"] is None

        users = await api_client.get("/api/users", headers=admin_headers)
        assert len(users.json()["data"]["users"]) == 2

    async def test_create_user_requires_name_and_email(self, api_client: AsyncClient, admin_headers):
        response = await api_client.post("/api/users", json={"name": "Lee"}, headers=admin_headers)
        assert response.status_code == 400

    async def test_agent_cannot_manage_users(
        self, api_client: AsyncClient, bootstrapped, make_headers
    ):
        headers = make_headers("usr_ag", "Agent", bootstrapped["brokerage"]["id"])
        response = await api_client.get("/api/users", headers=headers)
        assert response.status_code == 403

    async def test_brokerage_membership_drops_scope_ids(
        self, api_client: AsyncClient, bootstrapped, admin_headers
    ):
        user = await api_client.post(
            "/api/users", json={"email": "r@harbour.test", "name": "Rae"}, headers=admin_headers
        )
        response = await api_client.post(
            "/api/memberships",
            json={
                "userId": user.json()["data"]["user"]["id"],
                "role": "Reviewer",
                "scopeType": "brokerage",
                "officeId": bootstrapped["office"]["id"],
                "teamId": bootstrapped["team"]["id"],
            },
            headers=admin_headers,
        )
        membership = response.json()["data"]["membership"]
        assert membership["officeId"] is None
        assert membership["teamId"] is None

        listed = await api_client.get("/api/memberships", headers=admin_headers)
        assert len(listed.json()["data"]["memberships"]) == 2

    async def test_team_must_belong_to_office(
        self, api_client: AsyncClient, bootstrapped, admin_headers
    ):
        other = await api_client.post("/api/offices", json={"name": "South"}, headers=admin_headers)
        response = await api_client.post(
            "/api/users",
            json={
                "email": "t@harbour.test",
                "name": "Tia",
                "role": "Agent",
                "scopeType": "team",
                "officeId": other.json()["data"]["office"]["id"],
                "teamId": bootstrapped["team"]["id"],
            },
            headers=admin_headers,
        )
        assert response.status_code == 400
        users = await api_client.get("/api/users", headers=admin_headers)
        assert len(users.json()["data"]["users"]) == 1

    @pytest.mark.parametrize(
        ("body", "expected_status"),
        [
            ({"userId": "usr_missing", "role": "Agent", "scopeType": "brokerage"}, 404),
            ({"role": "Janitor", "scopeType": "brokerage"}, 400),
            ({"role": "Agent", "scopeType": "region"}, 400),
            ({"role": "Agent", "scopeType": "office"}, 400),
            ({"role": "Agent"}, 400),
        ],
    )
    async def test_membership_validation(
        self, api_client: AsyncClient, bootstrapped, admin_headers, body, expected_status
    ):
        body = {"userId": bootstrapped["adminUser"]["id"], **body}
        response = await api_client.post("/api/memberships", json=body, headers=admin_headers)
        assert response.status_code == expected_status


class TestPresets:
    """Tests for preset endpoints."""

    async def _create(self, api_client, headers, **overrides):
        body = {
            "name": "Evening listing",
            "scopeType": "brokerage",
            "allowedEditTypes": ["Twilight", "Sky Replacement", "Hovercraft", "Twilight"],
        }
        body.update(overrides)
        return await api_client.post("/api/presets", json=body, headers=headers)

    async def test_create_sanitizes_edit_types(
        self, api_client: AsyncClient, bootstrapped, admin_headers
    ):
        response = await self._create(
            api_client,
            admin_headers,
            scopeId=bootstrapped["brokerage"]["id"],
            defaultSettingsJson={"resolution": "4k"},
        )
        assert response.status_code == 200, response.text
        preset = response.json()["data"]["preset"]
        assert preset["allowedEditTypes"] == ["Twilight", "Sky Replacement"]
        assert preset["defaultSettings"] == {"resolution": "4k"}
        assert preset["officeId"] is None
        assert preset["createdBy"] == bootstrapped["adminUser"]["id"]

    async def test_create_needs_known_edit_type(
        self, api_client: AsyncClient, bootstrapped, admin_headers
    ):
        response = await self._create(
            api_client,
            admin_headers,
            scopeId=bootstrapped["brokerage"]["id"],
            allowedEditTypes=["Hovercraft"],
        )
        assert response.status_code == 400

    async def test_brokerage_scope_must_match_actor(self, api_client: AsyncClient, admin_headers):
        response = await self._create(api_client, admin_headers, scopeId="brg_other")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "TENANT_SCOPE_VIOLATION"

    async def test_team_scope_rejected(self, api_client: AsyncClient, bootstrapped, admin_headers):
        response = await self._create(
            api_client, admin_headers, scopeType="team", scopeId=bootstrapped["team"]["id"]
        )
        assert response.status_code == 400

    async def test_list_merges_office_presets(
        self, api_client: AsyncClient, bootstrapped, admin_headers, make_headers
    ):
        brokerage_id = bootstrapped["brokerage"]["id"]
        office_id = bootstrapped["office"]["id"]
        await self._create(api_client, admin_headers, scopeId=brokerage_id)
        await self._create(
            api_client, admin_headers, name="North only", scopeType="office", scopeId=office_id
        )
        await self._create(
            api_client, admin_headers, name="Retired", scopeId=brokerage_id, active=False
        )

        agent = make_headers("usr_ag", "Agent", brokerage_id, office_id)
        response = await api_client.get("/api/presets", headers=agent)
        names = sorted(p["name"] for p in response.json()["data"]["presets"])
        assert names == ["Evening listing", "North only"]

        everything = await api_client.get(
            "/api/presets", params={"includeInactive": "true"}, headers=agent
        )
        assert len(everything.json()["data"]["presets"]) == 3

    async def test_list_hides_other_office_presets(
        self, api_client: AsyncClient, bootstrapped, admin_headers, make_headers
    ):
        brokerage_id = bootstrapped["brokerage"]["id"]
        north_id = bootstrapped["office"]["id"]
        south = await api_client.post(
            "/api/offices", json={"name": "South"}, headers=admin_headers
        )
        south_id = south.json()["data"]["office"]["id"]

        await self._create(api_client, admin_headers, scopeId=brokerage_id)
        await self._create(
            api_client, admin_headers, name="North only", scopeType="office", scopeId=north_id
        )
        await self._create(
            api_client, admin_headers, name="South only", scopeType="office", scopeId=south_id
        )

        north_agent = make_headers("usr_north", "Agent", brokerage_id, north_id)
        response = await api_client.get("/api/presets", headers=north_agent)
        names = sorted(p["name"] for p in response.json()["data"]["presets"])
        assert names == ["Evening listing", "North only"]

        south_admin = make_headers("usr_south", "OfficeAdmin", brokerage_id, south_id)
        response = await api_client.get("/api/presets", headers=south_admin)
        names = sorted(p["name"] for p in response.json()["data"]["presets"])
        assert names == ["Evening listing", "South only"]

        unbound_admin = make_headers("usr_root", "BrokerageAdmin", brokerage_id)
        response = await api_client.get("/api/presets", headers=unbound_admin)
        assert len(response.json()["data"]["presets"]) == 3

    async def test_media_partner_cannot_list(
        self, api_client: AsyncClient, bootstrapped, make_headers
    ):
        headers = make_headers("usr_mp", "MediaPartner", bootstrapped["brokerage"]["id"])
        response = await api_client.get("/api/presets", headers=headers)
        assert response.status_code == 403

    async def test_patch_preset(self, api_client: AsyncClient, bootstrapped, admin_headers):
        created = await self._create(
            api_client, admin_headers, scopeId=bootstrapped["brokerage"]["id"]
        )
        preset_id = created.json()["data"]["preset"]["id"]

        response = await api_client.patch(
            "/api/presets",
            json={"presetId": preset_id, "approvalRequired": True, "name": "Dusk"},
            headers=admin_headers,
        )
        assert response.status_code == 200, response.text
        preset = response.json()["data"]["preset"]
        assert preset["name"] == "Dusk"
        assert preset["approvalRequired"] is True
        assert preset["allowedEditTypes"] == ["Twilight", "Sky Replacement"]

        audit = await api_client.get("/api/audit-events", headers=admin_headers)
        latest = audit.json()["data"]["events"][0]
        assert latest["eventType"] == "PRESET_UPDATED"
        assert latest["beforeSnapshot"]["name"] == "Evening listing"
        assert latest["afterSnapshot"]["name"] == "Dusk"

    async def test_patch_unknown_preset(self, api_client: AsyncClient, admin_headers):
        response = await api_client.patch(
            "/api/presets", json={"presetId": "preset_missing"}, headers=admin_headers
        )
        assert response.status_code == 404

    async def test_patch_rejects_blank_name(
        self, api_client: AsyncClient, bootstrapped, admin_headers
    ):
        created = await self._create(
            api_client, admin_headers, scopeId=bootstrapped["brokerage"]["id"]
        )
        response = await api_client.patch(
            "/api/presets",
            json={"presetId": created.json()["data"]["preset"]["id"], "name": "  "},
            headers=admin_headers,
        )
        assert response.status_code == 400
