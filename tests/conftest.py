"""Pytest configuration and shared fixtures.

Every test runs against the in-memory key/value store; no external
services are needed.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass

import pytest
from httpx import ASGITransport, AsyncClient

from listingflow.api import create_app
from listingflow.core.config import Environment, Settings
from listingflow.db import EntityStore, MemoryKeyValueStore
from listingflow.db.models import (
    Brokerage,
    EditLabel,
    Office,
    Preset,
    Role,
    ScopeType,
    Team,
    User,
)
from listingflow.services.authz import ActorContext
from listingflow.services.jobs import AssetInput, JobService, NewJob


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Drop LISTINGFLOW_* variables so settings start from defaults."""
    for key in list(os.environ):
        if key.startswith("LISTINGFLOW_"):
            monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def kv() -> MemoryKeyValueStore:
    """Fresh in-memory key/value backend."""
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv: MemoryKeyValueStore) -> EntityStore:
    return EntityStore(kv, key_prefix="test")


# ---------------------------------------------------------------------------
# Tenant fixtures (data builders for a two-office brokerage)
# ---------------------------------------------------------------------------
@dataclass
class Tenant:
    """A seeded brokerage: offices A and B, one team and one agent in each."""

    brokerage: Brokerage
    office_a: Office
    office_b: Office
    team_a: Team
    team_b: Team
    agent_a: User
    agent_b: User
    review_preset: Preset
    direct_preset: Preset

    def actor(
        self,
        role: Role,
        *,
        user_id: str = "usr_actor",
        office_id: str | None = None,
        team_id: str | None = None,
        brokerage_id: str | None = None,
    ) -> ActorContext:
        return ActorContext(
            user_id=user_id,
            role=role,
            brokerage_id=brokerage_id or self.brokerage.id,
            office_id=office_id,
            team_id=team_id,
            request_id="req-test",
        )

    @property
    def admin(self) -> ActorContext:
        return self.actor(Role.BROKERAGE_ADMIN, user_id="usr_admin")

    @property
    def agent(self) -> ActorContext:
        return self.actor(
            Role.AGENT,
            user_id=self.agent_a.id,
            office_id=self.office_a.id,
            team_id=self.team_a.id,
        )

    @property
    def reviewer(self) -> ActorContext:
        return self.actor(Role.REVIEWER, user_id="usr_reviewer", office_id=self.office_a.id)

    @property
    def partner(self) -> ActorContext:
        return self.actor(Role.MEDIA_PARTNER, user_id="usr_partner", office_id=self.office_a.id)

    @property
    def office_admin(self) -> ActorContext:
        return self.actor(Role.OFFICE_ADMIN, user_id="usr_office_admin", office_id=self.office_a.id)

    def new_job(self, preset: Preset | None = None, **overrides) -> NewJob:
        """Job request from agent A in office A / team A."""
        fields = {
            "property_address": "12 Harbour View Rd",
            "selected_preset_id": (preset or self.review_preset).id,
            "requested_edit_categories": [EditLabel.VIRTUAL_STAGING.value],
            "office_id": self.office_a.id,
            "team_id": self.team_a.id,
            "agent_user_id": self.agent_a.id,
            "assets": [AssetInput(url="https://cdn.example/raw/living.jpg", name="living.jpg")],
        }
        fields.update(overrides)
        return NewJob(**fields)


@pytest.fixture
async def tenant(store: EntityStore) -> Tenant:
    brokerage = await store.add_brokerage(Brokerage(id="brg_1", name="Harbour Realty"))
    office_a = await store.add_office(Office(id="ofc_a", brokerage_id=brokerage.id, name="North"))
    office_b = await store.add_office(Office(id="ofc_b", brokerage_id=brokerage.id, name="South"))
    team_a = await store.add_team(
        Team(id="team_a", brokerage_id=brokerage.id, office_id=office_a.id, name="Alpha")
    )
    team_b = await store.add_team(
        Team(id="team_b", brokerage_id=brokerage.id, office_id=office_b.id, name="Bravo")
    )
    agent_a = await store.add_user(
        User(id="usr_agent_a", brokerage_id=brokerage.id, email="a@harbour.test", name="Ada")
    )
    agent_b = await store.add_user(
        User(id="usr_agent_b", brokerage_id=brokerage.id, email="b@harbour.test", name="Ben")
    )
    labels = [EditLabel.VIRTUAL_STAGING, EditLabel.TWILIGHT, EditLabel.DECLUTTER]
    review_preset = await store.add_preset(
        Preset(
            id="preset_review",
            name="Staging with review",
            scope_type=ScopeType.BROKERAGE,
            scope_id=brokerage.id,
            brokerage_id=brokerage.id,
            allowed_edit_types=labels,
            approval_required=True,
            disclosure_required_default=True,
        )
    )
    direct_preset = await store.add_preset(
        Preset(
            id="preset_direct",
            name="Straight to processing",
            scope_type=ScopeType.BROKERAGE,
            scope_id=brokerage.id,
            brokerage_id=brokerage.id,
            allowed_edit_types=labels,
            approval_required=False,
        )
    )
    return Tenant(
        brokerage=brokerage,
        office_a=office_a,
        office_b=office_b,
        team_a=team_a,
        team_b=team_b,
        agent_a=agent_a,
        agent_b=agent_b,
        review_preset=review_preset,
        direct_preset=direct_preset,
    )


@pytest.fixture
def job_service(store: EntityStore) -> JobService:
    return JobService(store)


# ---------------------------------------------------------------------------
# API client fixtures (in-process testing via ASGI transport)
# ---------------------------------------------------------------------------
@pytest.fixture
def settings() -> Settings:
    return Settings(environment=Environment.DEV, bootstrap_key=None)


@pytest.fixture
def test_app(settings: Settings, kv: MemoryKeyValueStore):
    """Fresh application backed by the in-memory store."""
    return create_app(settings, kv=kv)


@pytest.fixture
async def api_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def bootstrapped(api_client: AsyncClient) -> dict:
    """Bootstrap a brokerage through the API and return the response data."""
    response = await api_client.post(
        "/api/bootstrap",
        json={
            "brokerageName": "Harbour Realty",
            "officeName": "North",
            "teamName": "Alpha",
            "adminName": "Grace Admin",
            "adminEmail": "Grace@Harbour.test",
        },
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


@pytest.fixture
def admin_headers(bootstrapped: dict) -> dict[str, str]:
    return dict(bootstrapped["actorHeaders"])


def _actor_headers(
    user_id: str,
    role: str,
    brokerage_id: str,
    office_id: str | None = None,
    team_id: str | None = None,
) -> dict[str, str]:
    """Identity headers for an arbitrary actor."""
    headers = {
        "X-LF-User-Id": user_id,
        "X-LF-Role": role,
        "X-LF-Brokerage-Id": brokerage_id,
    }
    if office_id:
        headers["X-LF-Office-Id"] = office_id
    if team_id:
        headers["X-LF-Team-Id"] = team_id
    return headers


@pytest.fixture
def make_headers():
    """Factory for identity headers: make_headers(user_id, role, brokerage_id, office_id, team_id)."""
    return _actor_headers
