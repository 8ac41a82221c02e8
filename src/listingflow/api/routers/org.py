"""Tenant administration router.

Handles bootstrap plus brokerages, offices, teams, users, memberships and
presets. Everything except bootstrap requires actor headers.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Header, Query, Request

from listingflow.api.dependencies import Actor, AppSettings, Organization
from listingflow.api.middleware.actor import current_request_id
from listingflow.api.responses import success
from listingflow.api.schemas.org import (
    BootstrapRequest,
    CreateMembershipRequest,
    CreateOfficeRequest,
    CreatePresetRequest,
    CreateTeamRequest,
    CreateUserRequest,
    UpdatePresetRequest,
)
from listingflow.core.errors import forbidden
from listingflow.services.organization import bootstrap_allowed

logger = logging.getLogger(__name__)

router = APIRouter(tags=["organization"])


# -----------------------------------------------------------------------------
# Bootstrap
# -----------------------------------------------------------------------------


@router.post("/bootstrap")
async def bootstrap(
    payload: BootstrapRequest,
    request: Request,
    settings: AppSettings,
    service: Organization,
    bootstrap_key: Annotated[str | None, Header(alias="X-LF-Bootstrap-Key")] = None,
) -> dict[str, Any]:
    """Create a brokerage with its first office, optional team and admin.

    Returns the actor headers to use as the new admin.
    """
    if not bootstrap_allowed(settings, bootstrap_key):
        logger.warning("Bootstrap rejected", extra={"path": request.url.path})
        raise forbidden("Bootstrap is disabled")

    result = await service.bootstrap(payload.to_input(), current_request_id(request))
    return success(
        current_request_id(request),
        brokerage=result.brokerage,
        office=result.office,
        team=result.team,
        adminUser=result.admin_user,
        membership=result.membership,
        actorHeaders=result.actor_headers,
    )


# -----------------------------------------------------------------------------
# Brokerages, offices, teams
# -----------------------------------------------------------------------------


@router.get("/brokerages")
async def get_brokerages(
    actor: Actor,
    service: Organization,
    include_all: Annotated[bool, Query(alias="all")] = False,
) -> dict[str, Any]:
    brokerage, brokerages = await service.get_brokerage(actor, include_all=include_all)
    if brokerages is None:
        return success(actor, brokerage=brokerage)
    return success(actor, brokerage=brokerage, brokerages=brokerages)


@router.get("/offices")
async def list_offices(actor: Actor, service: Organization) -> dict[str, Any]:
    return success(actor, offices=await service.list_offices(actor))


@router.post("/offices")
async def create_office(
    payload: CreateOfficeRequest, actor: Actor, service: Organization
) -> dict[str, Any]:
    return success(actor, office=await service.create_office(actor, payload.name))


@router.get("/teams")
async def list_teams(
    actor: Actor,
    service: Organization,
    office_id: Annotated[str | None, Query(alias="officeId")] = None,
) -> dict[str, Any]:
    return success(actor, teams=await service.list_teams(actor, office_id))


@router.post("/teams")
async def create_team(
    payload: CreateTeamRequest, actor: Actor, service: Organization
) -> dict[str, Any]:
    return success(actor, team=await service.create_team(actor, payload.office_id, payload.name))


# -----------------------------------------------------------------------------
# Users and memberships
# -----------------------------------------------------------------------------


@router.get("/users")
async def list_users(actor: Actor, service: Organization) -> dict[str, Any]:
    return success(actor, users=await service.list_users(actor))


@router.post("/users")
async def create_user(
    payload: CreateUserRequest, actor: Actor, service: Organization
) -> dict[str, Any]:
    user, membership = await service.create_user(
        actor, payload.email, payload.name, payload.membership()
    )
    return success(actor, user=user, membership=membership)


@router.get("/memberships")
async def list_memberships(actor: Actor, service: Organization) -> dict[str, Any]:
    return success(actor, memberships=await service.list_memberships(actor))


@router.post("/memberships")
async def create_membership(
    payload: CreateMembershipRequest, actor: Actor, service: Organization
) -> dict[str, Any]:
    membership = await service.create_membership(actor, payload.user_id, payload.to_input())
    return success(actor, membership=membership)


# -----------------------------------------------------------------------------
# Presets
# -----------------------------------------------------------------------------


@router.get("/presets")
async def list_presets(
    actor: Actor,
    service: Organization,
    include_inactive: Annotated[bool, Query(alias="includeInactive")] = False,
) -> dict[str, Any]:
    presets = await service.list_presets(actor, include_inactive=include_inactive)
    return success(actor, presets=presets)


@router.post("/presets")
async def create_preset(
    payload: CreatePresetRequest, actor: Actor, service: Organization
) -> dict[str, Any]:
    return success(actor, preset=await service.create_preset(actor, payload.to_input()))


@router.patch("/presets")
async def update_preset(
    payload: UpdatePresetRequest, actor: Actor, service: Organization
) -> dict[str, Any]:
    preset = await service.update_preset(actor, payload.preset_id, payload.to_changes())
    return success(actor, preset=preset)
