"""Audit trail and reporting router."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response

from listingflow.api.dependencies import Actor, Audit, Reports
from listingflow.api.responses import csv_response, success
from listingflow.services.reporting import ReportFilters

router = APIRouter(tags=["reports"])


def report_filters(
    created_from: Annotated[str | None, Query(alias="from")] = None,
    created_to: Annotated[str | None, Query(alias="to")] = None,
    office_id: Annotated[str | None, Query(alias="officeId")] = None,
    team_id: Annotated[str | None, Query(alias="teamId")] = None,
    status: Annotated[str | None, Query()] = None,
    edit_category: Annotated[str | None, Query(alias="editCategory")] = None,
    agent_user_id: Annotated[str | None, Query(alias="agentUserId")] = None,
) -> ReportFilters:
    """Report filters shared by the summary and the CSV exports."""
    return ReportFilters.from_query(
        created_from=created_from,
        created_to=created_to,
        office_id=office_id,
        team_id=team_id,
        status=status,
        edit_category=edit_category,
        agent_user_id=agent_user_id,
    )


Filters = Annotated[ReportFilters, Depends(report_filters)]


@router.get("/audit-events")
async def list_audit_events(
    actor: Actor,
    trail: Audit,
    limit: Annotated[int | None, Query()] = None,
) -> dict[str, Any]:
    """The brokerage's audit log, newest first."""
    events = await trail.list_for_actor(actor, limit)
    return success(actor, events=events)


@router.get("/reports")
async def report_summary(actor: Actor, service: Reports, filters: Filters) -> dict[str, Any]:
    """Totals and volume breakdowns over the filtered, role-scoped jobs."""
    return success(actor, **await service.summary(actor, filters))


@router.get("/report-export")
async def report_export(
    actor: Actor,
    service: Reports,
    filters: Filters,
    export_type: Annotated[str | None, Query(alias="type")] = None,
) -> Response:
    """Download jobs, office-usage or revisions as CSV."""
    return csv_response(await service.export(actor, export_type, filters))
