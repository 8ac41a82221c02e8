"""Job workflow router.

Handles job creation and listing, generic transitions, and the approval,
delivery and revision sub-flows, plus job detail and the review queue.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Query

from listingflow.api.dependencies import Actor, Jobs
from listingflow.api.responses import dump, success
from listingflow.api.schemas.jobs import (
    ApprovalRequest,
    CreateJobRequest,
    DeliveryRequest,
    RevisionRequest,
    TransitionRequest,
)

router = APIRouter(tags=["jobs"])


@router.get("/jobs")
async def list_jobs(
    actor: Actor,
    service: Jobs,
    include_assets: Annotated[bool, Query(alias="includeAssets")] = False,
) -> dict[str, Any]:
    """Jobs visible to the actor, optionally with their assets inlined."""
    jobs = await service.list_jobs(actor)
    if not include_assets:
        return success(actor, jobs=jobs)

    assets = await service.assets_by_job(jobs)
    rows = [{**job.snapshot(), "assets": dump(assets[job.id])} for job in jobs]
    return success(actor, jobs=rows)


@router.post("/jobs")
async def create_job(payload: CreateJobRequest, actor: Actor, service: Jobs) -> dict[str, Any]:
    created = await service.create_job(actor, payload.to_input())
    return success(actor, job=created.job, assets=created.assets)


@router.post("/job-transition")
async def transition_job(
    payload: TransitionRequest, actor: Actor, service: Jobs
) -> dict[str, Any]:
    job = await service.transition_job(
        actor,
        payload.job_id,
        payload.to_status,
        reason=payload.reason,
        note=payload.note,
        revision_reason_category=payload.revision_reason_category,
        output_asset_ids=payload.output_asset_ids,
    )
    return success(actor, job=job)


@router.post("/approvals")
async def record_approval(
    payload: ApprovalRequest, actor: Actor, service: Jobs
) -> dict[str, Any]:
    recorded = await service.record_approval(actor, payload.job_id, payload.decision, payload.note)
    return success(actor, approval=recorded.approval, job=recorded.job)


@router.post("/deliveries")
async def deliver(payload: DeliveryRequest, actor: Actor, service: Jobs) -> dict[str, Any]:
    recorded = await service.deliver(
        actor, payload.job_id, [o.to_input() for o in payload.outputs], payload.notes
    )
    return success(actor, job=recorded.job, delivery=recorded.delivery, assets=recorded.assets)


@router.post("/revisions")
async def request_revision(
    payload: RevisionRequest, actor: Actor, service: Jobs
) -> dict[str, Any]:
    recorded = await service.request_revision(
        actor, payload.job_id, payload.reason_category, payload.notes
    )
    return success(actor, revision=recorded.revision, job=recorded.job)


@router.get("/job-detail")
async def job_detail(
    actor: Actor,
    service: Jobs,
    job_id: Annotated[str | None, Query(alias="jobId")] = None,
) -> dict[str, Any]:
    detail = await service.get_job_detail(actor, job_id)
    return success(
        actor,
        job=detail.job,
        assets=detail.assets,
        approvals=detail.approvals,
        revisions=detail.revisions,
        deliveries=detail.deliveries,
    )


@router.get("/review-queue")
async def review_queue(
    actor: Actor,
    service: Jobs,
    include_approvals: Annotated[bool, Query(alias="includeApprovals")] = False,
) -> dict[str, Any]:
    """In Review jobs within the actor's reach."""
    queue = await service.review_queue(actor)
    if not include_approvals:
        return success(actor, queue=queue)

    approvals = await service.approvals_by_job(queue)
    rows = [{**job.snapshot(), "approvals": dump(approvals[job.id])} for job in queue]
    return success(actor, queue=rows)
