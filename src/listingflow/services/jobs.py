"""Job mutation and query handlers.

Each mutation follows the same sequence: check permission, load the job,
check tenant scope, validate the implied transition, mutate and persist the
job, then append audit events (always JOB_STATUS_CHANGED, plus one domain
event for the sub-flow).

The job write and its audit appends are separate store writes; a failure
between them leaves the job updated without its events.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from listingflow.core.errors import ErrorCode, WorkflowError, not_found, validation_failed
from listingflow.db.models import (
    SYSTEM_ACTOR,
    ApprovalDecision,
    AssetKind,
    AuditEventType,
    Job,
    JobApproval,
    JobAsset,
    JobDelivery,
    JobPriority,
    JobRevision,
    JobStatus,
    Preset,
    Role,
    issue_id,
    utcnow,
)
from listingflow.services.audit_log import AuditTrail
from listingflow.services.authz import (
    OFFICE_BOUND_ROLES,
    Permission,
    TenantScope,
    assert_permission,
    assert_tenant_scope,
)
from listingflow.services.workflow import TransitionMetadata, assert_transition

if TYPE_CHECKING:
    from listingflow.db.repository import EntityStore
    from listingflow.services.authz import ActorContext

logger = logging.getLogger(__name__)

# Moves out of In Review are reviewer decisions.
_REVIEW_OUTCOMES = frozenset(
    [JobStatus.APPROVED_FOR_PROCESSING, JobStatus.REJECTED, JobStatus.DRAFT]
)

_DECISION_TARGETS: dict[ApprovalDecision, JobStatus] = {
    ApprovalDecision.APPROVE: JobStatus.APPROVED_FOR_PROCESSING,
    ApprovalDecision.REJECT: JobStatus.REJECTED,
    ApprovalDecision.REQUEST_CHANGES: JobStatus.DRAFT,
}


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _clean_or_none(value: Any) -> str | None:
    return _clean(value) or None


def _routing_note(status: JobStatus) -> str:
    return f"System routed submitted job to {status.value}"


def routed_status(preset: Preset) -> JobStatus:
    """Status a submitted job lands in, decided by the preset's approval flag."""
    return JobStatus.IN_REVIEW if preset.approval_required else JobStatus.APPROVED_FOR_PROCESSING


def parse_priority(value: str | None) -> JobPriority:
    """Unknown or missing priorities fall back to normal."""
    try:
        return JobPriority(_clean(value).lower() or JobPriority.NORMAL.value)
    except ValueError:
        return JobPriority.NORMAL


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetInput:
    """A file reference supplied with a job or a delivery."""

    url: str | None = None
    name: str | None = None
    edit_label: str | None = None


@dataclass(frozen=True)
class NewJob:
    """Fields accepted when creating a job. Ids default from the actor."""

    property_address: str | None = None
    selected_preset_id: str | None = None
    requested_edit_categories: list[str] = field(default_factory=list)
    office_id: str | None = None
    team_id: str | None = None
    agent_user_id: str | None = None
    mls_id: str | None = None
    requested_turnaround: str | None = None
    priority: str | None = None
    notes: str | None = None
    disclosure_relevant: bool = False
    submit: bool = True
    assets: list[AssetInput] = field(default_factory=list)


@dataclass
class JobCreated:
    job: Job
    assets: list[JobAsset]


@dataclass
class ApprovalRecorded:
    approval: JobApproval
    job: Job


@dataclass
class DeliveryRecorded:
    job: Job
    delivery: JobDelivery
    assets: list[JobAsset]


@dataclass
class RevisionRecorded:
    revision: JobRevision
    job: Job


@dataclass
class JobDetail:
    """A job with all of its child records."""

    job: Job
    assets: list[JobAsset]
    approvals: list[JobApproval]
    revisions: list[JobRevision]
    deliveries: list[JobDelivery]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class JobService:
    """Creates jobs and drives them through the lifecycle.

    Example:
        service = JobService(store)
        created = await service.create_job(actor, NewJob(...))
        await service.transition_job(actor, created.job.id, "Processing")
    """

    def __init__(self, store: EntityStore) -> None:
        self.store = store
        self.audit = AuditTrail(store)

    async def _load_job(self, job_id: str) -> Job:
        job = await self.store.get_job(job_id)
        if job is None:
            raise not_found("Job", jobId=job_id)
        return job

    async def _load_scoped_job(self, actor: ActorContext, job_id: str | None) -> Job:
        job = await self._load_job(_clean(job_id))
        assert_tenant_scope(actor, job)
        return job

    async def _status_changed(
        self,
        actor: ActorContext,
        job: Job,
        before: JobStatus | None,
        after: dict[str, Any],
        *,
        reason: str | None = None,
        note: str | None = None,
    ) -> None:
        await self.audit.emit(
            AuditEventType.JOB_STATUS_CHANGED,
            actor,
            job,
            target_entity_type="job",
            target_entity_id=job.id,
            before_snapshot={"status": before.value} if before else None,
            after_snapshot=after,
            reason=reason,
            note=note,
        )

    # -------------------------------------------------------------------------
    # Create / list
    # -------------------------------------------------------------------------

    async def create_job(self, actor: ActorContext, data: NewJob) -> JobCreated:
        """Create a job, optionally submitting it straight away.

        A submitted job is routed immediately: to In Review when the preset
        requires approval, otherwise to Approved for Processing.
        """
        assert_permission(actor.role, Permission.CREATE_JOB)

        property_address = _clean(data.property_address)
        office_id = _clean(data.office_id or actor.office_id)
        team_id = _clean_or_none(data.team_id or actor.team_id)
        agent_user_id = _clean(data.agent_user_id or actor.user_id)
        preset_id = _clean(data.selected_preset_id)
        categories = list(dict.fromkeys(c for c in map(_clean, data.requested_edit_categories) if c))

        if not (property_address and office_id and agent_user_id and preset_id):
            raise validation_failed(
                "propertyAddress, officeId, agentUserId, and selectedPresetId are required"
            )
        if not categories:
            raise validation_failed("requestedEditCategories is required")

        office = await self.store.get_office(office_id)
        if office is None:
            raise not_found("Office", officeId=office_id)
        assert_tenant_scope(actor, TenantScope(office.brokerage_id, office.id))

        if team_id:
            team = await self.store.get_team(team_id)
            if team is None:
                raise not_found("Team", teamId=team_id)
            assert_tenant_scope(actor, TenantScope(team.brokerage_id, team.office_id, team.id))
            if team.office_id != office.id:
                raise validation_failed(
                    "Team does not belong to the job's office",
                    teamId=team.id,
                    officeId=office.id,
                )

        agent = await self.store.get_user(agent_user_id)
        if agent is None:
            raise not_found("Agent user", agentUserId=agent_user_id)
        assert_tenant_scope(actor, TenantScope(agent.brokerage_id))

        preset = await self.store.get_preset(preset_id)
        if preset is None:
            raise not_found("Preset", selectedPresetId=preset_id)
        assert_tenant_scope(
            actor, TenantScope(preset.brokerage_id, preset.office_id or office.id)
        )
        if preset.office_id and preset.office_id != office.id:
            raise validation_failed(
                "Selected preset belongs to another office",
                selectedPresetId=preset.id,
                officeId=office.id,
            )
        if not preset.active:
            raise validation_failed("Selected preset is inactive", selectedPresetId=preset.id)
        if not preset.allows(categories):
            allowed = {label.value for label in preset.allowed_edit_types}
            raise validation_failed(
                "requestedEditCategories must be allowed by the selected preset",
                disallowed=[c for c in categories if c not in allowed],
            )

        if data.submit:
            status = routed_status(preset)
            note = _routing_note(status)
        else:
            status = JobStatus.DRAFT
            note = "Draft created"

        job = Job(
            id=issue_id("job"),
            brokerage_id=office.brokerage_id,
            office_id=office.id,
            team_id=team_id,
            agent_user_id=agent_user_id,
            property_address=property_address,
            mls_id=_clean_or_none(data.mls_id),
            selected_preset_id=preset.id,
            requested_edit_categories=categories,
            requested_turnaround=_clean_or_none(data.requested_turnaround),
            priority=parse_priority(data.priority),
            notes=_clean_or_none(data.notes),
            status=status,
            disclosure_relevant=data.disclosure_relevant,
            disclosure_required=preset.disclosure_required_default,
            submitted_at=utcnow() if data.submit else None,
        )
        await self.store.add_job(job)

        assets: list[JobAsset] = []
        for item in data.assets:
            url = _clean(item.url)
            if not url:
                continue
            asset = await self.store.add_asset(
                JobAsset(
                    id=issue_id("asset"),
                    job_id=job.id,
                    brokerage_id=job.brokerage_id,
                    office_id=job.office_id,
                    kind=AssetKind.ORIGINAL,
                    version=1,
                    edit_label=_clean_or_none(item.edit_label),
                    name=_clean_or_none(item.name),
                    url=url,
                    uploaded_by_user_id=actor.user_id,
                )
            )
            assets.append(asset)
            await self.audit.emit(
                AuditEventType.JOB_ASSET_UPLOADED,
                actor,
                job,
                target_entity_type="job_asset",
                target_entity_id=asset.id,
                after_snapshot=asset.snapshot(),
            )

        if data.submit:
            await self.audit.emit(
                AuditEventType.JOB_SUBMITTED,
                actor,
                job,
                target_entity_type="job",
                target_entity_id=job.id,
                after_snapshot=job.snapshot(),
            )
        await self._status_changed(actor, job, None, {"status": job.status.value}, note=note)

        logger.info(
            "Job created",
            extra={
                "job_id": job.id,
                "brokerage_id": job.brokerage_id,
                "status": job.status.value,
                "request_id": actor.request_id,
            },
        )
        return JobCreated(job=job, assets=assets)

    async def list_jobs(self, actor: ActorContext) -> list[Job]:
        """Jobs visible to the actor.

        Agents see their own jobs; office-bound roles their office; team
        leads their team; brokerage admins everything in the brokerage.
        """
        if actor.role == Role.AGENT:
            jobs = await self.store.list_agent_jobs(actor.user_id)
            return [
                j for j in jobs
                if j.agent_user_id == actor.user_id and j.brokerage_id == actor.brokerage_id
            ]

        if actor.role in OFFICE_BOUND_ROLES and actor.office_id:
            jobs = await self.store.list_office_jobs(actor.office_id)
            return [
                j for j in jobs
                if j.office_id == actor.office_id and j.brokerage_id == actor.brokerage_id
            ]

        jobs = await self.store.list_jobs(actor.brokerage_id)
        if actor.role == Role.TEAM_LEAD and actor.team_id:
            jobs = [j for j in jobs if j.team_id == actor.team_id]
        return jobs

    async def assets_by_job(self, jobs: list[Job]) -> dict[str, list[JobAsset]]:
        results = await asyncio.gather(*(self.store.list_assets(j.id) for j in jobs))
        return {job.id: assets for job, assets in zip(jobs, results, strict=True)}

    async def approvals_by_job(self, jobs: list[Job]) -> dict[str, list[JobApproval]]:
        results = await asyncio.gather(*(self.store.list_approvals(j.id) for j in jobs))
        return {job.id: approvals for job, approvals in zip(jobs, results, strict=True)}

    # -------------------------------------------------------------------------
    # Generic transition
    # -------------------------------------------------------------------------

    async def transition_job(
        self,
        actor: ActorContext,
        job_id: str | None,
        to_status: str | None,
        *,
        reason: str | None = None,
        note: str | None = None,
        revision_reason_category: str | None = None,
        output_asset_ids: list[str] | None = None,
    ) -> Job:
        """Move a job to to_status.

        Submitting a Draft also performs the System routing step, so the
        job leaves this call In Review or Approved for Processing.
        Delivered and Revision Requested store the same delivery or
        revision record as the dedicated sub-flows; a delivery here reuses
        processed assets already attached to the job.
        """
        job_id = _clean(job_id)
        target_raw = _clean(to_status)
        if not job_id or not target_raw:
            raise validation_failed("jobId and toStatus are required")
        try:
            target = JobStatus(target_raw)
        except ValueError:
            raise validation_failed("Unknown job status", toStatus=target_raw) from None

        job = await self._load_scoped_job(actor, job_id)
        metadata = TransitionMetadata(
            reason=_clean_or_none(reason),
            note=_clean_or_none(note),
            revision_reason_category=_clean_or_none(revision_reason_category),
            output_asset_ids=tuple(i for i in map(_clean, output_asset_ids or []) if i),
        )

        if target == JobStatus.PROCESSING:
            assert_permission(actor.role, Permission.PROCESS_JOB)
        if target == JobStatus.DELIVERED:
            assert_permission(actor.role, Permission.DELIVER_JOB)
        if target == JobStatus.REVISION_REQUESTED:
            assert_permission(actor.role, Permission.REQUEST_REVISION)
        if job.status == JobStatus.IN_REVIEW and target in _REVIEW_OUTCOMES:
            assert_permission(actor.role, Permission.APPROVE_JOB)

        assert_transition(job.status, target, actor.role, metadata)

        if target == JobStatus.SUBMITTED:
            return await self._submit_and_route(actor, job, metadata)
        if target == JobStatus.DELIVERED:
            asset_ids = await self._existing_outputs(job, metadata.output_asset_ids)
            await self._record_delivery(actor, job, asset_ids, metadata.note)
            return job
        if target == JobStatus.REVISION_REQUESTED:
            recorded = await self.request_revision(
                actor,
                job.id,
                metadata.revision_reason_category,
                metadata.note or metadata.reason,
            )
            return recorded.job

        before = job.status
        job.status = target
        if target == JobStatus.COMPLETED:
            job.completed_at = utcnow()
        await self.store.save_job(job)

        await self._status_changed(
            actor,
            job,
            before,
            {"status": target.value},
            reason=metadata.reason,
            note=metadata.note,
        )

        logger.info(
            "Job transitioned",
            extra={
                "job_id": job.id,
                "from_status": before.value,
                "to_status": target.value,
                "actor_role": actor.role.value,
                "request_id": actor.request_id,
            },
        )
        return job

    async def _submit_and_route(
        self, actor: ActorContext, job: Job, metadata: TransitionMetadata
    ) -> Job:
        preset = await self.store.get_preset(job.selected_preset_id)
        if preset is None:
            raise not_found("Preset", selectedPresetId=job.selected_preset_id)

        routed = routed_status(preset)
        assert_transition(JobStatus.SUBMITTED, routed, SYSTEM_ACTOR)

        before = job.status
        job.status = routed
        job.submitted_at = utcnow()
        await self.store.save_job(job)

        await self._status_changed(
            actor,
            job,
            before,
            {"status": JobStatus.SUBMITTED.value},
            reason=metadata.reason,
            note=metadata.note,
        )
        await self.audit.emit(
            AuditEventType.JOB_SUBMITTED,
            actor,
            job,
            target_entity_type="job",
            target_entity_id=job.id,
            after_snapshot=job.snapshot(),
        )
        await self._status_changed(
            actor,
            job,
            JobStatus.SUBMITTED,
            {"status": routed.value},
            note=_routing_note(routed),
        )
        logger.info(
            "Job submitted",
            extra={"job_id": job.id, "to_status": routed.value, "request_id": actor.request_id},
        )
        return job

    # -------------------------------------------------------------------------
    # Sub-flows
    # -------------------------------------------------------------------------

    async def record_approval(
        self,
        actor: ActorContext,
        job_id: str | None,
        decision: str | None,
        note: str | None = None,
    ) -> ApprovalRecorded:
        """Record a reviewer decision on a job that is In Review.

        For reject and request_changes the note doubles as the required
        transition reason.
        """
        assert_permission(actor.role, Permission.APPROVE_JOB)

        job_id = _clean(job_id)
        decision_raw = _clean(decision).lower()
        note_text = _clean_or_none(note)
        if not job_id or not decision_raw:
            raise validation_failed("jobId and decision are required")
        try:
            parsed = ApprovalDecision(decision_raw)
        except ValueError:
            raise validation_failed(
                "decision must be approve, reject, or request_changes", decision=decision_raw
            ) from None

        job = await self._load_scoped_job(actor, job_id)
        if job.status != JobStatus.IN_REVIEW:
            raise WorkflowError(
                ErrorCode.CONFLICT,
                "Approval decision can only be recorded for jobs currently In Review",
                {"currentStatus": job.status.value},
            )

        target = _DECISION_TARGETS[parsed]
        assert_transition(
            job.status,
            target,
            actor.role,
            TransitionMetadata(
                reason=note_text if parsed != ApprovalDecision.APPROVE else None,
                note=note_text,
            ),
        )

        approval = await self.store.add_approval(
            JobApproval(
                id=issue_id("approval"),
                job_id=job.id,
                brokerage_id=job.brokerage_id,
                office_id=job.office_id,
                reviewer_user_id=actor.user_id,
                decision=parsed,
                note=note_text,
            )
        )

        before = job.status
        job.status = target
        await self.store.save_job(job)

        await self.audit.emit(
            AuditEventType.JOB_APPROVAL_DECISION,
            actor,
            job,
            target_entity_type="job_approval",
            target_entity_id=approval.id,
            after_snapshot=approval.snapshot(),
            reason=note_text,
        )
        await self._status_changed(
            actor, job, before, {"status": target.value}, reason=note_text
        )

        logger.info(
            "Approval recorded",
            extra={
                "job_id": job.id,
                "decision": parsed.value,
                "request_id": actor.request_id,
            },
        )
        return ApprovalRecorded(approval=approval, job=job)

    async def deliver(
        self,
        actor: ActorContext,
        job_id: str | None,
        outputs: list[AssetInput],
        notes: str | None = None,
    ) -> DeliveryRecorded:
        """Attach processed outputs to a Processing job and mark it Delivered.

        Outputs without a URL are skipped. The transition is validated before
        any asset is written, so a rejected delivery stores nothing.
        """
        assert_permission(actor.role, Permission.DELIVER_JOB)

        job_id = _clean(job_id)
        notes_text = _clean_or_none(notes)
        if not job_id:
            raise validation_failed("jobId is required")
        if not outputs:
            raise validation_failed("outputs is required")

        job = await self._load_scoped_job(actor, job_id)

        version = max(1, job.revision_count + 1)
        assets = [
            JobAsset(
                id=issue_id("asset"),
                job_id=job.id,
                brokerage_id=job.brokerage_id,
                office_id=job.office_id,
                kind=AssetKind.PROCESSED,
                version=version,
                edit_label=_clean_or_none(item.edit_label),
                name=_clean_or_none(item.name),
                url=_clean(item.url),
                uploaded_by_user_id=actor.user_id,
            )
            for item in outputs
            if _clean(item.url)
        ]
        if not assets:
            raise validation_failed("At least one valid output url is required")

        asset_ids = [a.id for a in assets]
        assert_transition(
            job.status,
            JobStatus.DELIVERED,
            actor.role,
            TransitionMetadata(note=notes_text, output_asset_ids=tuple(asset_ids)),
        )

        for asset in assets:
            await self.store.add_asset(asset)

        delivery = await self._record_delivery(actor, job, asset_ids, notes_text)
        return DeliveryRecorded(job=job, delivery=delivery, assets=assets)

    async def _record_delivery(
        self,
        actor: ActorContext,
        job: Job,
        asset_ids: list[str],
        notes: str | None,
    ) -> JobDelivery:
        """Mark a validated job Delivered and store its delivery record."""
        before = job.status
        job.status = JobStatus.DELIVERED
        job.delivered_at = utcnow()
        await self.store.save_job(job)

        delivery = await self.store.add_delivery(
            JobDelivery(
                id=issue_id("delivery"),
                job_id=job.id,
                brokerage_id=job.brokerage_id,
                office_id=job.office_id,
                delivered_by_user_id=actor.user_id,
                output_asset_ids=asset_ids,
                disclosure_flag_present=job.disclosure_required,
                notes=notes,
            )
        )

        await self.audit.emit(
            AuditEventType.JOB_DELIVERY_CREATED,
            actor,
            job,
            target_entity_type="job_delivery",
            target_entity_id=delivery.id,
            after_snapshot=delivery.snapshot(),
        )
        await self._status_changed(
            actor, job, before, {"status": JobStatus.DELIVERED.value}, note=notes
        )

        logger.info(
            "Delivery recorded",
            extra={
                "job_id": job.id,
                "delivery_id": delivery.id,
                "asset_count": len(asset_ids),
                "request_id": actor.request_id,
            },
        )
        return delivery

    async def _existing_outputs(self, job: Job, asset_ids: tuple[str, ...]) -> list[str]:
        """Check output ids name processed assets of this job."""
        processed = {
            a.id for a in await self.store.list_assets(job.id) if a.kind == AssetKind.PROCESSED
        }
        unknown = [i for i in asset_ids if i not in processed]
        if unknown:
            raise validation_failed(
                "outputAssetIds must reference processed assets of this job",
                unknownAssetIds=unknown,
            )
        return list(dict.fromkeys(asset_ids))

    async def request_revision(
        self,
        actor: ActorContext,
        job_id: str | None,
        reason_category: str | None,
        notes: str | None = None,
    ) -> RevisionRecorded:
        """Send a delivered job back for another processing cycle.

        The revision's cycle number is the job's revision count before this
        request; the count then increases by exactly one.
        """
        assert_permission(actor.role, Permission.REQUEST_REVISION)

        job_id = _clean(job_id)
        category = _clean(reason_category)
        notes_text = _clean_or_none(notes)
        if not job_id or not category:
            raise validation_failed("jobId and reasonCategory are required")

        job = await self._load_scoped_job(actor, job_id)
        reason = notes_text or category
        assert_transition(
            job.status,
            JobStatus.REVISION_REQUESTED,
            actor.role,
            TransitionMetadata(
                reason=reason,
                note=notes_text,
                revision_reason_category=category,
            ),
        )

        revision = await self.store.add_revision(
            JobRevision(
                id=issue_id("revision"),
                job_id=job.id,
                brokerage_id=job.brokerage_id,
                office_id=job.office_id,
                requested_by_user_id=actor.user_id,
                reason_category=category,
                cycle_number=job.revision_count,
                notes=notes_text,
            )
        )

        before = job.status
        job.status = JobStatus.REVISION_REQUESTED
        job.revision_count += 1
        await self.store.save_job(job)

        await self.audit.emit(
            AuditEventType.JOB_REVISION_REQUESTED,
            actor,
            job,
            target_entity_type="job_revision",
            target_entity_id=revision.id,
            after_snapshot=revision.snapshot(),
            reason=reason,
        )
        await self._status_changed(
            actor,
            job,
            before,
            {
                "status": JobStatus.REVISION_REQUESTED.value,
                "revisionCount": job.revision_count,
            },
            reason=reason,
        )

        logger.info(
            "Revision requested",
            extra={
                "job_id": job.id,
                "revision_count": job.revision_count,
                "request_id": actor.request_id,
            },
        )
        return RevisionRecorded(revision=revision, job=job)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_job_detail(self, actor: ActorContext, job_id: str | None) -> JobDetail:
        job_id = _clean(job_id)
        if not job_id:
            raise validation_failed("jobId query parameter is required")

        job = await self._load_scoped_job(actor, job_id)
        if actor.role == Role.AGENT and actor.user_id != job.agent_user_id:
            raise WorkflowError(ErrorCode.FORBIDDEN, "Actor cannot view this job", {"jobId": job.id})

        assets, approvals, revisions, deliveries = await asyncio.gather(
            self.store.list_assets(job.id),
            self.store.list_approvals(job.id),
            self.store.list_revisions(job.id),
            self.store.list_deliveries(job.id),
        )
        return JobDetail(
            job=job,
            assets=assets,
            approvals=approvals,
            revisions=revisions,
            deliveries=deliveries,
        )

    async def review_queue(self, actor: ActorContext) -> list[Job]:
        """Jobs awaiting a reviewer decision within the actor's reach."""
        assert_permission(actor.role, Permission.APPROVE_JOB)

        queue = [
            j for j in await self.store.list_jobs(actor.brokerage_id)
            if j.status == JobStatus.IN_REVIEW
        ]
        if actor.role in (Role.OFFICE_ADMIN, Role.REVIEWER) and actor.office_id:
            queue = [j for j in queue if j.office_id == actor.office_id]
        elif actor.role == Role.TEAM_LEAD and actor.team_id:
            queue = [j for j in queue if j.team_id == actor.team_id]
        return queue
