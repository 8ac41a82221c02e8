"""Job-related records: presets, jobs and the per-event child records.

JobApproval, JobDelivery and JobRevision are written exactly once per
workflow event and never updated. Job itself is mutated in place on every
transition.
"""

from datetime import datetime
from typing import Any

from pydantic import Field

from listingflow.db.models.base import (
    ApprovalDecision,
    AssetKind,
    EditLabel,
    JobPriority,
    JobStatus,
    Record,
    ScopeType,
)


class Preset(Record):
    """Reusable job template scoped to a brokerage or an office."""

    name: str
    scope_type: ScopeType
    scope_id: str
    brokerage_id: str
    office_id: str | None = None
    active: bool = True
    allowed_edit_types: list[EditLabel] = Field(min_length=1)
    default_settings: dict[str, Any] = Field(default_factory=dict)
    approval_required: bool = False
    disclosure_required_default: bool = False
    delivery_notes_template: str = ""
    revision_policy_template: str = ""
    created_by: str | None = None

    def allows(self, categories: list[str]) -> bool:
        """True if every requested category is one of the allowed edit types."""
        allowed = {label.value for label in self.allowed_edit_types}
        return all(category in allowed for category in categories)


class Job(Record):
    """A unit of requested photo-editing work for one property listing."""

    brokerage_id: str
    office_id: str
    team_id: str | None = None
    agent_user_id: str
    property_address: str
    mls_id: str | None = None
    selected_preset_id: str
    requested_edit_categories: list[str] = Field(min_length=1)
    requested_turnaround: str | None = None
    priority: JobPriority = JobPriority.NORMAL
    notes: str | None = None
    status: JobStatus = JobStatus.DRAFT
    revision_count: int = Field(default=0, ge=0)
    disclosure_relevant: bool = False
    disclosure_required: bool = False
    submitted_at: datetime | None = None
    delivered_at: datetime | None = None
    completed_at: datetime | None = None


class JobAsset(Record):
    """A file reference attached to a job."""

    job_id: str
    brokerage_id: str
    office_id: str
    kind: AssetKind
    version: int = Field(default=1, ge=1)
    edit_label: str | None = None
    name: str | None = None
    url: str = Field(min_length=1)
    uploaded_by_user_id: str


class JobApproval(Record):
    """Reviewer decision recorded while a job is In Review."""

    job_id: str
    brokerage_id: str
    office_id: str
    reviewer_user_id: str
    decision: ApprovalDecision
    note: str | None = None


class JobDelivery(Record):
    """One delivery of processed output."""

    job_id: str
    brokerage_id: str
    office_id: str
    delivered_by_user_id: str
    output_asset_ids: list[str] = Field(min_length=1)
    disclosure_flag_present: bool = False
    notes: str | None = None


class JobRevision(Record):
    """One revision request against a delivered job."""

    job_id: str
    brokerage_id: str
    office_id: str
    requested_by_user_id: str
    reason_category: str = Field(min_length=1)
    cycle_number: int = Field(ge=0)
    notes: str | None = None
