"""Pydantic schemas for job workflow endpoints.

Covers job creation, generic transitions, approvals, deliveries and
revision requests.
"""

from __future__ import annotations

from pydantic import Field

from listingflow.api.schemas.common import CamelModel
from listingflow.services.jobs import AssetInput, NewJob


class AssetPayload(CamelModel):
    """An original upload or a processed output, referenced by URL."""

    url: str | None = Field(None, max_length=2048)
    name: str | None = Field(None, max_length=255)
    edit_label: str | None = None

    def to_input(self) -> AssetInput:
        return AssetInput(url=self.url, name=self.name, edit_label=self.edit_label)


class CreateJobRequest(CamelModel):
    """New media job.

    ``officeId``, ``teamId`` and ``agentUserId`` default to the actor's own
    values. With ``submit`` left true the job is routed immediately.
    """

    property_address: str | None = Field(None, max_length=500)
    selected_preset_id: str | None = None
    requested_edit_categories: list[str] = Field(default_factory=list)
    office_id: str | None = None
    team_id: str | None = None
    agent_user_id: str | None = None
    mls_id: str | None = Field(None, max_length=100)
    requested_turnaround: str | None = Field(None, max_length=100)
    priority: str | None = None
    notes: str | None = Field(None, max_length=10000)
    disclosure_relevant: bool = False
    submit: bool = True
    assets: list[AssetPayload] = Field(default_factory=list)

    def to_input(self) -> NewJob:
        return NewJob(
            property_address=self.property_address,
            selected_preset_id=self.selected_preset_id,
            requested_edit_categories=list(self.requested_edit_categories),
            office_id=self.office_id,
            team_id=self.team_id,
            agent_user_id=self.agent_user_id,
            mls_id=self.mls_id,
            requested_turnaround=self.requested_turnaround,
            priority=self.priority,
            notes=self.notes,
            disclosure_relevant=self.disclosure_relevant,
            submit=self.submit,
            assets=[a.to_input() for a in self.assets],
        )


class TransitionRequest(CamelModel):
    job_id: str | None = None
    to_status: str | None = None
    reason: str | None = None
    note: str | None = None
    revision_reason_category: str | None = None
    output_asset_ids: list[str] = Field(default_factory=list)


class ApprovalRequest(CamelModel):
    job_id: str | None = None
    decision: str | None = None
    note: str | None = None


class DeliveryRequest(CamelModel):
    job_id: str | None = None
    outputs: list[AssetPayload] = Field(default_factory=list)
    notes: str | None = None


class RevisionRequest(CamelModel):
    job_id: str | None = None
    reason_category: str | None = None
    notes: str | None = None
