"""Pydantic request schemas for the listingflow API, grouped by namespace."""

from listingflow.api.schemas.common import CamelModel
from listingflow.api.schemas.jobs import (
    ApprovalRequest,
    AssetPayload,
    CreateJobRequest,
    DeliveryRequest,
    RevisionRequest,
    TransitionRequest,
)
from listingflow.api.schemas.org import (
    BootstrapRequest,
    CreateMembershipRequest,
    CreateOfficeRequest,
    CreatePresetRequest,
    CreateTeamRequest,
    CreateUserRequest,
    UpdatePresetRequest,
)

__all__ = [
    "ApprovalRequest",
    "AssetPayload",
    "BootstrapRequest",
    "CamelModel",
    "CreateJobRequest",
    "CreateMembershipRequest",
    "CreateOfficeRequest",
    "CreatePresetRequest",
    "CreateTeamRequest",
    "CreateUserRequest",
    "DeliveryRequest",
    "RevisionRequest",
    "TransitionRequest",
    "UpdatePresetRequest",
]
