"""Entity records persisted in the key/value store."""

from listingflow.db.models.audit import AuditEvent
from listingflow.db.models.base import (
    SYSTEM_ACTOR,
    ApprovalDecision,
    AssetKind,
    AuditEventType,
    AuditSource,
    EditLabel,
    JobPriority,
    JobStatus,
    Record,
    Role,
    ScopeType,
    issue_id,
    utcnow,
)
from listingflow.db.models.jobs import (
    Job,
    JobApproval,
    JobAsset,
    JobDelivery,
    JobRevision,
    Preset,
)
from listingflow.db.models.org import Brokerage, Membership, Office, Team, User

__all__ = [
    "SYSTEM_ACTOR",
    "ApprovalDecision",
    "AssetKind",
    "AuditEvent",
    "AuditEventType",
    "AuditSource",
    "Brokerage",
    "EditLabel",
    "Job",
    "JobApproval",
    "JobAsset",
    "JobDelivery",
    "JobPriority",
    "JobRevision",
    "JobStatus",
    "Membership",
    "Office",
    "Preset",
    "Record",
    "Role",
    "ScopeType",
    "Team",
    "User",
    "issue_id",
    "utcnow",
]
