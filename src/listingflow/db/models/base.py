"""Base record definitions and the enum vocabularies shared by all models.

This module provides:
- The Record base class (id + timestamps, camelCase JSON keys)
- Enum types used across multiple models
- ID and timestamp helpers
"""

import enum
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def issue_id(prefix: str) -> str:
    """Generate a prefixed entity id, e.g. ``job_3f2c9a0b51d4``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Record(BaseModel):
    """Base for every stored entity.

    Fields are snake_case in Python and camelCase on the wire and in the
    store. Both spellings are accepted on input.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def snapshot(self) -> dict:
        """JSON-safe, camelCase dict of this record (for audit snapshots and storage)."""
        return self.model_dump(mode="json", by_alias=True)

    def touch(self) -> None:
        """Bump updated_at to now."""
        self.updated_at = utcnow()


# =============================================================================
# Common Enums
# =============================================================================


class Role(str, enum.Enum):
    """Human roles an actor can hold."""

    BROKERAGE_ADMIN = "BrokerageAdmin"
    OFFICE_ADMIN = "OfficeAdmin"
    TEAM_LEAD = "TeamLead"
    AGENT = "Agent"
    MEDIA_PARTNER = "MediaPartner"
    REVIEWER = "Reviewer"


# Pseudo-actor for machine-driven transitions; never a membership role.
SYSTEM_ACTOR = "System"


class JobStatus(str, enum.Enum):
    """Job lifecycle states.

    State machine:
        Draft -> Submitted -> In Review -> Approved for Processing -> Processing
              -> Delivered -> Completed
    with Rejected / Revision Requested / Cancelled side branches.
    """

    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    IN_REVIEW = "In Review"
    APPROVED_FOR_PROCESSING = "Approved for Processing"
    PROCESSING = "Processing"
    DELIVERED = "Delivered"
    REVISION_REQUESTED = "Revision Requested"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class ScopeType(str, enum.Enum):
    """Tenant level a membership or preset is bound to."""

    BROKERAGE = "brokerage"
    OFFICE = "office"
    TEAM = "team"


class JobPriority(str, enum.Enum):
    """Requested handling priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class AssetKind(str, enum.Enum):
    """Whether an asset was uploaded by the requester or produced by a partner."""

    ORIGINAL = "original"
    PROCESSED = "processed"


class ApprovalDecision(str, enum.Enum):
    """Reviewer decision on a job in review."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"


class EditLabel(str, enum.Enum):
    """Edit categories a preset may allow."""

    VIRTUAL_STAGING = "Virtual Staging"
    RESTAGING = "Restaging"
    TWILIGHT = "Twilight"
    DECLUTTER = "Declutter"
    OBJECT_REMOVAL = "Object Removal"
    LAWN_ENHANCEMENT = "Lawn Enhancement"
    SKY_REPLACEMENT = "Sky Replacement"
    MINOR_CLEANUP = "Minor Cleanup"
    RENOVATION_PREVIEW = "Renovation Preview"


class AuditEventType(str, enum.Enum):
    """Audit event types (closed set)."""

    USER_INVITED = "USER_INVITED"
    MEMBERSHIP_CHANGED = "MEMBERSHIP_CHANGED"
    ORG_STRUCTURE_CHANGED = "ORG_STRUCTURE_CHANGED"
    PRESET_CREATED = "PRESET_CREATED"
    PRESET_UPDATED = "PRESET_UPDATED"
    PRESET_DELETED = "PRESET_DELETED"
    JOB_SUBMITTED = "JOB_SUBMITTED"
    JOB_STATUS_CHANGED = "JOB_STATUS_CHANGED"
    JOB_APPROVAL_DECISION = "JOB_APPROVAL_DECISION"
    JOB_DELIVERY_CREATED = "JOB_DELIVERY_CREATED"
    JOB_REVISION_REQUESTED = "JOB_REVISION_REQUESTED"
    JOB_ASSET_UPLOADED = "JOB_ASSET_UPLOADED"
    JOB_DISCLOSURE_UPDATED = "JOB_DISCLOSURE_UPDATED"
    REPORT_EXPORTED = "REPORT_EXPORTED"


class AuditSource(str, enum.Enum):
    """Channel through which an audited action arrived."""

    UI = "ui"
    API = "api"
    SYSTEM = "system"
