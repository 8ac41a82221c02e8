"""listingflow services.

Business logic sits here, independent of the HTTP layer:
- authz: permissions, actor context and tenant scope guard
- workflow: job status transition table and validator
- audit_log: audit event construction and the per-brokerage trail
- jobs: job creation, transitions, approvals, deliveries, revisions
- organization: bootstrap, offices, teams, users, memberships, presets
- reporting: summaries and CSV exports
"""

from listingflow.services.audit_log import AuditTrail, build_audit_event
from listingflow.services.authz import (
    ROLE_PERMISSIONS,
    ActorContext,
    Permission,
    TenantScope,
    assert_permission,
    assert_tenant_scope,
    has_permission,
)
from listingflow.services.jobs import JobService
from listingflow.services.organization import OrganizationService
from listingflow.services.reporting import ReportService
from listingflow.services.workflow import (
    TRANSITION_RULES,
    TransitionMetadata,
    TransitionResult,
    TransitionRule,
    assert_transition,
    validate_transition,
)

__all__ = [
    "ROLE_PERMISSIONS",
    "TRANSITION_RULES",
    "ActorContext",
    "AuditTrail",
    "JobService",
    "OrganizationService",
    "Permission",
    "ReportService",
    "TenantScope",
    "TransitionMetadata",
    "TransitionResult",
    "TransitionRule",
    "assert_permission",
    "assert_tenant_scope",
    "assert_transition",
    "build_audit_event",
    "has_permission",
    "validate_transition",
]
