"""Append-only audit trail.

Every state-affecting operation records at least one AuditEvent in the
brokerage's log. Events are immutable once built; the store assigns each a
per-brokerage sequence number and keeps the log newest first.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from listingflow.db.models import AuditEvent, AuditEventType, AuditSource
from listingflow.services.authz import Permission, assert_permission

if TYPE_CHECKING:
    from listingflow.db.repository import EntityStore
    from listingflow.services.authz import ActorContext, TenantTarget

logger = logging.getLogger(__name__)


def build_audit_event(
    event_type: AuditEventType,
    actor: ActorContext,
    scope: TenantTarget,
    *,
    target_entity_type: str,
    target_entity_id: str,
    source: AuditSource = AuditSource.API,
    before_snapshot: dict[str, Any] | None = None,
    after_snapshot: dict[str, Any] | None = None,
    reason: str | None = None,
    note: str | None = None,
) -> AuditEvent:
    """Build an immutable audit record attributed to actor within scope.

    Blank reason and note values are stored as null.
    """
    return AuditEvent(
        event_id=f"evt_{uuid.uuid4().hex}",
        event_type=event_type,
        actor_user_id=actor.user_id,
        actor_role=actor.role.value,
        brokerage_id=scope.brokerage_id,
        office_id=scope.office_id or None,
        team_id=scope.team_id or None,
        target_entity_type=target_entity_type,
        target_entity_id=target_entity_id,
        source=source,
        before_snapshot=before_snapshot or None,
        after_snapshot=after_snapshot or None,
        reason=reason or None,
        note=note or None,
        request_id=actor.request_id,
    )


class AuditTrail:
    """Writes and reads brokerage audit logs.

    Example:
        trail = AuditTrail(store)
        await trail.emit(
            AuditEventType.JOB_SUBMITTED,
            actor,
            job,
            target_entity_type="job",
            target_entity_id=job.id,
        )
    """

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def record(self, event: AuditEvent) -> AuditEvent:
        """Append a pre-built event and return it with its sequence number."""
        stored = await self._store.append_audit_event(event)
        logger.info(
            "Audit event recorded",
            extra={
                "event_type": stored.event_type.value,
                "brokerage_id": stored.brokerage_id,
                "target_entity_id": stored.target_entity_id,
                "sequence": stored.sequence,
                "request_id": stored.request_id,
            },
        )
        return stored

    async def emit(
        self,
        event_type: AuditEventType,
        actor: ActorContext,
        scope: TenantTarget,
        **fields: Any,
    ) -> AuditEvent:
        """Build and append an event in one step. See build_audit_event for fields."""
        return await self.record(build_audit_event(event_type, actor, scope, **fields))

    async def list_events(self, brokerage_id: str, limit: int | None = None) -> list[AuditEvent]:
        """Most recent first; limit defaults and clamps per the store settings."""
        return await self._store.list_audit_events(brokerage_id, limit)

    async def list_for_actor(self, actor: ActorContext, limit: int | None = None) -> list[AuditEvent]:
        """The actor's brokerage log, for roles holding ``view:audit``."""
        assert_permission(actor.role, Permission.VIEW_AUDIT)
        return await self.list_events(actor.brokerage_id, limit)
