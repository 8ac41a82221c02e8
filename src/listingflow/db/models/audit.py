"""Immutable audit event record."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from listingflow.db.models.base import AuditEventType, AuditSource, utcnow


class AuditEvent(BaseModel):
    """A state-affecting action, retained for compliance review.

    Frozen: once built an event is never modified. ``sequence`` is assigned
    when the event is appended to its brokerage log.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    event_id: str
    sequence: int | None = None
    event_type: AuditEventType
    actor_user_id: str
    actor_role: str
    brokerage_id: str
    office_id: str | None = None
    team_id: str | None = None
    target_entity_type: str
    target_entity_id: str
    source: AuditSource = AuditSource.API
    before_snapshot: dict[str, Any] | None = None
    after_snapshot: dict[str, Any] | None = None
    reason: str | None = None
    note: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    request_id: str
