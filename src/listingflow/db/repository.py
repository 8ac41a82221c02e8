"""Entity store access layer.

Maps every record type onto the key/value store:
- one JSON document per entity under ``<prefix>:<type>:<id>``
- JSON arrays of ids as secondary indexes under ``<prefix>:index:...``
- one newest-first JSON array of audit events per brokerage

Index lists are read-modify-write. Writers to the same key are serialized
inside the process with a per-key asyncio.Lock that lives only while some
coroutine holds or awaits it; across processes the last writer wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

from listingflow.db.models import (
    AuditEvent,
    Brokerage,
    Job,
    JobApproval,
    JobAsset,
    JobDelivery,
    JobRevision,
    Membership,
    Office,
    Preset,
    Team,
    User,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from listingflow.core.config import AuditSettings
    from listingflow.db.kv import KeyValueStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_AUDIT_MAX_ENTRIES = 2000
DEFAULT_AUDIT_LIMIT = 100
DEFAULT_AUDIT_MAX_LIMIT = 500


class EntityStore:
    """Typed create/get/list/save operations over a KeyValueStore.

    Example:
        store = EntityStore(MemoryKeyValueStore())
        await store.add_office(office)
        offices = await store.list_offices(office.brokerage_id)
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        key_prefix: str = "lf",
        audit: AuditSettings | None = None,
    ) -> None:
        self.kv = kv
        self.key_prefix = key_prefix
        self.audit_max_entries = audit.max_entries if audit else DEFAULT_AUDIT_MAX_ENTRIES
        self.audit_default_limit = audit.default_limit if audit else DEFAULT_AUDIT_LIMIT
        self.audit_max_limit = audit.max_limit if audit else DEFAULT_AUDIT_MAX_LIMIT
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def entity_key(self, entity_type: str, entity_id: str) -> str:
        return f"{self.key_prefix}:{entity_type}:{entity_id}"

    def index_key(self, name: str, owner_id: str | None = None) -> str:
        if owner_id is None:
            return f"{self.key_prefix}:index:{name}"
        return f"{self.key_prefix}:index:{name}:{owner_id}"

    def audit_key(self, brokerage_id: str) -> str:
        return f"{self.key_prefix}:audit:{brokerage_id}"

    def audit_sequence_key(self, brokerage_id: str) -> str:
        return f"{self.key_prefix}:audit-seq:{brokerage_id}"

    async def health_check(self) -> dict[str, Any]:
        return await self.kv.health_check(f"{self.key_prefix}:health:check")

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # -------------------------------------------------------------------------
    # JSON primitives
    # -------------------------------------------------------------------------

    async def _get_json(self, key: str, default: Any) -> Any:
        raw = await self.kv.get(key)
        if not raw:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable value", extra={"key": key})
            return default

    async def _set_json(self, key: str, value: Any) -> None:
        await self.kv.set(key, json.dumps(value, separators=(",", ":")))

    async def _get_record(self, model: type[ModelT], key: str) -> ModelT | None:
        raw = await self.kv.get(key)
        if not raw:
            return None
        try:
            return model.model_validate_json(raw)
        except ValueError:
            logger.warning(
                "Discarding unreadable record",
                extra={"key": key, "model": model.__name__},
            )
            return None

    async def _put_record(self, entity_type: str, record: BaseModel) -> None:
        key = self.entity_key(entity_type, record.id)  # type: ignore[attr-defined]
        await self.kv.set(key, record.model_dump_json(by_alias=True))

    async def _add_to_index(self, key: str, entity_id: str) -> None:
        """Append entity_id to the index at key unless already present."""
        async with self._lock_for(key):
            ids = await self._get_json(key, [])
            if entity_id not in ids:
                ids.append(entity_id)
                await self._set_json(key, ids)

    async def _index_ids(self, key: str) -> list[str]:
        ids = await self._get_json(key, [])
        return [str(i) for i in ids] if isinstance(ids, list) else []

    async def _load_many(
        self, model: type[ModelT], entity_type: str, ids: Iterable[str]
    ) -> list[ModelT]:
        records = await asyncio.gather(
            *(self._get_record(model, self.entity_key(entity_type, i)) for i in ids)
        )
        return [r for r in records if r is not None]

    async def _list_indexed(
        self, model: type[ModelT], entity_type: str, index: str
    ) -> list[ModelT]:
        return await self._load_many(model, entity_type, await self._index_ids(index))

    # -------------------------------------------------------------------------
    # Organization
    # -------------------------------------------------------------------------

    async def add_brokerage(self, brokerage: Brokerage) -> Brokerage:
        await self._put_record("brokerage", brokerage)
        await self._add_to_index(self.index_key("brokerages"), brokerage.id)
        return brokerage

    async def get_brokerage(self, brokerage_id: str) -> Brokerage | None:
        return await self._get_record(Brokerage, self.entity_key("brokerage", brokerage_id))

    async def list_brokerages(self) -> list[Brokerage]:
        return await self._list_indexed(Brokerage, "brokerage", self.index_key("brokerages"))

    async def add_office(self, office: Office) -> Office:
        await self._put_record("office", office)
        await self._add_to_index(self.index_key("offices", office.brokerage_id), office.id)
        return office

    async def get_office(self, office_id: str) -> Office | None:
        return await self._get_record(Office, self.entity_key("office", office_id))

    async def list_offices(self, brokerage_id: str) -> list[Office]:
        return await self._list_indexed(
            Office, "office", self.index_key("offices", brokerage_id)
        )

    async def add_team(self, team: Team) -> Team:
        await self._put_record("team", team)
        await self._add_to_index(self.index_key("teams", team.office_id), team.id)
        return team

    async def get_team(self, team_id: str) -> Team | None:
        return await self._get_record(Team, self.entity_key("team", team_id))

    async def list_teams(self, office_id: str) -> list[Team]:
        return await self._list_indexed(Team, "team", self.index_key("teams", office_id))

    async def add_user(self, user: User) -> User:
        await self._put_record("user", user)
        await self._add_to_index(self.index_key("users", user.brokerage_id), user.id)
        return user

    async def get_user(self, user_id: str) -> User | None:
        return await self._get_record(User, self.entity_key("user", user_id))

    async def list_users(self, brokerage_id: str) -> list[User]:
        return await self._list_indexed(User, "user", self.index_key("users", brokerage_id))

    async def add_membership(self, membership: Membership) -> Membership:
        await self._put_record("membership", membership)
        await self._add_to_index(
            self.index_key("memberships", membership.brokerage_id), membership.id
        )
        return membership

    async def list_memberships(self, brokerage_id: str) -> list[Membership]:
        return await self._list_indexed(
            Membership, "membership", self.index_key("memberships", brokerage_id)
        )

    # -------------------------------------------------------------------------
    # Presets
    # -------------------------------------------------------------------------

    async def add_preset(self, preset: Preset) -> Preset:
        await self._put_record("preset", preset)
        await self._add_to_index(self.index_key("presets", preset.brokerage_id), preset.id)
        if preset.office_id:
            await self._add_to_index(
                self.index_key("presets-office", preset.office_id), preset.id
            )
        return preset

    async def get_preset(self, preset_id: str) -> Preset | None:
        return await self._get_record(Preset, self.entity_key("preset", preset_id))

    async def save_preset(self, preset: Preset) -> Preset:
        preset.touch()
        await self._put_record("preset", preset)
        return preset

    async def list_presets(self, brokerage_id: str) -> list[Preset]:
        return await self._list_indexed(
            Preset, "preset", self.index_key("presets", brokerage_id)
        )

    async def list_office_presets(self, office_id: str) -> list[Preset]:
        return await self._list_indexed(
            Preset, "preset", self.index_key("presets-office", office_id)
        )

    # -------------------------------------------------------------------------
    # Jobs and children
    # -------------------------------------------------------------------------

    async def add_job(self, job: Job) -> Job:
        await self._put_record("job", job)
        await self._add_to_index(self.index_key("jobs", job.brokerage_id), job.id)
        await self._add_to_index(self.index_key("jobs-office", job.office_id), job.id)
        await self._add_to_index(self.index_key("jobs-agent", job.agent_user_id), job.id)
        return job

    async def get_job(self, job_id: str) -> Job | None:
        return await self._get_record(Job, self.entity_key("job", job_id))

    async def save_job(self, job: Job) -> Job:
        """Overwrite the stored job and refresh updated_at. Last writer wins."""
        job.touch()
        await self._put_record("job", job)
        return job

    async def list_jobs(self, brokerage_id: str) -> list[Job]:
        return await self._list_indexed(Job, "job", self.index_key("jobs", brokerage_id))

    async def list_office_jobs(self, office_id: str) -> list[Job]:
        return await self._list_indexed(Job, "job", self.index_key("jobs-office", office_id))

    async def list_agent_jobs(self, agent_user_id: str) -> list[Job]:
        return await self._list_indexed(
            Job, "job", self.index_key("jobs-agent", agent_user_id)
        )

    async def add_asset(self, asset: JobAsset) -> JobAsset:
        await self._put_record("job-asset", asset)
        await self._add_to_index(self.index_key("job-assets", asset.job_id), asset.id)
        return asset

    async def list_assets(self, job_id: str) -> list[JobAsset]:
        return await self._list_indexed(
            JobAsset, "job-asset", self.index_key("job-assets", job_id)
        )

    async def add_approval(self, approval: JobApproval) -> JobApproval:
        await self._put_record("job-approval", approval)
        await self._add_to_index(self.index_key("job-approvals", approval.job_id), approval.id)
        return approval

    async def list_approvals(self, job_id: str) -> list[JobApproval]:
        return await self._list_indexed(
            JobApproval, "job-approval", self.index_key("job-approvals", job_id)
        )

    async def add_delivery(self, delivery: JobDelivery) -> JobDelivery:
        await self._put_record("job-delivery", delivery)
        await self._add_to_index(
            self.index_key("job-deliveries", delivery.job_id), delivery.id
        )
        return delivery

    async def list_deliveries(self, job_id: str) -> list[JobDelivery]:
        return await self._list_indexed(
            JobDelivery, "job-delivery", self.index_key("job-deliveries", job_id)
        )

    async def add_revision(self, revision: JobRevision) -> JobRevision:
        await self._put_record("job-revision", revision)
        await self._add_to_index(
            self.index_key("job-revisions", revision.job_id), revision.id
        )
        return revision

    async def list_revisions(self, job_id: str) -> list[JobRevision]:
        return await self._list_indexed(
            JobRevision, "job-revision", self.index_key("job-revisions", job_id)
        )

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    async def append_audit_event(self, event: AuditEvent) -> AuditEvent:
        """Prepend an event to its brokerage log and assign its sequence number.

        The log keeps at most ``audit_max_entries`` events; the oldest fall off.
        """
        key = self.audit_key(event.brokerage_id)
        async with self._lock_for(key):
            sequence = await self.kv.incr(self.audit_sequence_key(event.brokerage_id))
            stored = event.model_copy(update={"sequence": sequence})
            events = await self._get_json(key, [])
            if not isinstance(events, list):
                events = []
            events.insert(0, stored.model_dump(mode="json", by_alias=True))
            await self._set_json(key, events[: self.audit_max_entries])
        return stored

    def clamp_audit_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.audit_default_limit
        return max(1, min(limit, self.audit_max_limit))

    async def list_audit_events(
        self, brokerage_id: str, limit: int | None = None
    ) -> list[AuditEvent]:
        """Most recent events first, at most the clamped limit."""
        events = await self._get_json(self.audit_key(brokerage_id), [])
        if not isinstance(events, list):
            return []
        page = events[: self.clamp_audit_limit(limit)]
        return [AuditEvent.model_validate(e) for e in page]
