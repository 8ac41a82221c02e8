"""Operational reporting over a brokerage's jobs.

Reports are computed on demand from the job index; nothing is
pre-aggregated. Both the summary and the CSV exports apply the same role
scoping and query filters.
"""

from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from listingflow.core.errors import validation_failed
from listingflow.db.models import AuditEventType, Job, JobStatus, Role
from listingflow.services.audit_log import AuditTrail
from listingflow.services.authz import Permission, assert_permission

if TYPE_CHECKING:
    from listingflow.db.repository import EntityStore
    from listingflow.services.authz import ActorContext

logger = logging.getLogger(__name__)


class ExportType(str, Enum):
    """CSV export flavours."""

    JOBS = "jobs"
    OFFICE_USAGE = "office-usage"
    REVISIONS = "revisions"


EXPORT_FILENAMES: dict[ExportType, str] = {
    ExportType.JOBS: "listingflow_jobs.csv",
    ExportType.OFFICE_USAGE: "listingflow_office_usage.csv",
    ExportType.REVISIONS: "listingflow_revisions.csv",
}

JOB_COLUMNS = [
    "job_id",
    "brokerage_id",
    "office_id",
    "team_id",
    "agent_user_id",
    "property_address",
    "mls_id",
    "status",
    "priority",
    "revision_count",
    "disclosure_required",
    "created_at",
    "submitted_at",
    "delivered_at",
    "completed_at",
]

OFFICE_USAGE_COLUMNS = ["office_id", "jobs", "completed", "revisions"]

REVISION_COLUMNS = [
    "revision_id",
    "job_id",
    "office_id",
    "requested_by_user_id",
    "reason_category",
    "notes",
    "cycle_number",
    "created_at",
]


def _parse_timestamp(value: str | None, field: str) -> datetime | None:
    value = (value or "").strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise validation_failed(f"{field} must be an ISO-8601 timestamp", **{field: value}) from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else ""


@dataclass(frozen=True)
class ReportFilters:
    """Query filters shared by the summary and the exports.

    ``created_from`` and ``created_to`` bound the job creation time
    (inclusive); the other fields are exact matches.
    """

    created_from: datetime | None = None
    created_to: datetime | None = None
    office_id: str | None = None
    team_id: str | None = None
    status: str | None = None
    edit_category: str | None = None
    agent_user_id: str | None = None

    @classmethod
    def from_query(
        cls,
        *,
        created_from: str | None = None,
        created_to: str | None = None,
        office_id: str | None = None,
        team_id: str | None = None,
        status: str | None = None,
        edit_category: str | None = None,
        agent_user_id: str | None = None,
    ) -> ReportFilters:
        """Build filters from raw query-string values; blanks mean no filter."""
        return cls(
            created_from=_parse_timestamp(created_from, "from"),
            created_to=_parse_timestamp(created_to, "to"),
            office_id=(office_id or "").strip() or None,
            team_id=(team_id or "").strip() or None,
            status=(status or "").strip() or None,
            edit_category=(edit_category or "").strip() or None,
            agent_user_id=(agent_user_id or "").strip() or None,
        )

    def matches(self, job: Job) -> bool:
        if self.created_from and job.created_at < self.created_from:
            return False
        if self.created_to and job.created_at > self.created_to:
            return False
        if self.office_id and job.office_id != self.office_id:
            return False
        if self.team_id and job.team_id != self.team_id:
            return False
        if self.status and job.status.value != self.status:
            return False
        if self.agent_user_id and job.agent_user_id != self.agent_user_id:
            return False
        return not (self.edit_category and self.edit_category not in job.requested_edit_categories)


def scope_filter_jobs(actor: ActorContext, jobs: list[Job]) -> list[Job]:
    """Narrow jobs to what the actor's role may report on."""
    if actor.role == Role.BROKERAGE_ADMIN:
        return jobs
    if actor.role == Role.OFFICE_ADMIN:
        return [j for j in jobs if j.office_id == actor.office_id] if actor.office_id else jobs
    if actor.role == Role.TEAM_LEAD:
        return [j for j in jobs if j.team_id == actor.team_id] if actor.team_id else jobs
    if actor.role == Role.AGENT:
        return [j for j in jobs if j.agent_user_id == actor.user_id]
    return jobs


def average_turnaround_hours(jobs: list[Job]) -> float:
    """Mean hours from submission to completion (or delivery), two decimals."""
    total_seconds = 0.0
    count = 0
    for job in jobs:
        start = job.submitted_at
        end = job.completed_at or job.delivered_at
        if start is None or end is None or end < start:
            continue
        total_seconds += (end - start).total_seconds()
        count += 1
    return round(total_seconds / count / 3600, 2) if count else 0.0


def _sorted_volume(counter: Counter[str]) -> list[dict[str, Any]]:
    return [{"key": key, "count": count} for key, count in counter.most_common()]


def summarize_jobs(jobs: list[Job]) -> dict[str, Any]:
    """Totals and volume breakdowns for a filtered job list."""
    revised = sum(1 for j in jobs if j.revision_count > 0)
    by_office: Counter[str] = Counter()
    by_agent: Counter[str] = Counter()
    by_category: Counter[str] = Counter()
    for job in jobs:
        by_office[job.office_id] += 1
        by_agent[job.agent_user_id] += 1
        by_category.update(job.requested_edit_categories)

    return {
        "totals": {
            "jobsCount": len(jobs),
            "jobsSubmitted": sum(1 for j in jobs if j.status != JobStatus.DRAFT),
            "jobsCompleted": sum(1 for j in jobs if j.status == JobStatus.COMPLETED),
            "averageTurnaroundHours": average_turnaround_hours(jobs),
            "revisionRate": round(revised / len(jobs) * 100, 2) if jobs else 0,
            "approvalBottlenecks": sum(1 for j in jobs if j.status == JobStatus.IN_REVIEW),
            "disclosureFlagged": sum(1 for j in jobs if j.disclosure_required),
        },
        "volumeByOffice": _sorted_volume(by_office),
        "volumeByAgent": _sorted_volume(by_agent),
        "volumeByEditCategory": _sorted_volume(by_category),
    }


def to_csv(columns: list[str], rows: list[dict[str, Any]]) -> str:
    """Render rows as CSV with a header line.

    Values containing a comma, quote or newline are quoted and embedded
    quotes doubled. None renders as an empty field.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if row.get(c) is None else row.get(c) for c in columns])
    return buffer.getvalue().rstrip("\n")


def job_rows(jobs: list[Job]) -> list[dict[str, Any]]:
    return [
        {
            "job_id": job.id,
            "brokerage_id": job.brokerage_id,
            "office_id": job.office_id,
            "team_id": job.team_id or "",
            "agent_user_id": job.agent_user_id,
            "property_address": job.property_address,
            "mls_id": job.mls_id or "",
            "status": job.status.value,
            "priority": job.priority.value,
            "revision_count": job.revision_count,
            "disclosure_required": "true" if job.disclosure_required else "false",
            "created_at": _iso(job.created_at),
            "submitted_at": _iso(job.submitted_at),
            "delivered_at": _iso(job.delivered_at),
            "completed_at": _iso(job.completed_at),
        }
        for job in jobs
    ]


def office_usage_rows(jobs: list[Job]) -> list[dict[str, Any]]:
    stats: dict[str, dict[str, Any]] = {}
    for job in jobs:
        row = stats.setdefault(
            job.office_id,
            {"office_id": job.office_id, "jobs": 0, "completed": 0, "revisions": 0},
        )
        row["jobs"] += 1
        if job.status == JobStatus.COMPLETED:
            row["completed"] += 1
        row["revisions"] += job.revision_count
    return list(stats.values())


@dataclass
class CsvExport:
    export_type: ExportType
    filename: str
    content: str
    row_count: int


class ReportService:
    """Summary reports and CSV exports, both gated by ``export:report``."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store
        self.audit = AuditTrail(store)

    async def _filtered_jobs(self, actor: ActorContext, filters: ReportFilters) -> list[Job]:
        assert_permission(actor.role, Permission.EXPORT_REPORT)
        jobs = scope_filter_jobs(actor, await self.store.list_jobs(actor.brokerage_id))
        return [j for j in jobs if filters.matches(j)]

    async def summary(self, actor: ActorContext, filters: ReportFilters) -> dict[str, Any]:
        return summarize_jobs(await self._filtered_jobs(actor, filters))

    async def _revision_rows(self, jobs: list[Job]) -> list[dict[str, Any]]:
        rows = []
        for job in jobs:
            for revision in await self.store.list_revisions(job.id):
                rows.append(
                    {
                        "revision_id": revision.id,
                        "job_id": revision.job_id,
                        "office_id": revision.office_id,
                        "requested_by_user_id": revision.requested_by_user_id,
                        "reason_category": revision.reason_category,
                        "notes": revision.notes or "",
                        "cycle_number": revision.cycle_number,
                        "created_at": _iso(revision.created_at),
                    }
                )
        return rows

    async def export(
        self, actor: ActorContext, export_type: str | None, filters: ReportFilters
    ) -> CsvExport:
        """Render one of the CSV exports and record a REPORT_EXPORTED event."""
        raw = (export_type or ExportType.JOBS.value).strip().lower()
        try:
            kind = ExportType(raw)
        except ValueError:
            raise validation_failed(
                "type must be jobs, office-usage, or revisions", type=raw
            ) from None

        jobs = await self._filtered_jobs(actor, filters)
        if kind == ExportType.JOBS:
            columns, rows = JOB_COLUMNS, job_rows(jobs)
        elif kind == ExportType.OFFICE_USAGE:
            columns, rows = OFFICE_USAGE_COLUMNS, office_usage_rows(jobs)
        else:
            columns, rows = REVISION_COLUMNS, await self._revision_rows(jobs)

        await self.audit.emit(
            AuditEventType.REPORT_EXPORTED,
            actor,
            actor,
            target_entity_type="report",
            target_entity_id=kind.value,
            after_snapshot={"type": kind.value, "rowCount": len(rows)},
        )
        logger.info(
            "Report exported",
            extra={"export_type": kind.value, "row_count": len(rows), "request_id": actor.request_id},
        )
        return CsvExport(
            export_type=kind,
            filename=EXPORT_FILENAMES[kind],
            content=to_csv(columns, rows),
            row_count=len(rows),
        )
