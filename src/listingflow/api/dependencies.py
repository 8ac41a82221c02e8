"""FastAPI dependencies wiring the store and services into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from listingflow.api.middleware.actor import require_actor
from listingflow.core.config import Settings
from listingflow.db.repository import EntityStore
from listingflow.services.audit_log import AuditTrail
from listingflow.services.authz import ActorContext
from listingflow.services.jobs import JobService
from listingflow.services.organization import OrganizationService
from listingflow.services.reporting import ReportService


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> EntityStore:
    """The entity store built at application startup."""
    return request.app.state.store


def get_job_service(store: Annotated[EntityStore, Depends(get_store)]) -> JobService:
    return JobService(store)


def get_organization_service(
    store: Annotated[EntityStore, Depends(get_store)],
) -> OrganizationService:
    return OrganizationService(store)


def get_report_service(store: Annotated[EntityStore, Depends(get_store)]) -> ReportService:
    return ReportService(store)


def get_audit_trail(store: Annotated[EntityStore, Depends(get_store)]) -> AuditTrail:
    return AuditTrail(store)


Actor = Annotated[ActorContext, Depends(require_actor)]
AppSettings = Annotated[Settings, Depends(get_settings_from_app)]
Jobs = Annotated[JobService, Depends(get_job_service)]
Organization = Annotated[OrganizationService, Depends(get_organization_service)]
Reports = Annotated[ReportService, Depends(get_report_service)]
Audit = Annotated[AuditTrail, Depends(get_audit_trail)]
