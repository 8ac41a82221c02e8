"""listingflow API routers.

All routers are mounted under /api:
- org: bootstrap, brokerages, offices, teams, users, memberships, presets
- jobs: job creation, transitions, approvals, deliveries, revisions, queries
- reports: audit events, report summary, CSV exports
"""

from listingflow.api.routers.jobs import router as jobs_router
from listingflow.api.routers.org import router as org_router
from listingflow.api.routers.reports import router as reports_router

__all__ = [
    "jobs_router",
    "org_router",
    "reports_router",
]
