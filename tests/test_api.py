"""Tests for the listingflow API application.

Tests cover:
- App factory (create_app)
- Health endpoint and request ID middleware
- Failure envelope for domain, validation, routing and unexpected errors
- The job workflow driven end to end over HTTP
- Audit, reporting and CSV export endpoints
"""

import json
import uuid

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from listingflow.api import create_app
from listingflow.api.middleware.errors import build_error_response
from listingflow.api.middleware.request_id import REQUEST_ID_HEADER
from listingflow.core.config import Environment, Settings
from listingflow.core.errors import ErrorCode
from listingflow.db import MemoryKeyValueStore


class TestAppFactory:
    """Tests for the create_app factory function."""

    def test_create_app_returns_fastapi_instance(self):
        """Test that create_app returns a FastAPI application."""
        app = create_app(kv=MemoryKeyValueStore())
        assert isinstance(app, FastAPI)
        assert app.title == "listingflow API"
        assert app.version == "0.1.0"

    def test_create_app_docs_urls(self):
        """Test that the documentation URLs live under /api."""
        app = create_app(kv=MemoryKeyValueStore())
        assert app.docs_url == "/api/docs"
        assert app.redoc_url == "/api/redoc"
        assert app.openapi_url == "/api/openapi.json"

    def test_create_app_stores_settings_and_store(self):
        """Test that settings and the entity store are on app state."""
        settings = Settings(environment=Environment.STAGING)
        kv = MemoryKeyValueStore()
        app = create_app(settings, kv=kv)
        assert app.state.settings is settings
        assert app.state.store.kv is kv

    async def test_openapi_lists_workflow_routes(self, api_client: AsyncClient):
        """Test that the OpenAPI document includes the workflow endpoints."""
        response = await api_client.get("/api/openapi.json")
        assert response.status_code == 200
        paths = response.json()["paths"]
        for path in ("/api/jobs", "/api/job-transition", "/api/approvals", "/api/report-export"):
            assert path in paths


class TestHealthAndRequestId:
    """Tests for /health and the X-Request-ID middleware."""

    async def test_health(self, api_client: AsyncClient):
        response = await api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "store": {"healthy": True, "backend": "memory"},
        }

    async def test_generated_request_id_is_uuid(self, api_client: AsyncClient):
        """Test that a missing X-Request-ID is replaced by a UUID."""
        response = await api_client.get("/health")
        request_id = response.headers[REQUEST_ID_HEADER]
        assert str(uuid.UUID(request_id)) == request_id

    async def test_request_id_flows_into_envelope_and_audit(
        self, api_client: AsyncClient, admin_headers
    ):
        """Test that a client request id reaches the envelope and audit events."""
        headers = {**admin_headers, REQUEST_ID_HEADER: "req-abc-123"}
        response = await api_client.post("/api/offices", json={"name": "East"}, headers=headers)
        assert response.headers[REQUEST_ID_HEADER] == "req-abc-123"
        assert response.json()["requestId"] == "req-abc-123"

        audit = await api_client.get("/api/audit-events", headers=admin_headers)
        latest = audit.json()["data"]["events"][0]
        assert latest["eventType"] == "ORG_STRUCTURE_CHANGED"
        assert latest["requestId"] == "req-abc-123"

    async def test_failure_carries_request_id(self, api_client: AsyncClient):
        response = await api_client.get("/api/jobs", headers={REQUEST_ID_HEADER: "req-fail-1"})
        assert response.headers[REQUEST_ID_HEADER] == "req-fail-1"
        assert response.json()["requestId"] == "req-fail-1"


class TestErrorResponses:
    """Tests for the failure envelope."""

    def test_build_error_response_uses_code_status(self):
        response = build_error_response(
            ErrorCode.CONFLICT, "Already decided", details={"currentStatus": "Approved for Processing"}
        )
        assert response.status_code == 409
        body = json.loads(response.body.decode())
        assert body["ok"] is False
        assert body["error"] == {
            "code": "CONFLICT",
            "message": "Already decided",
            "details": {"currentStatus": "Approved for Processing"},
        }
        assert "requestId" in body

    async def test_missing_actor_headers(self, api_client: AsyncClient):
        """Test that actor headers are required on workflow routes."""
        response = await api_client.get("/api/jobs")
        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "FORBIDDEN"
        assert error["message"] == "Missing actor headers"
        assert error["details"]["requiredHeaders"] == [
            "X-LF-User-Id",
            "X-LF-Role",
            "X-LF-Brokerage-Id",
        ]

    async def test_unknown_role(self, api_client: AsyncClient, make_headers):
        response = await api_client.get("/api/jobs", headers=make_headers("usr_1", "Owner", "brg_1"))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_FAILED"

    async def test_unknown_route(self, api_client: AsyncClient):
        response = await api_client.get("/api/does-not-exist")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_method_not_allowed(self, api_client: AsyncClient, admin_headers):
        response = await api_client.delete("/api/jobs", headers=admin_headers)
        assert response.status_code == 405
        assert response.json()["error"]["code"] == "VALIDATION_FAILED"

    async def test_malformed_json_body(self, api_client: AsyncClient, admin_headers):
        response = await api_client.post(
            "/api/jobs",
            content=b"{not json",
            headers={**admin_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "VALIDATION_FAILED"
        assert body["error"]["details"]["errors"]

    async def test_missing_body(self, api_client: AsyncClient, admin_headers):
        response = await api_client.post("/api/approvals", headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_FAILED"

    async def test_unexpected_error_is_internal(self, test_app, api_client: AsyncClient):
        """Test that unhandled exceptions do not leak internals."""

        async def explode():
            raise RuntimeError("database password is hunter2")

        test_app.add_api_route("/api/explode", explode)
        response = await api_client.get("/api/explode")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error == {
            "code": "INTERNAL_ERROR",
            "message": "Unexpected server error",
            "details": {},
        }


# ---------------------------------------------------------------------------
# Workflow over HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
async def org(api_client: AsyncClient, bootstrapped, admin_headers, make_headers) -> dict:
    """Bootstrapped brokerage plus a review preset and an agent on the team."""
    brokerage_id = bootstrapped["brokerage"]["id"]
    office_id = bootstrapped["office"]["id"]
    team_id = bootstrapped["team"]["id"]

    preset = await api_client.post(
        "/api/presets",
        json={
            "name": "Staging with review",
            "scopeType": "brokerage",
            "scopeId": brokerage_id,
            "allowedEditTypes": ["Virtual Staging", "Twilight"],
            "approvalRequired": True,
            "disclosureRequiredDefault": True,
        },
        headers=admin_headers,
    )
    assert preset.status_code == 200, preset.text

    user = await api_client.post(
        "/api/users",
        json={
            "email": "Ada@Harbour.test",
            "name": "Ada Agent",
            "role": "Agent",
            "scopeType": "team",
            "officeId": office_id,
            "teamId": team_id,
        },
        headers=admin_headers,
    )
    assert user.status_code == 200, user.text
    agent_id = user.json()["data"]["user"]["id"]

    return {
        "brokerage_id": brokerage_id,
        "office_id": office_id,
        "team_id": team_id,
        "preset_id": preset.json()["data"]["preset"]["id"],
        "agent": make_headers(agent_id, "Agent", brokerage_id, office_id, team_id),
        "reviewer": make_headers("usr_reviewer", "Reviewer", brokerage_id, office_id),
        "partner": make_headers("usr_partner", "MediaPartner", brokerage_id, office_id),
        "admin": admin_headers,
    }


async def submit_job(api_client: AsyncClient, org: dict, **overrides) -> dict:
    body = {
        "propertyAddress": "12 Harbour View Rd",
        "selectedPresetId": org["preset_id"],
        "requestedEditCategories": ["Virtual Staging"],
        "assets": [{"url": "https://cdn.example/raw/living.jpg", "name": "living.jpg"}],
    }
    body.update(overrides)
    response = await api_client.post("/api/jobs", json=body, headers=org["agent"])
    assert response.status_code == 200, response.text
    return response.json()["data"]


class TestJobWorkflowApi:
    """The job lifecycle through the HTTP surface."""

    async def test_full_lifecycle(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org)
        job = created["job"]
        assert job["status"] == "In Review"
        assert job["officeId"] == org["office_id"]
        assert job["teamId"] == org["team_id"]
        assert job["disclosureRequired"] is True
        assert len(created["assets"]) == 1
        job_id = job["id"]

        approved = await api_client.post(
            "/api/approvals",
            json={"jobId": job_id, "decision": "approve", "note": "Looks right"},
            headers=org["reviewer"],
        )
        assert approved.status_code == 200, approved.text
        assert approved.json()["data"]["job"]["status"] == "Approved for Processing"
        assert approved.json()["data"]["approval"]["decision"] == "approve"

        processing = await api_client.post(
            "/api/job-transition",
            json={"jobId": job_id, "toStatus": "Processing"},
            headers=org["partner"],
        )
        assert processing.json()["data"]["job"]["status"] == "Processing"

        delivered = await api_client.post(
            "/api/deliveries",
            json={"jobId": job_id, "outputs": [{"url": "https://example/a.jpg"}]},
            headers=org["partner"],
        )
        assert delivered.status_code == 200, delivered.text
        data = delivered.json()["data"]
        assert data["job"]["status"] == "Delivered"
        assert data["job"]["deliveredAt"]
        assert data["delivery"]["outputAssetIds"] == [data["assets"][0]["id"]]
        assert data["delivery"]["disclosureFlagPresent"] is True

        revision = await api_client.post(
            "/api/revisions",
            json={"jobId": job_id, "reasonCategory": "color", "notes": "Too warm"},
            headers=org["agent"],
        )
        assert revision.status_code == 200, revision.text
        assert revision.json()["data"]["revision"]["cycleNumber"] == 0
        assert revision.json()["data"]["job"]["revisionCount"] == 1

        detail = await api_client.get(
            "/api/job-detail", params={"jobId": job_id}, headers=org["agent"]
        )
        detail_data = detail.json()["data"]
        assert detail_data["job"]["status"] == "Revision Requested"
        assert len(detail_data["assets"]) == 2
        assert len(detail_data["approvals"]) == 1
        assert len(detail_data["revisions"]) == 1
        assert len(detail_data["deliveries"]) == 1

    async def test_draft_submission_routes(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org, submit=False)
        assert created["job"]["status"] == "Draft"

        response = await api_client.post(
            "/api/job-transition",
            json={"jobId": created["job"]["id"], "toStatus": "Submitted"},
            headers=org["agent"],
        )
        assert response.status_code == 200
        assert response.json()["data"]["job"]["status"] == "In Review"

    async def test_unknown_target_status(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org)
        response = await api_client.post(
            "/api/job-transition",
            json={"jobId": created["job"]["id"], "toStatus": "Archived"},
            headers=org["admin"],
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_FAILED"

    async def test_invalid_transition_is_conflict_status(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org)
        response = await api_client.post(
            "/api/job-transition",
            json={"jobId": created["job"]["id"], "toStatus": "Completed"},
            headers=org["admin"],
        )
        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "INVALID_TRANSITION"
        assert error["details"] == {
            "from": "In Review",
            "to": "Completed",
            "actorRole": "BrokerageAdmin",
        }

    async def test_second_approval_conflicts(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org)
        body = {"jobId": created["job"]["id"], "decision": "approve"}
        first = await api_client.post("/api/approvals", json=body, headers=org["reviewer"])
        second = await api_client.post("/api/approvals", json=body, headers=org["reviewer"])
        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "CONFLICT"

    async def test_empty_delivery_rejected(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org)
        job_id = created["job"]["id"]
        await api_client.post(
            "/api/approvals", json={"jobId": job_id, "decision": "approve"}, headers=org["reviewer"]
        )
        await api_client.post(
            "/api/job-transition",
            json={"jobId": job_id, "toStatus": "Processing"},
            headers=org["partner"],
        )

        response = await api_client.post(
            "/api/deliveries", json={"jobId": job_id, "outputs": []}, headers=org["partner"]
        )
        assert response.status_code == 400
        detail = await api_client.get(
            "/api/job-detail", params={"jobId": job_id}, headers=org["admin"]
        )
        assert detail.json()["data"]["job"]["status"] == "Processing"

    async def test_cross_brokerage_access_denied(self, api_client: AsyncClient, org, make_headers):
        created = await submit_job(api_client, org)
        outsider = make_headers("usr_x", "BrokerageAdmin", "brg_other")
        response = await api_client.get(
            "/api/job-detail", params={"jobId": created["job"]["id"]}, headers=outsider
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "TENANT_SCOPE_VIOLATION"

    async def test_missing_job(self, api_client: AsyncClient, org):
        response = await api_client.get(
            "/api/job-detail", params={"jobId": "job_missing"}, headers=org["admin"]
        )
        assert response.status_code == 404
        assert response.json()["error"]["details"] == {"jobId": "job_missing"}

    async def test_list_jobs_with_assets(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org)
        response = await api_client.get(
            "/api/jobs", params={"includeAssets": "true"}, headers=org["agent"]
        )
        jobs = response.json()["data"]["jobs"]
        assert [j["id"] for j in jobs] == [created["job"]["id"]]
        assert jobs[0]["assets"][0]["url"] == "https://cdn.example/raw/living.jpg"

        plain = await api_client.get("/api/jobs", headers=org["agent"])
        assert "assets" not in plain.json()["data"]["jobs"][0]

    async def test_review_queue(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org)
        response = await api_client.get(
            "/api/review-queue", params={"includeApprovals": "true"}, headers=org["reviewer"]
        )
        queue = response.json()["data"]["queue"]
        assert [j["id"] for j in queue] == [created["job"]["id"]]
        assert queue[0]["approvals"] == []

        denied = await api_client.get("/api/review-queue", headers=org["agent"])
        assert denied.status_code == 403


class TestReportingApi:
    """Audit log, summary report and CSV exports."""

    async def test_audit_events_limit(self, api_client: AsyncClient, org):
        await submit_job(api_client, org)
        response = await api_client.get(
            "/api/audit-events", params={"limit": 2}, headers=org["admin"]
        )
        events = response.json()["data"]["events"]
        assert len(events) == 2
        assert events[0]["sequence"] > events[1]["sequence"]
        assert events[0]["eventType"] == "JOB_STATUS_CHANGED"

    async def test_audit_events_forbidden_for_agent(self, api_client: AsyncClient, org):
        response = await api_client.get("/api/audit-events", headers=org["agent"])
        assert response.status_code == 403

    async def test_audit_events_bad_limit(self, api_client: AsyncClient, org):
        response = await api_client.get(
            "/api/audit-events", params={"limit": "many"}, headers=org["admin"]
        )
        assert response.status_code == 400

    async def test_report_summary(self, api_client: AsyncClient, org):
        await submit_job(api_client, org)
        await submit_job(api_client, org, requestedEditCategories=["Twilight"])

        response = await api_client.get("/api/reports", headers=org["admin"])
        data = response.json()["data"]
        assert data["totals"]["jobsCount"] == 2
        assert data["totals"]["approvalBottlenecks"] == 2
        assert data["volumeByOffice"] == [{"key": org["office_id"], "count": 2}]

        filtered = await api_client.get(
            "/api/reports", params={"editCategory": "Twilight"}, headers=org["admin"]
        )
        assert filtered.json()["data"]["totals"]["jobsCount"] == 1

    async def test_report_invalid_date(self, api_client: AsyncClient, org):
        response = await api_client.get(
            "/api/reports", params={"from": "yesterday"}, headers=org["admin"]
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_FAILED"

    async def test_csv_export(self, api_client: AsyncClient, org):
        created = await submit_job(api_client, org)
        response = await api_client.get(
            "/api/report-export", params={"type": "jobs"}, headers=org["admin"]
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "text/csv; charset=utf-8"
        assert (
            response.headers["content-disposition"]
            == 'attachment; filename="listingflow_jobs.csv"'
        )
        lines = response.text.split("\n")
        assert lines[0].startswith("job_id,brokerage_id,office_id")
        assert lines[1].startswith(created["job"]["id"])

    async def test_csv_export_unknown_type(self, api_client: AsyncClient, org):
        response = await api_client.get(
            "/api/report-export", params={"type": "xlsx"}, headers=org["admin"]
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_FAILED"
