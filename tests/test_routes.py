# ============================================================================
# API ROUTE TESTS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Tests - FastAPI endpoints
# PURPOSE: Verify status codes and payloads of the HTTP surface
# CREATED: 16 OCT 2026
# ============================================================================
"""
API Route Tests

Uses FastAPI TestClient against the router with an in-memory
orchestrator (workers not started, so queued jobs stay WAITING).

Run with:
    pytest tests/test_routes.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import router, set_services
from core.config import Defaults, reset_defaults
from orchestrator import ResourceOrchestrator
from services import EchoGenerationBackend


# ============================================================================
# FIXTURES
# ============================================================================

def _make_test_app(orchestrator):
    """Create a test FastAPI app with the router and the given orchestrator."""
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    set_services(orchestrator)
    return app


@pytest.fixture
def orchestrator(rich_registry, resource_store):
    asyncio.run(resource_store.seed("u1", ["product-name"]))
    return ResourceOrchestrator.create(
        defaults=Defaults(),
        registry=rich_registry,
        resource_store=resource_store,
        generation_backend=EchoGenerationBackend(),
    )


@pytest.fixture
def client(orchestrator):
    return TestClient(_make_test_app(orchestrator))


# ============================================================================
# RESOURCES
# ============================================================================

class TestResourceRoutes:
    """GET /resources"""

    def test_list_all(self, client):
        resp = client.get("/api/v1/resources")
        assert resp.status_code == 200
        assert resp.json()["total"] == 5

    def test_filter_by_tier(self, client):
        resp = client.get("/api/v1/resources", params={"tier": 1})
        ids = [r["resource_id"] for r in resp.json()["resources"]]
        assert sorted(ids) == ["icp", "pains"]

    def test_filter_by_category(self, client):
        resp = client.get("/api/v1/resources", params={"category": "input"})
        assert [r["resource_id"] for r in resp.json()["resources"]] == ["product-name"]

    def test_unknown_category(self, client):
        assert client.get("/api/v1/resources", params={"category": "bogus"}).status_code == 400

    def test_get_one(self, client):
        resp = client.get("/api/v1/resources/positioning")
        assert resp.status_code == 200
        assert resp.json()["optional_dependencies"] == ["pains"]

    def test_get_missing(self, client):
        assert client.get("/api/v1/resources/zzz").status_code == 404


# ============================================================================
# VALIDATION
# ============================================================================

class TestValidationRoutes:
    """Validation, availability and recommendations."""

    def test_validate_missing(self, client):
        resp = client.get("/api/v1/users/u1/validate/positioning")
        assert resp.status_code == 200
        body = resp.json()
        assert body["valid"] is False
        assert body["missing_required_ids"] == ["icp"]
        assert body["suggested_order"] == ["icp", "positioning"]

    def test_validate_unknown_is_200(self, client):
        resp = client.get("/api/v1/users/u1/validate/zzz")
        assert resp.status_code == 200
        assert resp.json()["error"] is not None

    def test_validate_batch(self, client):
        resp = client.post("/api/v1/users/u1/validate-batch", json={"resource_ids": ["icp", "messaging"]})
        assert resp.status_code == 200
        summary = resp.json()["summary"]
        assert summary["total"] == 2
        assert summary["valid"] == 1
        assert summary["invalid"] == 1

    def test_validate_batch_requires_ids(self, client):
        resp = client.post("/api/v1/users/u1/validate-batch", json={"resource_ids": []})
        assert resp.status_code == 422

    def test_available(self, client):
        resp = client.get("/api/v1/users/u1/available")
        assert [r["resource_id"] for r in resp.json()["resources"]] == ["icp", "pains"]

    def test_recommended_limit(self, client):
        resp = client.get("/api/v1/users/u1/recommended", params={"limit": 1})
        assert resp.json()["total"] == 1

    def test_store_failure_is_503(self):
        orchestrator = MagicMock()
        orchestrator.validator.get_available_resources = AsyncMock(side_effect=ConnectionError("down"))
        client = TestClient(_make_test_app(orchestrator))

        assert client.get("/api/v1/users/u1/available").status_code == 503


# ============================================================================
# GENERATION & JOBS
# ============================================================================

class TestGenerationRoutes:
    """Submission and job status."""

    def test_generate_accepted(self, client):
        resp = client.post("/api/v1/users/u1/generate/icp")
        assert resp.status_code == 202
        body = resp.json()
        assert body["job_id"].startswith("generation-u1-")
        assert body["status"] == "waiting"
        assert body["deduplicated"] is False

        status = client.get(f"/api/v1/jobs/{body['job_id']}")
        assert status.status_code == 200
        assert status.json()["data"] == {"user_id": "u1", "resource_id": "icp"}

    def test_generate_twice_deduplicated(self, client):
        first = client.post("/api/v1/users/u1/generate/icp").json()
        second = client.post("/api/v1/users/u1/generate/icp").json()
        assert second["job_id"] == first["job_id"]
        assert second["deduplicated"] is True

    def test_generate_missing_dependencies_409(self, client):
        resp = client.post("/api/v1/users/u1/generate/messaging")
        assert resp.status_code == 409
        body = resp.json()
        assert body["validation"]["missing_required_ids"] == ["positioning", "icp"]

    def test_generate_batch(self, client):
        resp = client.post("/api/v1/users/u1/generate-batch", json={"resource_ids": ["icp", "pains"]})
        assert resp.status_code == 202
        assert resp.json()["queue_name"] == "batch-generation"

    def test_job_not_found(self, client):
        assert client.get("/api/v1/jobs/generation-u1-0").status_code == 404

    def test_queue_stats(self, client):
        client.post("/api/v1/users/u1/generate/icp")
        resp = client.get("/api/v1/queues/stats")
        body = resp.json()
        assert body["backend"] == "memory"
        assert body["queues"]["resource-generation"]["waiting"] == 1


# ============================================================================
# APPLICATION
# ============================================================================

class TestApplication:
    """Full app with lifespan on the in-memory backend."""

    def test_health_endpoints(self, monkeypatch):
        monkeypatch.delenv("ORCHESTRATOR_BACKEND", raising=False)
        monkeypatch.delenv("RESOURCE_DEFINITIONS_PATH", raising=False)
        reset_defaults()
        try:
            from main import app

            with TestClient(app) as client:
                assert client.get("/livez").json() == {"status": "alive"}
                assert client.get("/readyz").status_code == 200

                health = client.get("/health")
                assert health.status_code == 200
                body = health.json()
                assert body["backend"] == "memory"
                assert body["registry_size"] > 20

                resources = client.get("/api/v1/resources", params={"category": "input"}).json()
                assert all(r["tier"] == 0 for r in resources["resources"])
        finally:
            reset_defaults()
