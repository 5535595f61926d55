"""
HTTP API tests; the lifespan is not run, the orchestrator is wired directly
"""

import asyncio
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from schedule_resolver.document_store import InMemoryDocumentStore
from schedule_resolver.main import app, cleanup_loop
from schedule_resolver.orchestrator import build_orchestrator

from conftest import TODAY, FakeClassifier, FakeClock, make_settings


@pytest.fixture
def orchestrator():
    return build_orchestrator(make_settings(), InMemoryDocumentStore(), FakeClassifier(), clock=FakeClock(),
                              today=lambda: TODAY)


@pytest.fixture
def client(orchestrator):
    app.state.orchestrator = orchestrator
    yield TestClient(app)
    del app.state.orchestrator


class TestAPI:
    """Test cases for the HTTP endpoints"""

    def test_resolve(self, client):
        response = client.post("/resolve", json={"text": "cancel math course", "user_id": "u1"})

        assert response.status_code == 200
        body = response.json()
        assert body["bypass"] is False
        assert body["decision"]["final_intent"] == "cancel_course"
        assert body["decision"]["rule_id"] == "P4"

    def test_resolve_bypass(self, client):
        response = client.post("/resolve", json={"text": "list all courses", "user_id": "u1"})

        body = response.json()
        assert body["bypass"] is True
        assert body["query"]["query_type"] == "course_list"
        assert body["decision"] is None

    def test_resolve_rejects_empty_text(self, client):
        response = client.post("/resolve", json={"text": "   ", "user_id": "u1"})
        assert response.status_code == 400

    def test_resolve_validates_body(self, client):
        response = client.post("/resolve", json={"text": "cancel math course"})
        assert response.status_code == 422

    def test_get_memory(self, client):
        client.post("/resolve", json={"text": "Add piano lessons for Emma every Monday at 4pm", "user_id": "u1"})

        response = client.get("/memory/u1")

        body = response.json()
        assert body["record_count"] == 1
        assert body["memory"]["students"]["Emma"]["courses"][0]["course_name"] == "piano"
        assert body["summary"].startswith("Emma: piano (weekly, Monday, 16:00")

    def test_get_memory_unknown_user(self, client):
        body = client.get("/memory/nobody").json()
        assert body == {"memory": body["memory"], "summary": "", "record_count": 0}
        assert body["memory"]["students"] == {}

    def test_flush_without_batching(self, client):
        response = client.post("/memory/flush")
        assert response.json() == {"flushed": 0, "failed": 0, "errors": {}}

    def test_stats(self, client):
        client.post("/resolve", json={"text": "cancel math course", "user_id": "u1"})

        stats = client.get("/stats").json()

        assert stats["orchestrator"]["total"] == 1
        assert stats["context"]["active_contexts"] == 1

    def test_health_without_redis(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["redis"] is False
        assert body["rules_loaded"] == 8

    def test_metrics(self, client):
        client.post("/resolve", json={"text": "cancel math course", "user_id": "u1"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "resolver_resolutions_total" in response.text
        assert "resolver_active_contexts" in response.text


class TestCleanupLoop:
    """Test cases for the background expiry sweep"""

    @pytest.mark.asyncio
    async def test_sweeps_until_cancelled(self):
        orchestrator = Mock()
        orchestrator.cleanup_expired.return_value = {"contexts": 1, "cache_entries": 0}

        task = asyncio.create_task(cleanup_loop(orchestrator, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.cleanup_expired.call_count >= 2

    @pytest.mark.asyncio
    async def test_failed_sweep_does_not_stop_loop(self):
        orchestrator = Mock()
        orchestrator.cleanup_expired.side_effect = RuntimeError("boom")

        task = asyncio.create_task(cleanup_loop(orchestrator, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()

        assert orchestrator.cleanup_expired.call_count >= 2
