"""
Tests for the HTTP API.

httpx's ASGI transport returns once the app call has finished, background
tasks included, so a workflow started by a POST is settled by the time the
response is available.
"""

import json

import pytest

from agent_office.middleware.correlation import CORRELATION_HEADER
from agent_office.workflows.orchestrator import build_orchestrator

from .conftest import FakeCompletionClient, unreachable


def parse_sse(body: str):
    """Return (event, data) pairs from an SSE body."""
    frames = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        frames.append((lines["event"], json.loads(lines["data"])))
    return frames


class TestHealth:
    """Health, metrics and admin endpoints."""

    @pytest.mark.asyncio
    async def test_health_reports_features(self, api_client):
        response = await api_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["features"] == {"completion": True, "github": False, "live_headlines": False}

    @pytest.mark.asyncio
    async def test_metrics_exposes_workflow_counters(self, api_client):
        await api_client.post("/workflows/general", json={"description": "Write a haiku"})

        response = await api_client.get("/metrics")

        assert response.status_code == 200
        assert "workflow_runs_total" in response.text
        assert "agent_tasks_total" in response.text

    @pytest.mark.asyncio
    async def test_providers(self, api_client):
        response = await api_client.get("/admin/providers")

        body = response.json()
        assert body["current_provider"] == "zhipu"
        assert body["current_valid"] is True
        assert body["providers"]["openai"]["configured"] is False

    @pytest.mark.asyncio
    async def test_connections_without_github_token(self, api_client):
        response = await api_client.get("/admin/connections")

        body = response.json()
        assert body["completion"]["success"] is True
        assert body["github"] == {"success": False, "message": "GITHUB_TOKEN not set"}

    @pytest.mark.asyncio
    async def test_correlation_id_is_echoed(self, api_client):
        response = await api_client.get("/health", headers={CORRELATION_HEADER: "req-123"})

        assert response.headers[CORRELATION_HEADER] == "req-123"

    @pytest.mark.asyncio
    async def test_correlation_id_is_generated(self, api_client):
        response = await api_client.get("/health")

        assert response.headers[CORRELATION_HEADER]


class TestWorkflowEndpoints:
    """Start, inspect and stream workflows."""

    @pytest.mark.asyncio
    async def test_news_workflow_completes(self, api_client):
        response = await api_client.post("/workflows/news", json={"query": "AI chips"})

        assert response.status_code == 202
        workflow_id = response.json()["workflow_id"]
        assert workflow_id.startswith("news-")

        status = (await api_client.get(f"/workflows/{workflow_id}")).json()
        assert status["status"] == "completed"
        assert status["progress"] == 100
        assert status["result"]["translated"] == "English summary: AI keeps advancing."
        assert status["result"]["source"] == "live"
        assert status["events"] > 0

    @pytest.mark.asyncio
    async def test_repository_workflow_suggest_only(self, api_client):
        response = await api_client.post("/workflows/repository", json={
            "repo_url": "https://github.com/acme/site",
            "requirements": "Add dark mode",
        })

        status = (await api_client.get(f"/workflows/{response.json()['workflow_id']}")).json()
        assert status["status"] == "completed"
        assert [c["path"] for c in status["result"]["changes"]] == ["app.py", "static/css/site.css"]

    @pytest.mark.asyncio
    async def test_failed_general_workflow(self, make_api_client, test_settings, bus):
        completion = FakeCompletionClient({"PM-Bot": unreachable()})
        orchestrator = build_orchestrator(test_settings, bus=bus, completion_client=completion)

        async with make_api_client(orchestrator, test_settings) as client:
            response = await client.post("/workflows/general", json={"description": "Write a haiku"})
            status = (await client.get(f"/workflows/{response.json()['workflow_id']}")).json()

        assert status["status"] == "failed"
        assert status["result"]["success"] is False

    @pytest.mark.asyncio
    async def test_list_recent_workflows(self, api_client):
        for query in ("one", "two"):
            await api_client.post("/workflows/news", json={"query": query})

        listing = (await api_client.get("/workflows", params={"limit": 5})).json()

        assert len(listing) == 2
        assert all(item["kind"] == "news" for item in listing)

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, api_client):
        response = await api_client.get("/workflows/news-missing")

        assert response.status_code == 404
        assert response.json()["error"] == "Not Found"
        assert response.json()["message"] == "Workflow not found"

        response = await api_client.get("/workflows/news-missing/events")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_event_stream_replays_progress_then_result(self, api_client):
        response = await api_client.post("/workflows/news", json={"query": "AI chips"})
        workflow_id = response.json()["workflow_id"]

        stream = await api_client.get(f"/workflows/{workflow_id}/events")

        assert stream.headers["content-type"].startswith("text/event-stream")
        frames = parse_sse(stream.text)
        kinds = [kind for kind, _ in frames]
        assert kinds[-1] == "result"
        assert set(kinds[:-1]) == {"progress"}
        assert all(data["workflow_id"] == workflow_id for _, data in frames[:-1])
        assert frames[-1][1]["status"] == "completed"


class TestValidation:
    """Request validation errors."""

    @pytest.mark.asyncio
    async def test_empty_query_is_rejected(self, api_client):
        response = await api_client.post(
            "/workflows/news", json={"query": ""}, headers={CORRELATION_HEADER: "req-422"}
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "Validation Error"
        assert body["details"][0]["field"] == "query"
        assert body["correlation_id"] == "req-422"

    @pytest.mark.asyncio
    async def test_missing_fields(self, api_client):
        response = await api_client.post("/workflows/repository", json={"repo_url": "https://github.com/acme/site"})

        assert response.status_code == 422
        assert [d["field"] for d in response.json()["details"]] == ["requirements"]


class TestServerEntryPoint:
    """The agent-office console script."""

    def test_run_serves_app_with_uvicorn(self, monkeypatch):
        from agent_office import main

        calls = []
        monkeypatch.setattr(main.uvicorn, "run", lambda app, **options: calls.append((app, options)))

        main.run()

        assert calls == [("agent_office.main:app", {
            "host": main.default_settings.HOST,
            "port": main.default_settings.PORT,
            "log_level": main.default_settings.LOG_LEVEL.lower(),
        })]
