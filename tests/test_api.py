"""Tests for API endpoints."""

import asyncio
import json
from functools import partial

import pytest
from fastapi.testclient import TestClient

from conftest import FakeGitHub, make_commit_item, no_sleep_recorder
from contrib_attribution.analysis.dispatcher import ModeDispatcher
from contrib_attribution.analysis.models import AnalysisRequest
from contrib_attribution.api.dependencies import get_dispatcher_factory
from contrib_attribution.api.main import app
from contrib_attribution.api.routes.analysis import analyze_stream
from contrib_attribution.config import PipelineConfig


def sse_events(body):
    """Decode the data frames of an SSE body, skipping comments."""
    return [
        json.loads(frame[len("data: "):])
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]


@pytest.fixture
def fake_remote():
    return FakeGitHub([make_commit_item(i) for i in range(3)])


@pytest.fixture
def client(fake_remote):
    """Test client whose dispatchers talk to the fake GitHub API."""
    factory = partial(
        ModeDispatcher,
        settings=PipelineConfig(page_delay_ms=0, batch_delay_ms=0),
        client_factory=lambda token: fake_remote.client(token),
        sleep=no_sleep_recorder(),
    )
    app.dependency_overrides[get_dispatcher_factory] = lambda: factory
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_basic_health_check(self, client):
        response = client.get("/api/v1/health/")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["services"]["git"].startswith("healthy")

    def test_root(self, client):
        data = client.get("/").json()
        assert "hybrid" in data["modes"]
        assert data["endpoints"]["stream"] == "/api/v1/analyze/stream"


class TestAnalyzeEndpoint:
    """Test the one-shot analysis endpoint."""

    def test_blame_analysis(self, client, sample_repo):
        response = client.post("/api/v1/analyze", json={"mode": "blame", "repoPath": str(sample_repo.path)})

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "blame"
        assert data["totalLines"] == 13
        assert data["filesProcessed"] == 3
        assert data["authors"][0]["identity"]["canonicalEmail"] == "alice@example.com"

    def test_missing_fields(self, client):
        response = client.post("/api/v1/analyze", json={"mode": "hybrid", "owner": "octo", "repo": "widgets"})

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "INVALID_REQUEST"
        assert "repoPath" in data["message"]

    def test_unknown_mode(self, client):
        response = client.post("/api/v1/analyze", json={"mode": "everything"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_empty_repository(self, client, repo_builder):
        response = client.post("/api/v1/analyze", json={"mode": "commits", "repoPath": str(repo_builder.path)})

        assert response.status_code == 404
        assert response.json()["code"] == "EMPTY_REPOSITORY"

    def test_not_a_repository(self, client, temp_dir):
        response = client.post("/api/v1/analyze", json={"mode": "blame", "repoPath": str(temp_dir)})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REPOSITORY"

    def test_legacy_with_bearer_token(self, client, fake_remote):
        response = client.post(
            "/api/v1/analyze",
            json={"mode": "legacy", "owner": "octo", "repo": "widgets"},
            headers={"Authorization": "Bearer test-token"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["metadata"]["analyzedCommits"] == 3
        assert data["contributors"][0]["commitCount"] == 3
        assert fake_remote.requests[0].headers["Authorization"] == "Bearer test-token"

    def test_rate_limited(self, client, fake_remote):
        fake_remote.remaining = 5

        response = client.post(
            "/api/v1/analyze",
            json={"mode": "legacy", "owner": "octo", "repo": "widgets"},
            headers={"Authorization": "Bearer test-token"},
        )

        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMITED"
        assert "Retry-After" in response.headers


class TestStreamEndpoint:
    """Test the server-sent events endpoint."""

    def test_stream_ends_with_complete(self, client, sample_repo):
        response = client.post(
            "/api/v1/analyze/stream", json={"mode": "commits", "repoPath": str(sample_repo.path)}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        events = sse_events(response.text)
        assert events[-1]["type"] == "complete"
        assert events[-1]["percent"] == 100
        assert events[-1]["result"]["totalCommits"] == 4
        assert [e["type"] for e in events].count("complete") == 1
        assert all(e["type"] == "progress" for e in events[:-1])
        percents = [e["percent"] for e in events]
        assert percents == sorted(percents)

    def test_invalid_request_rejected_before_stream(self, client):
        response = client.post("/api/v1/analyze/stream", json={"mode": "blame"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_failure_becomes_error_event(self, client, repo_builder):
        response = client.post(
            "/api/v1/analyze/stream", json={"mode": "blame", "repoPath": str(repo_builder.path)}
        )

        events = sse_events(response.text)
        assert events[-1]["type"] == "error"
        assert events[-1]["code"] == "EMPTY_REPOSITORY"

    def test_rate_limit_ends_stream_instead_of_waiting(self, client, fake_remote):
        fake_remote.remaining = 5

        response = client.post(
            "/api/v1/analyze/stream",
            json={"mode": "legacy", "owner": "octo", "repo": "widgets"},
            headers={"Authorization": "Bearer test-token"},
        )

        events = sse_events(response.text)
        assert events[-1]["type"] == "error"
        assert events[-1]["code"] == "RATE_LIMITED"
        assert "retry after" in events[-1]["message"]
        assert fake_remote.listing_pages() == []

    @pytest.mark.asyncio
    async def test_closing_stream_stops_remote_listing(self):
        """Dropping the stream after the first page means no further listing pages are requested."""
        fake = FakeGitHub([make_commit_item(i) for i in range(500)])
        fake.page_delays = {page: 0.05 for page in range(2, 6)}
        factory = partial(
            ModeDispatcher,
            settings=PipelineConfig(page_delay_ms=0, batch_delay_ms=0, max_concurrent_requests=1),
            client_factory=lambda token: fake.client(token),
            sleep=no_sleep_recorder(),
        )

        response = await analyze_stream(
            AnalysisRequest(mode="legacy", owner="octo", repo="widgets"), token="t", dispatcher_factory=factory
        )
        frames = response.body_iterator
        async for frame in frames:
            if "currentPage" in frame:
                break
        await frames.aclose()

        pages_at_close = len(fake.listing_pages())
        await asyncio.sleep(0.3)

        assert len(fake.listing_pages()) == pages_at_close
        assert pages_at_close < 5


class TestRequestLogging:
    """Test the request id middleware."""

    def test_request_id_generated(self, client):
        first = client.get("/api/v1/health/")
        second = client.get("/api/v1/health/")

        assert first.headers["X-Request-ID"]
        assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]

    def test_caller_request_id_echoed(self, client):
        response = client.get("/api/v1/health/", headers={"X-Request-ID": "trace-42"})
        assert response.headers["X-Request-ID"] == "trace-42"

    def test_request_id_on_error_responses(self, client):
        response = client.post("/api/v1/analyze", json={"mode": "blame"})

        assert response.status_code == 400
        assert response.headers["X-Request-ID"]
