"""Tests for the cron trigger HTTP surface."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import test_utils

from token_whale_tracker.jobs import JobResult
from token_whale_tracker.pipeline import PipelineState, PipelineStats
from token_whale_tracker.server import create_app

SECRET = "s3cret"
AUTH = {"Authorization": f"Bearer {SECRET}"}


@pytest.fixture
def pipeline() -> MagicMock:
    mock = MagicMock()
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    mock.state = PipelineState.RUNNING
    mock.is_running = True
    mock.stats = PipelineStats(started_at=datetime(2026, 1, 1, tzinfo=UTC), jobs_run=4, jobs_failed=1)
    mock.runner.job_names = ["alerts:send", "whales:detect"]
    mock.runner.has_job.side_effect = lambda name: name in mock.runner.job_names
    mock.run_job = AsyncMock(
        return_value=JobResult(job_name="whales:detect", ok=True, summary={"inserted": 2})
    )
    return mock


@pytest.fixture
async def client(pipeline):
    app = create_app(pipeline, cron_secret=SECRET)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        yield client


class TestCronEndpoint:
    """Tests for /cron/{job}."""

    async def test_runs_job(self, client, pipeline) -> None:
        resp = await client.post("/cron/whales:detect", headers=AUTH)

        assert resp.status == 200
        body = await resp.json()
        assert body == {"job": "whales:detect", "ok": True, "summary": {"inserted": 2}}
        pipeline.run_job.assert_awaited_once_with("whales:detect")

    async def test_get_is_accepted(self, client) -> None:
        resp = await client.get("/cron/whales:detect", headers=AUTH)
        assert resp.status == 200

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"Authorization": SECRET}, {"Authorization": "Bearer "}],
    )
    async def test_rejects_bad_credentials(self, client, pipeline, headers) -> None:
        resp = await client.post("/cron/whales:detect", headers=headers)

        assert resp.status == 401
        pipeline.run_job.assert_not_awaited()

    async def test_unknown_job(self, client, pipeline) -> None:
        resp = await client.post("/cron/nope", headers=AUTH)

        assert resp.status == 404
        body = await resp.json()
        assert body["jobs"] == ["alerts:send", "whales:detect"]
        pipeline.run_job.assert_not_awaited()

    async def test_failed_job_returns_500(self, client, pipeline) -> None:
        pipeline.run_job.return_value = JobResult(job_name="alerts:send", ok=False, error="boom")

        resp = await client.post("/cron/alerts:send", headers=AUTH)

        assert resp.status == 500
        assert (await resp.json())["error"] == "boom"

    async def test_skipped_job_is_ok(self, client, pipeline) -> None:
        pipeline.run_job.return_value = JobResult(
            job_name="alerts:send",
            ok=True,
            summary={"skipped": True, "reason": "already-running"},
            skipped=True,
        )

        resp = await client.post("/cron/alerts:send", headers=AUTH)

        assert resp.status == 200
        assert (await resp.json())["skipped"] is True


class TestHealthEndpoint:
    """Tests for /health."""

    async def test_reports_stats(self, client) -> None:
        resp = await client.get("/health")

        assert resp.status == 200
        body = await resp.json()
        assert body["ok"] is True
        assert body["state"] == "running"
        assert body["jobs_run"] == 4
        assert body["jobs_failed"] == 1
        assert body["started_at"].startswith("2026-01-01")


class TestCreateApp:
    """Tests for create_app."""

    def test_requires_secret(self, pipeline) -> None:
        with pytest.raises(ValueError):
            create_app(pipeline, cron_secret="")

    async def test_pipeline_lifecycle(self, pipeline) -> None:
        app = create_app(pipeline, cron_secret=SECRET)

        async with test_utils.TestClient(test_utils.TestServer(app)):
            pipeline.start.assert_awaited_once()
            pipeline.stop.assert_not_awaited()

        pipeline.stop.assert_awaited_once()
