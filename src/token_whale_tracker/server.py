"""HTTP trigger surface for external schedulers.

Routes:
    GET|POST /cron/{job}   run one job; requires ``Authorization: Bearer <CRON_SECRET>``
    GET /health            liveness and last job stats
"""

from __future__ import annotations

import hmac
import logging

from aiohttp import web

from token_whale_tracker.pipeline import Pipeline

logger = logging.getLogger(__name__)

PIPELINE_KEY = web.AppKey("pipeline", Pipeline)
CRON_SECRET_KEY = web.AppKey("cron_secret", str)


def _authorized(request: web.Request, secret: str) -> bool:
    header = request.headers.get("Authorization", "")
    scheme, _, supplied = header.partition(" ")
    if scheme.lower() != "bearer" or not supplied:
        return False
    return hmac.compare_digest(supplied.strip().encode(), secret.encode())


async def cron_handler(request: web.Request) -> web.Response:
    if not _authorized(request, request.app[CRON_SECRET_KEY]):
        logger.warning("Rejected cron trigger from %s", request.remote)
        return web.json_response({"error": "unauthorized"}, status=401)

    pipeline = request.app[PIPELINE_KEY]
    job_name = request.match_info["job"]
    if not pipeline.runner.has_job(job_name):
        return web.json_response(
            {"error": f"unknown job: {job_name}", "jobs": pipeline.runner.job_names}, status=404
        )

    result = await pipeline.run_job(job_name)
    return web.json_response(result.to_dict(), status=200 if result.ok else 500)


async def health_handler(request: web.Request) -> web.Response:
    pipeline = request.app[PIPELINE_KEY]
    stats = pipeline.stats
    return web.json_response(
        {
            "ok": pipeline.is_running,
            "state": pipeline.state.value,
            "started_at": stats.started_at.isoformat() if stats.started_at else None,
            "jobs_run": stats.jobs_run,
            "jobs_failed": stats.jobs_failed,
            "last_job": stats.last_job,
            "last_error": stats.last_error,
        }
    )


def create_app(pipeline: Pipeline, *, cron_secret: str) -> web.Application:
    """Build the application; the pipeline is started and stopped with it."""
    if not cron_secret:
        raise ValueError("cron_secret must be provided")

    app = web.Application()
    app[PIPELINE_KEY] = pipeline
    app[CRON_SECRET_KEY] = cron_secret
    app.router.add_route("GET", "/cron/{job:.+}", cron_handler)
    app.router.add_route("POST", "/cron/{job:.+}", cron_handler)
    app.router.add_get("/health", health_handler)

    async def _lifecycle(app: web.Application):  # noqa: ANN202
        await pipeline.start()
        yield
        await pipeline.stop()

    app.cleanup_ctx.append(_lifecycle)
    return app
