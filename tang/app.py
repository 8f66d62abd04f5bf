"""FastAPI application: webhook endpoint, build logs and QA proxy."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import pydantic
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.staticfiles import StaticFiles

from . import __version__
from .backends import Backend
from .config import Settings
from .errors import TangError
from .events import handle_event, start_in_background
from .logs import request_log
from .models import JustNonGithub, PushEvent
from .pipeline import Pipeline
from .proxy import match_host, proxy_request
from .responses import bad_request, ok
from .router import BackendRouter

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings,
    pipeline: Optional[Pipeline] = None,
    router: Optional[BackendRouter] = None,
) -> FastAPI:
    """Build the application for `settings`.

    `pipeline` and `router` default to real ones built from `settings`.
    """
    pipeline = pipeline or Pipeline(settings)
    if router is None:
        router = BackendRouter(
            lambda key: Backend.spawn(key, settings.backend_command),
            capacity=settings.backend_capacity,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await run_in_threadpool(router.close)

    app = FastAPI(title="tang", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.router = router

    @app.middleware("http")
    async def qa_proxy(request: Request, call_next):
        """Send `<ref>.<repository>.<qa domain>` requests to preview backends."""
        key = match_host(request.headers.get("host", ""), settings.qa_domain)
        if key is None:
            return await call_next(request)
        return await proxy_request(request, router, key)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.post("/hook")
    async def hook(request: Request):
        """
        GitHub webhook.

        The build runs on a detached thread, unless the payload carries
        `"nongithub": {"wait": true}`, in which case the response waits for
        it and reports errors as 400.
        """
        body = await request.body()
        try:
            payload = json.loads(body)
        except ValueError:
            logger.info("Not a valid JSON payload. NOOP.")
            return bad_request("Expected valid JSON POST payload.")
        if not isinstance(payload, dict):
            logger.info("JSON payload is not an object. NOOP.")
            return bad_request("Expected valid JSON POST payload.")

        event_type = request.headers.get("X-GitHub-Event")
        if not event_type:
            logger.info("No X-GitHub-Event header. NOOP")
            return bad_request("Expected X-GitHub-Event header.")

        request_log.info(f"Incoming request: {event_type} {json.dumps(payload, indent=2)}")

        try:
            side_channel = JustNonGithub.model_validate(payload).nongithub
            if event_type == "push":
                PushEvent.model_validate(payload)
        except pydantic.ValidationError as e:
            logger.info(f"Malformed {event_type} payload: {e}")
            return bad_request(f"Malformed {event_type} payload: {e}")

        if not side_channel.wait:
            start_in_background(event_type, payload, pipeline)
            return ok("OK. Not waiting for build.")

        try:
            await run_in_threadpool(handle_event, event_type, payload, pipeline)
        except TangError as e:
            logger.info(f"Error handling event: {e}")
            return bad_request(f"Error handling event: {e}")
        return ok()

    settings.logs_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/tang/logs", StaticFiles(directory=str(settings.logs_dir)), name="logs")

    return app
