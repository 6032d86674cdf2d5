"""FastAPI service shell hosting the background library sync."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .models import SyncRequest
from .services.media_server import create_provider
from .services.orchestrator import SyncAlreadyRunningError, SyncOrchestrator

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    media_server_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
    )
    image_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=5.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    provider = create_provider(settings, media_server_client)
    if not provider.has_api_key:
        logger.warning(
            "MEDIA_SERVER_API_KEY is not set; library binding will fail until it is"
        )
    orchestrator = SyncOrchestrator(
        settings, database.session_factory, provider, image_client
    )

    fastapi_app.state.orchestrator = orchestrator
    fastapi_app.state.database = database
    await orchestrator.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await orchestrator.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Personalized recommendation libraries for Emby and Jellyfin",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_orchestrator(app: FastAPI) -> SyncOrchestrator:
    orchestrator = getattr(app.state, "orchestrator", None)
    if not isinstance(orchestrator, SyncOrchestrator):
        raise RuntimeError("Sync orchestrator not initialised")
    return orchestrator


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/sync")
    async def trigger_sync(request: Request) -> JSONResponse:
        orchestrator = get_orchestrator(fastapi_app)
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        try:
            sync_request = SyncRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400,
                detail=exc.errors(include_url=False, include_context=False),
            ) from exc

        try:
            job = orchestrator.start_background_pass(
                regenerate=sync_request.regenerate,
                channel_id=sync_request.channel_id,
            )
        except SyncAlreadyRunningError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return JSONResponse(job.to_payload(), status_code=202)

    @fastapi_app.get("/api/jobs")
    async def list_jobs() -> dict[str, Any]:
        registry = get_orchestrator(fastapi_app).registry
        return {"jobs": [job.to_payload() for job in registry.list_jobs()]}

    @fastapi_app.get("/api/jobs/{job_id}")
    async def job_status(job_id: str) -> dict[str, Any]:
        registry = get_orchestrator(fastapi_app).registry
        try:
            return registry.get(job_id).to_payload()
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Job not found") from exc

    @fastapi_app.post("/api/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str) -> dict[str, Any]:
        registry = get_orchestrator(fastapi_app).registry
        try:
            job = registry.get(job_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Job not found") from exc
        job.request_cancel()
        return job.to_payload()


app = create_app()
