"""
FastAPI + Uvicorn ASGI application — certificate manager webhook receiver.

Long-running alternative to the serverless action: the certificate manager
is configured with a callback URL pointing at POST /notifications and sends
`{"data": "<signed payload>"}`. The deployment target comes from
AppSettings.deployment (DEPLOYMENT__INSTANCE_CRN, DEPLOYMENT__API_KEY, ...).

Every request is an independent invocation: a fresh workflow, a freshly
fetched public key and fresh session tokens. Nothing is shared between
requests except the immutable settings. A client disconnect cancels the
request's verification wait, which counts as "verification skipped".

Entry point for production: uvicorn cert_deployer.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from railway.result import Result

from cert_deployer import __version__
from cert_deployer.config import AppSettings, InvocationParams
from cert_deployer.main import configure_structlog, run_invocation

log = structlog.get_logger()

# Set during startup; read-only afterwards.
_settings: AppSettings | None = None
_error_message: str | None = None


class NotificationBody(BaseModel):
    """Callback body sent by the certificate manager."""

    data: str


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load settings and configure logging on startup."""
    global _settings, _error_message

    try:
        settings = AppSettings()
    except ValidationError as e:
        _error_message = f"Configuration error: {e.error_count()} invalid setting(s)"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    _settings = settings
    log.info(
        "asgi.startup_complete",
        version=__version__,
        log_level=settings.log_level,
        deployment_configured=settings.deployment is not None,
        verification_delay_seconds=settings.verification.delay_seconds,
    )

    yield

    log.info("asgi.shutdown_complete")


app = FastAPI(
    title="cert-deployer",
    description="Deploys renewed certificates to cluster ingress secrets",
    version=__version__,
    lifespan=lifespan,
)


async def _cancel_on_disconnect(request: Request, cancel: asyncio.Event) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(1.0)
    cancel.set()


@app.post("/notifications")
async def receive_notification(body: NotificationBody, request: Request) -> JSONResponse:
    """
    Process one certificate lifecycle notification.

    Returns the invocation response's statusCode and body:
      - 200 {} on a deployed-and-verified renewal or an ignored event
      - 4xx/5xx {"message": ...} when a step fails
      - 503 when no deployment target is configured
    """
    if _settings is None or _settings.deployment is None:
        return JSONResponse(
            status_code=503,
            content={"message": "No deployment target configured."},
        )

    try:
        params = InvocationParams.from_deployment(_settings.deployment, body.data)
    except ValidationError:
        return JSONResponse(status_code=400, content={"message": "The notification payload is empty."})

    cancel = asyncio.Event()
    watcher = asyncio.create_task(_cancel_on_disconnect(request, cancel))
    try:
        response = await run_invocation(Result.success(params), _settings, cancel)
    finally:
        watcher.cancel()

    return JSONResponse(status_code=response["statusCode"], content=response["body"])


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness probe: 200 once settings loaded, 503 otherwise."""
    if _error_message or _settings is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": _error_message or "not started"},
        )
    return JSONResponse(status_code=200, content={"status": "healthy"})


@app.get("/info")
async def info() -> dict[str, Any]:
    """Application metadata for debugging and monitoring."""
    return {
        "name": "cert-deployer",
        "version": __version__,
        "deployment_configured": _settings is not None and _settings.deployment is not None,
        "verification_delay_seconds": _settings.verification.delay_seconds if _settings else None,
        "has_error": _error_message is not None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cert_deployer.asgi:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )
