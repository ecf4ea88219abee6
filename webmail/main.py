from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from webmail.core.config import Settings, get_settings
from webmail.core.errors import EmailNotFound, MethodError, ProtocolError, SessionNotFound, TransportError
from webmail.core.logging import configure_logging
from webmail.routes import api
from webmail.services.registry import ServiceRegistry

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.BaseTransport] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN001
        logger.info("Starting %s against %s", settings.app_name, settings.jmap_well_known_url)
        try:
            yield
        finally:
            # sessions live in memory only; say how many are being dropped
            logger.info("Shutting down with %s live sessions", len(app.state.services.sessions))

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.services = ServiceRegistry.build(settings, transport=transport)
    app.include_router(api.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # noqa: ANN001
        started = time.monotonic()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s in %.0fms",
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - started) * 1000,
        )
        return response

    @app.exception_handler(SessionNotFound)
    async def _session_not_found(request: Request, exc: SessionNotFound) -> JSONResponse:
        return JSONResponse({"detail": "login required"}, status_code=401, headers={"Location": "/login"})

    @app.exception_handler(EmailNotFound)
    async def _email_not_found(request: Request, exc: EmailNotFound) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=404)

    @app.exception_handler(TransportError)
    @app.exception_handler(ProtocolError)
    @app.exception_handler(MethodError)
    async def _service_unavailable(request: Request, exc: Exception) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"detail": "service unavailable"}, status_code=503)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("webmail.main:app", host=settings.listen_host, port=settings.listen_port)
