"""FastAPI application exposing the messaging session."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import JSONResponse

from src.api.routes import create_session_router
from src.audit.logger import AuditLogger
from src.config import GatewaySettings
from src.models import ApiEnvelope, EnvelopeStatus
from src.session.client import ClientFactory, ClientFactoryError, load_client_factory
from src.session.dispatcher import MessageDispatcher
from src.session.errors import GatewayError
from src.session.machine import SessionStateMachine
from src.session.media import HttpMediaLoader
from src.webhook.relay import InboundRelay

logger = logging.getLogger(__name__)

ENDPOINTS = (
    ("POST", "/api/start", "Start WhatsApp client"),
    ("POST", "/api/restart", "Restart WhatsApp client"),
    ("GET", "/api/qr", "Get QR code"),
    ("GET", "/api/status", "Check connection status"),
    ("POST", "/api/send-message", "Send text message"),
    ("POST", "/api/send-media", "Send media"),
    ("POST", "/api/logout", "Logout from WhatsApp"),
)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = GatewaySettings.from_env()
    if not settings.client_factory:
        raise ClientFactoryError("", "GATEWAY_CLIENT_FACTORY is not set")
    return create_app(settings, load_client_factory(settings.client_factory))


def create_app(
    settings: GatewaySettings,
    client_factory: ClientFactory,
    audit_logger: AuditLogger | None = None,
    media_loader: HttpMediaLoader | None = None,
    relay: InboundRelay | None = None,
) -> FastAPI:
    """Create the gateway app around one session state machine."""
    if audit_logger is None:
        audit_logger = AuditLogger.from_settings(settings)
    if media_loader is None:
        media_loader = HttpMediaLoader(
            max_bytes=settings.media_max_bytes, timeout=settings.media_timeout,
        )
    if relay is None:
        relay = InboundRelay(
            settings.webhook_url,
            timeout=settings.webhook_timeout,
            audit_logger=audit_logger,
        )

    session = SessionStateMachine(
        settings, client_factory, relay=relay, audit_logger=audit_logger,
    )
    dispatcher = MessageDispatcher(
        session,
        media_loader,
        country_code=settings.country_code,
        audit_logger=audit_logger,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("WhatsApp API Server running on port %d", settings.port)
        for method, path, description in ENDPOINTS:
            logger.info("  %-4s %-18s - %s", method, path, description)
        if settings.auto_start:
            await session.start()
        try:
            yield
        finally:
            await session.close()
            await relay.drain()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.session = session
    app.state.dispatcher = dispatcher
    app.state.relay = relay

    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        envelope = ApiEnvelope(status=EnvelopeStatus.ERROR, message=exc.message)
        return JSONResponse(envelope.render(), status_code=exc.status_code)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(create_session_router(session, dispatcher))
    return app
