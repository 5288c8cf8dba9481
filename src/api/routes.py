"""Session control API endpoints.

Every endpoint renders an ``ApiEnvelope``:
- Lifecycle commands (start, restart, logout)
- Session reads (qr, status)
- Message sends (text, media by URL)
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, TypeVar

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from src.models import ApiEnvelope, EnvelopeStatus, SendMediaRequest, SendMessageRequest
from src.session.errors import InvalidRequestError
from src.session.state import SessionPhase

if TYPE_CHECKING:
    from src.session.dispatcher import MessageDispatcher
    from src.session.machine import CommandResult, SessionStateMachine

_Body = TypeVar("_Body", bound=BaseModel)


def _respond(envelope: ApiEnvelope, status_code: int = 200) -> JSONResponse:
    return JSONResponse(envelope.render(), status_code=status_code)


def _command_response(result: CommandResult) -> JSONResponse:
    return _respond(ApiEnvelope(status=result.status, message=result.message))


async def _read_body(request: Request, model: type[_Body]) -> _Body:
    """Parse the JSON body; an absent or non-object body counts as empty."""
    raw = await request.body()
    payload: Any = {}
    if raw:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = {}
    if not isinstance(payload, dict):
        payload = {}
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
        raise InvalidRequestError(f"Invalid fields: {fields}") from exc


def create_session_router(
    session: SessionStateMachine,
    dispatcher: MessageDispatcher,
) -> APIRouter:
    """Create the session control API router."""
    router = APIRouter(prefix="/api")

    @router.post("/start")
    async def start() -> JSONResponse:
        return _command_response(await session.start())

    @router.post("/restart")
    async def restart() -> JSONResponse:
        return _command_response(await session.restart())

    @router.post("/logout")
    async def logout() -> JSONResponse:
        return _command_response(await session.logout())

    @router.get("/qr")
    async def qr() -> JSONResponse:
        state = session.state
        if state.is_ready:
            envelope = ApiEnvelope(
                status=EnvelopeStatus.READY,
                message="WhatsApp already connected",
                data={"qr": None},
            )
        elif state.qr is not None:
            envelope = ApiEnvelope(
                status=EnvelopeStatus.SUCCESS,
                message="Scan QR code with WhatsApp",
                data={"qr": state.qr},
            )
        elif state.is_initializing:
            envelope = ApiEnvelope(
                status=EnvelopeStatus.INITIALIZING,
                message="Client is initializing, please wait...",
                data={"qr": None},
            )
        else:
            message = "Waiting for QR code. Try /api/start or /api/restart"
            if state.phase in (SessionPhase.AUTH_FAILED, SessionPhase.DISCONNECTED):
                message = f"Session {state.phase.value}: {state.reason}. {message}"
            envelope = ApiEnvelope(
                status=EnvelopeStatus.WAITING, message=message, data={"qr": None},
            )
        return _respond(envelope)

    @router.get("/status")
    async def status() -> JSONResponse:
        snapshot = session.snapshot()
        return _respond(ApiEnvelope(
            status=EnvelopeStatus.SUCCESS,
            message=snapshot.message,
            data=snapshot.to_data(),
        ))

    @router.post("/send-message")
    async def send_message(request: Request) -> JSONResponse:
        body = await _read_body(request, SendMessageRequest)
        result = await dispatcher.send_text(body.phone, body.message)
        return _respond(ApiEnvelope(
            status=EnvelopeStatus.SUCCESS,
            message="Message sent successfully",
            data=result.to_data(),
        ))

    @router.post("/send-media")
    async def send_media(request: Request) -> JSONResponse:
        body = await _read_body(request, SendMediaRequest)
        result = await dispatcher.send_media(
            body.phone, body.mediaUrl, caption=body.caption, filename=body.filename,
        )
        return _respond(ApiEnvelope(
            status=EnvelopeStatus.SUCCESS,
            message="Media sent successfully",
            data=result.to_data(),
        ))

    return router
