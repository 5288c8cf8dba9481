"""Outbound message dispatch through the ready session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from src.models import AuditEvent, AuditEventType, RiskLevel
from src.session.errors import (
    GatewayError,
    InvalidRequestError,
    NotReadyError,
    TransportError,
    UnregisteredDestinationError,
)
from src.session.normalizer import CHAT_SUFFIX, DEFAULT_COUNTRY_CODE, normalize_digits

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.session.client import ProtocolClient
    from src.session.machine import SessionStateMachine
    from src.session.media import HttpMediaLoader

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_FILENAME = "file"


@dataclass(frozen=True)
class SendResult:
    phone: str
    message_id: str

    def to_data(self) -> dict[str, str]:
        return {"phone": self.phone, "messageId": self.message_id}


class MessageDispatcher:
    """Validates send requests and forwards them to the protocol client.

    Text sends check that the destination is registered on the platform
    first; media sends do not.
    """

    def __init__(
        self,
        session: SessionStateMachine,
        media_loader: HttpMediaLoader,
        country_code: str = DEFAULT_COUNTRY_CODE,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._session = session
        self._media_loader = media_loader
        self._country_code = country_code
        self._audit = audit_logger

    async def send_text(self, phone: str | None, body: str | None) -> SendResult:
        client = self._ready_client()
        if not phone or not body:
            raise InvalidRequestError("Phone and message are required")

        digits = normalize_digits(phone, self._country_code)
        chat_id = digits + CHAT_SUFFIX

        try:
            registered = await client.is_registered_user(chat_id)
        except Exception as exc:
            logger.error("Registration check for %s failed: %s", chat_id, exc)
            raise TransportError(str(exc)) from exc
        if not registered:
            self._record_failure("send_text", chat_id, "unregistered")
            raise UnregisteredDestinationError(chat_id)

        message_id = await self._send(client, "send_text", chat_id, body, None)
        return SendResult(phone=digits, message_id=message_id)

    async def send_media(
        self,
        phone: str | None,
        media_url: str | None,
        caption: str | None = None,
        filename: str | None = None,
    ) -> SendResult:
        client = self._ready_client()
        if not phone or not media_url:
            raise InvalidRequestError("Phone and mediaUrl are required")

        digits = normalize_digits(phone, self._country_code)
        chat_id = digits + CHAT_SUFFIX

        try:
            media = await self._media_loader.from_url(
                media_url, filename=filename or DEFAULT_MEDIA_FILENAME,
            )
        except GatewayError as exc:
            self._record_failure("send_media", chat_id, exc.message)
            raise

        message_id = await self._send(
            client, "send_media", chat_id, media, {"caption": caption or ""},
        )
        return SendResult(phone=digits, message_id=message_id)

    def _ready_client(self) -> ProtocolClient:
        client = self._session.client
        if not self._session.state.is_ready or client is None:
            raise NotReadyError()
        return client

    async def _send(
        self,
        client: ProtocolClient,
        action: str,
        chat_id: str,
        content: Any,
        options: dict[str, Any] | None,
    ) -> str:
        try:
            if options is None:
                result = await client.send_message(chat_id, content)
            else:
                result = await client.send_message(chat_id, content, options)
            message_id = str(result.id.serialized)
        except Exception as exc:
            logger.error("Send to %s failed: %s", chat_id, exc)
            self._record_failure(action, chat_id, str(exc))
            raise TransportError(str(exc)) from exc

        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.MESSAGE_SENT,
                action=action,
                result="success",
                risk_level=RiskLevel.INFO,
                details={"chat_id": chat_id, "message_id": message_id},
            ))
        return message_id

    def _record_failure(self, action: str, chat_id: str, reason: str) -> None:
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.MESSAGE_FAILED,
                action=action,
                result="failure",
                risk_level=RiskLevel.LOW,
                details={"chat_id": chat_id, "reason": reason},
            ))
