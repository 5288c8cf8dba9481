"""Inbound message relay to the configured webhook.

Each inbound message is POSTed once as ``{from, body, timestamp}``. Delivery
runs in a detached task; failures are logged and recorded in the audit
trail and are otherwise discarded. There is no retry and no queue.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import httpx

from src.models import AuditEvent, AuditEventType, RiskLevel

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.webhook.models import InboundEvent

logger = logging.getLogger(__name__)


class InboundRelay:
    """Best-effort forwarder for inbound message events."""

    def __init__(
        self,
        webhook_url: str | None,
        timeout: float = 10.0,
        audit_logger: AuditLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._audit = audit_logger
        self._transport = transport
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    def dispatch(self, event: InboundEvent) -> None:
        """Schedule delivery of ``event`` without waiting for it."""
        if not self.enabled:
            logger.debug("Webhook relay disabled, dropping message from %s", event.from_)
            return
        task = asyncio.get_running_loop().create_task(self.deliver(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def deliver(self, event: InboundEvent) -> bool:
        """POST ``event`` to the webhook. Returns False on any failure."""
        if not self._webhook_url:
            return False
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    self._webhook_url, json=event.to_payload(), timeout=self._timeout,
                )
        except httpx.HTTPError as exc:
            logger.error("Webhook error: %s", exc)
            self._record_failure(event, str(exc))
            return False

        if resp.status_code >= 400:
            logger.error("Webhook error: %s responded %d", self._webhook_url, resp.status_code)
            self._record_failure(event, f"HTTP {resp.status_code}")
            return False
        return True

    async def drain(self) -> None:
        """Wait for all scheduled deliveries to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _record_failure(self, event: InboundEvent, reason: str) -> None:
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.WEBHOOK_RELAY,
                action="relay",
                result="failure",
                risk_level=RiskLevel.LOW,
                details={"from": event.from_, "reason": reason},
            ))
