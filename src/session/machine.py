"""Session lifecycle state machine.

Owns the single session: its ``SessionState`` and the ``SessionHandle``
wrapping the protocol client. Two sources drive it:

- Commands (``start``, ``restart``, ``logout``) issued by the API, which
  are serialized by an asyncio lock.
- Client events (``qr``, ``ready``, ...), which client handlers push onto
  a queue and a single consumer task applies in arrival order. Events
  carry the generation of the handle that emitted them; events from a
  handle that has since been released are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from src.models import AuditEvent, AuditEventType, EnvelopeStatus, RiskLevel
from src.session.client import ClientEvent
from src.session.state import SessionHandle, SessionPhase, SessionState
from src.webhook.models import InboundEvent

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.config import GatewaySettings
    from src.session.client import ClientFactory, ProtocolClient
    from src.webhook.relay import InboundRelay

logger = logging.getLogger(__name__)

_FAILURE_PHASES = (SessionPhase.AUTH_FAILED, SessionPhase.DISCONNECTED)


@dataclass(frozen=True)
class CommandResult:
    status: EnvelopeStatus
    message: str


@dataclass(frozen=True)
class LifecycleEvent:
    kind: ClientEvent
    generation: int
    payload: Any = None


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only view of the session for the status endpoint."""

    state: SessionState
    has_client: bool

    @property
    def status(self) -> str:
        if self.state.is_ready:
            return "ready"
        if self.state.is_initializing:
            return "initializing"
        return "not_ready"

    @property
    def message(self) -> str:
        if self.state.is_ready:
            return "WhatsApp is connected"
        if self.state.is_initializing:
            return "WhatsApp is initializing..."
        return "WhatsApp is not connected"

    def to_data(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "isReady": self.state.is_ready,
            "isInitializing": self.state.is_initializing,
            "hasQR": self.state.qr is not None,
            "hasClient": self.has_client,
            "state": self.state.phase.value,
            "reason": self.state.reason,
        }


class SessionStateMachine:
    """Lifecycle owner for the one messaging session of this process."""

    def __init__(
        self,
        settings: GatewaySettings,
        client_factory: ClientFactory,
        relay: InboundRelay | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory
        self._relay = relay
        self._audit = audit_logger
        self._state = SessionState.uninitialized()
        self._handle: SessionHandle | None = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: asyncio.Queue[LifecycleEvent] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    # --- Reads ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def client(self) -> ProtocolClient | None:
        return self._handle.client if self._handle else None

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(state=self._state, has_client=self._handle is not None)

    # --- Commands ---

    async def start(self) -> CommandResult:
        """Start a session unless one is already live. Never raises."""
        async with self._lock:
            return self._start_locked()

    def _start_locked(self) -> CommandResult:
        if self._state.is_ready:
            logger.info("Client is already initialized and ready")
            return CommandResult(EnvelopeStatus.INFO, "WhatsApp client already connected")
        if self._state.is_initializing:
            logger.info("Client is already initializing...")
            return CommandResult(EnvelopeStatus.INFO, "WhatsApp client is initializing...")
        if self._handle is not None:
            return CommandResult(EnvelopeStatus.INFO, "WhatsApp client already exists")

        self._ensure_consumer()
        self._generation += 1
        generation = self._generation
        self._transition(SessionState.initializing(), "start")

        try:
            client = self._client_factory(self._settings)
        except Exception as exc:
            logger.exception("WhatsApp client construction failed")
            self._transition(SessionState.disconnected(str(exc)), "construction_failed")
            self._record(AuditEventType.SESSION_START, "start", "failure", {"reason": str(exc)})
            return CommandResult(
                EnvelopeStatus.INFO,
                "WhatsApp client failed to start. Check /api/status for details",
            )

        self._handle = SessionHandle(client=client, generation=generation)
        for kind in ClientEvent:
            client.on(kind.value, self._make_handler(kind, generation))
        self._spawn(self._initialize(client, generation))
        self._record(AuditEventType.SESSION_START, "start", "success", {"generation": generation})
        return CommandResult(
            EnvelopeStatus.SUCCESS,
            "WhatsApp client started. Please check /api/qr for QR code",
        )

    async def restart(self) -> CommandResult:
        """Tear down the session and start again after the settling delay."""
        async with self._lock:
            handle, self._handle = self._handle, None
            if handle is not None:
                await self._destroy_quietly(handle.client)
            self._transition(SessionState.uninitialized(), "restart")
            self._spawn(self._delayed_start(self._settings.restart_delay))
            self._record(AuditEventType.SESSION_RESTART, "restart", "success", {
                "had_client": handle is not None,
                "delay_seconds": self._settings.restart_delay,
            })
        return CommandResult(
            EnvelopeStatus.SUCCESS,
            "WhatsApp client restarting. Check /api/qr in a few seconds",
        )

    async def logout(self) -> CommandResult:
        """Log out and discard the session. Informational when none exists."""
        async with self._lock:
            handle = self._handle
            if handle is None:
                return CommandResult(EnvelopeStatus.INFO, "No active session")

            self._handle = None
            try:
                await handle.client.logout()
            except Exception as exc:
                logger.warning("Error logging out client: %s", exc)
            await self._destroy_quietly(handle.client)
            self._transition(SessionState.uninitialized(), "logout")
            self._record(AuditEventType.SESSION_LOGOUT, "logout", "success", None)
        return CommandResult(
            EnvelopeStatus.SUCCESS,
            "Logged out successfully. Use /api/restart to reconnect",
        )

    async def close(self) -> None:
        """Stop background work and release the client at shutdown."""
        for task in list(self._tasks):
            task.cancel()
        if self._consumer is not None:
            self._consumer.cancel()
        await asyncio.gather(
            *self._tasks, *([self._consumer] if self._consumer else []),
            return_exceptions=True,
        )
        self._consumer = None
        handle, self._handle = self._handle, None
        if handle is not None:
            await self._destroy_quietly(handle.client)

    # --- Event intake ---

    def _ensure_consumer(self) -> None:
        loop = asyncio.get_running_loop()
        if self._consumer is not None and not self._consumer.done() and self._loop is loop:
            return
        self._loop = loop
        self._events = asyncio.Queue()
        self._consumer = loop.create_task(self._consume())

    def _make_handler(self, kind: ClientEvent, generation: int) -> Callable[..., None]:
        def handle(*args: Any) -> None:
            self._post(LifecycleEvent(kind, generation, args[0] if args else None))

        return handle

    def _post(self, event: LifecycleEvent) -> None:
        if self._loop is None or self._events is None:
            logger.warning("Dropping %s event: no event loop attached", event.kind.value)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._events.put_nowait(event)
        else:
            self._loop.call_soon_threadsafe(self._events.put_nowait, event)

    async def _consume(self) -> None:
        assert self._events is not None
        events = self._events
        while True:
            event = await events.get()
            try:
                self._apply(event)
            except Exception:
                logger.exception("Failed to apply %s event", event.kind.value)
            finally:
                events.task_done()

    def _apply(self, event: LifecycleEvent) -> None:
        if self._handle is None or event.generation != self._handle.generation:
            logger.debug(
                "Ignoring %s event from stale generation %d", event.kind.value, event.generation,
            )
            return

        kind = event.kind
        if kind is ClientEvent.QR:
            logger.info("QR Code received, scan please!")
            self._transition(SessionState.awaiting_qr_scan(str(event.payload)), "qr")
        elif kind is ClientEvent.READY:
            logger.info("WhatsApp Client is ready!")
            self._transition(SessionState.ready(), "ready")
        elif kind is ClientEvent.AUTHENTICATED:
            logger.info("WhatsApp authenticated!")
            # Tag stays AWAITING_QR_SCAN until ready; only the QR is dropped
            if self._state.phase is SessionPhase.AWAITING_QR_SCAN:
                self._transition(self._state.model_copy(update={"qr": None}), "authenticated")
        elif kind is ClientEvent.AUTH_FAILURE:
            logger.error("Authentication failure: %s", event.payload)
            self._transition(SessionState.auth_failed(_reason(event.payload)), "auth_failure")
            self._release_handle()
        elif kind is ClientEvent.DISCONNECTED:
            logger.info("WhatsApp disconnected: %s", event.payload)
            self._transition(SessionState.disconnected(_reason(event.payload)), "disconnected")
            self._release_handle()
        elif kind is ClientEvent.MESSAGE:
            inbound = InboundEvent.from_message(event.payload)
            logger.info("Message received from %s", inbound.from_)
            if self._relay is not None:
                self._relay.dispatch(inbound)

    # --- Internals ---

    async def _initialize(self, client: ProtocolClient, generation: int) -> None:
        try:
            await client.initialize()
        except Exception as exc:
            logger.exception("WhatsApp client initialization failed")
            self._post(LifecycleEvent(ClientEvent.DISCONNECTED, generation, str(exc)))

    async def _delayed_start(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.start()

    def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            self._spawn(self._destroy_quietly(handle.client))

    async def _destroy_quietly(self, client: ProtocolClient) -> None:
        try:
            await client.destroy()
        except Exception as exc:
            logger.warning("Error destroying client: %s", exc)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _transition(self, new: SessionState, cause: str) -> None:
        old, self._state = self._state, new
        logger.debug("Session %s -> %s (%s)", old.phase.value, new.phase.value, cause)
        self._record(
            AuditEventType.SESSION_TRANSITION,
            cause,
            "failure" if new.phase in _FAILURE_PHASES else "success",
            {"from": old.phase.value, "to": new.phase.value, "reason": new.reason},
        )

    def _record(
        self,
        event_type: AuditEventType,
        action: str,
        result: str,
        details: dict[str, object] | None,
    ) -> None:
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=event_type,
                action=action,
                result=result,
                risk_level=RiskLevel.MEDIUM if result == "failure" else RiskLevel.INFO,
                details=details,
            ))


def _reason(payload: Any) -> str:
    return str(payload) if payload is not None else "unknown"
