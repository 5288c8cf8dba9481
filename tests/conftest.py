"""Shared test fixtures for the session gateway."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.config import GatewaySettings
from src.session.client import MessageKey, SentMessage
from src.session.machine import SessionStateMachine

SENT_ID = "true_6281234567890@c.us_3EB0ABCDEF"


class FakeProtocolClient:
    """In-memory stand-in for the protocol client.

    ``emit`` invokes the handlers the state machine registered, the way the
    real client fires its lifecycle events.
    """

    def __init__(self, settings: GatewaySettings | None = None) -> None:
        self.settings = settings
        self.handlers: dict[str, list[Callable[..., Any]]] = {}
        self.initialize = AsyncMock()
        self.destroy = AsyncMock()
        self.logout = AsyncMock()
        self.is_registered_user = AsyncMock(return_value=True)
        self.send_message = AsyncMock(return_value=SentMessage(id=MessageKey(SENT_ID)))

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in self.handlers.get(event, []):
            handler(*args)


class FakeClientFactory:
    """Client factory recording every client it builds."""

    def __init__(self) -> None:
        self.clients: list[FakeProtocolClient] = []

    def __call__(self, settings: GatewaySettings) -> FakeProtocolClient:
        client = FakeProtocolClient(settings)
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeProtocolClient:
        return self.clients[-1]


def fake_client_factory(settings: GatewaySettings) -> FakeProtocolClient:
    """Importable factory for ``module:attribute`` loading tests."""
    return FakeProtocolClient(settings)


def make_settings(**kwargs: Any) -> GatewaySettings:
    """Factory for GatewaySettings suited to tests."""
    defaults: dict[str, Any] = {
        "webhook_url": None,
        "restart_delay": 0.05,
        "auto_start": False,
    }
    defaults.update(kwargs)
    return GatewaySettings(**defaults)


async def settle(machine: SessionStateMachine) -> None:
    """Wait until ``machine`` has applied queued events and finished background tasks."""
    while True:
        events = machine._events
        if events is not None:
            await events.join()
        pending = [task for task in machine._tasks if not task.done()]
        if not pending and (events is None or events.empty()):
            return
        await asyncio.gather(*pending, return_exceptions=True)


async def make_ready(machine: SessionStateMachine, factory: FakeClientFactory) -> FakeProtocolClient:
    """Drive ``machine`` through start → ready and return its client."""
    await machine.start()
    client = factory.latest
    client.emit("ready")
    await settle(machine)
    return client


@pytest.fixture
def settings() -> GatewaySettings:
    return make_settings()


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def machine(settings: GatewaySettings, client_factory: FakeClientFactory) -> SessionStateMachine:
    return SessionStateMachine(settings, client_factory)


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)
