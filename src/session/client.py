"""Contract for the messaging-protocol client wrapped by the session.

The client performs authentication, QR generation and message transport.
It is constructed by a factory taking the gateway settings, and reports its
lifecycle by invoking handlers registered with ``on()``. Handlers may be
invoked from any thread.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.config import GatewaySettings


class ClientEvent(str, Enum):
    QR = "qr"
    READY = "ready"
    AUTHENTICATED = "authenticated"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"


@dataclass(frozen=True)
class MessageKey:
    serialized: str


@dataclass(frozen=True)
class SentMessage:
    id: MessageKey


@dataclass(frozen=True)
class IncomingMessage:
    """Payload of the ``message`` event."""

    from_: str
    body: str
    timestamp: int


@runtime_checkable
class ProtocolClient(Protocol):
    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    async def initialize(self) -> None: ...

    async def destroy(self) -> None: ...

    async def logout(self) -> None: ...

    async def is_registered_user(self, chat_id: str) -> bool: ...

    async def send_message(
        self,
        chat_id: str,
        content: Any,
        options: dict[str, Any] | None = None,
    ) -> SentMessage: ...


ClientFactory = Callable[["GatewaySettings"], ProtocolClient]


class ClientFactoryError(Exception):
    """Raised when a client factory import path cannot be resolved."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Cannot load client factory '{path}': {reason}")


def load_client_factory(path: str) -> ClientFactory:
    """Resolve a ``module:attribute`` import path to a client factory."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ClientFactoryError(path, "expected 'module:attribute'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ClientFactoryError(path, str(exc)) from exc
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ClientFactoryError(path, f"'{attr}' is not callable")
    return factory
