"""Session layer for the messaging gateway.

This module provides:
- Destination normalization
- The session lifecycle state machine
- Outbound message dispatch
- The protocol client contract
"""

from src.session.client import (
    ClientEvent,
    ClientFactory,
    ClientFactoryError,
    IncomingMessage,
    MessageKey,
    ProtocolClient,
    SentMessage,
    load_client_factory,
)
from src.session.dispatcher import MessageDispatcher, SendResult
from src.session.errors import (
    GatewayError,
    InvalidRequestError,
    MediaFetchError,
    NotReadyError,
    TransportError,
    UnregisteredDestinationError,
)
from src.session.machine import CommandResult, SessionStateMachine, StatusSnapshot
from src.session.media import HttpMediaLoader, MessageMedia
from src.session.normalizer import normalize, normalize_digits
from src.session.state import SessionHandle, SessionPhase, SessionState

__all__ = [
    # Exceptions
    "ClientFactoryError",
    "GatewayError",
    "InvalidRequestError",
    "MediaFetchError",
    "NotReadyError",
    "TransportError",
    "UnregisteredDestinationError",
    # Components
    "HttpMediaLoader",
    "MessageDispatcher",
    "SessionStateMachine",
    # Client contract
    "ClientEvent",
    "ClientFactory",
    "IncomingMessage",
    "MessageKey",
    "ProtocolClient",
    "SentMessage",
    "load_client_factory",
    # Result types
    "CommandResult",
    "SendResult",
    "StatusSnapshot",
    # Models
    "MessageMedia",
    "SessionHandle",
    "SessionPhase",
    "SessionState",
    # Functions
    "normalize",
    "normalize_digits",
]
