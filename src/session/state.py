"""Session lifecycle state and the handle owning the protocol client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from src.session.client import ProtocolClient


class SessionPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AWAITING_QR_SCAN = "awaiting_qr_scan"
    READY = "ready"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"


class SessionState(BaseModel):
    """Tagged lifecycle state.

    ``qr`` is only set for AWAITING_QR_SCAN, and is dropped there once the
    client authenticates. ``reason`` is only set for
    AUTH_FAILED and DISCONNECTED. Use the constructors below rather than
    building instances directly.
    """

    model_config = ConfigDict(frozen=True)

    phase: SessionPhase
    qr: str | None = None
    reason: str | None = None

    @classmethod
    def uninitialized(cls) -> SessionState:
        return cls(phase=SessionPhase.UNINITIALIZED)

    @classmethod
    def initializing(cls) -> SessionState:
        return cls(phase=SessionPhase.INITIALIZING)

    @classmethod
    def awaiting_qr_scan(cls, qr: str) -> SessionState:
        return cls(phase=SessionPhase.AWAITING_QR_SCAN, qr=qr)

    @classmethod
    def ready(cls) -> SessionState:
        return cls(phase=SessionPhase.READY)

    @classmethod
    def auth_failed(cls, reason: str) -> SessionState:
        return cls(phase=SessionPhase.AUTH_FAILED, reason=reason)

    @classmethod
    def disconnected(cls, reason: str) -> SessionState:
        return cls(phase=SessionPhase.DISCONNECTED, reason=reason)

    @property
    def is_ready(self) -> bool:
        return self.phase is SessionPhase.READY

    @property
    def is_initializing(self) -> bool:
        return self.phase is SessionPhase.INITIALIZING


@dataclass
class SessionHandle:
    """One protocol client instance and the generation it was created for."""

    client: ProtocolClient
    generation: int
