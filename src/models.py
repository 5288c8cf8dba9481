"""Shared Pydantic data models for the session gateway."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class EnvelopeStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    READY = "ready"
    INITIALIZING = "initializing"
    WAITING = "waiting"


class AuditEventType(str, Enum):
    SESSION_START = "session_start"
    SESSION_RESTART = "session_restart"
    SESSION_LOGOUT = "session_logout"
    SESSION_TRANSITION = "session_transition"
    MESSAGE_SENT = "message_sent"
    MESSAGE_FAILED = "message_failed"
    WEBHOOK_RELAY = "webhook_relay"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- API Models ---


class ApiEnvelope(BaseModel):
    """JSON envelope returned by every control endpoint."""

    model_config = ConfigDict(frozen=True)

    status: EnvelopeStatus
    message: str
    data: dict[str, Any] | None = None

    def render(self) -> dict[str, Any]:
        body = self.model_dump(mode="json")
        if body["data"] is None:
            del body["data"]
        return body


class SendMessageRequest(BaseModel):
    phone: str | None = None
    message: str | None = None


class SendMediaRequest(BaseModel):
    phone: str | None = None
    mediaUrl: str | None = None
    caption: str | None = None
    filename: str | None = None


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    action: str
    result: str  # "success" | "failure" | "info"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
