"""Data models for the inbound webhook relay."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class InboundEvent:
    """Snapshot of an inbound message, forwarded once and then dropped."""

    from_: str
    body: str
    timestamp: int

    @classmethod
    def from_message(cls, message: Any) -> InboundEvent:
        """Build from a client ``message`` payload (mapping or object)."""
        if isinstance(message, Mapping):
            sender = message.get("from", "")
            body = message.get("body", "")
            timestamp = message.get("timestamp", 0)
        else:
            sender = getattr(message, "from_", "")
            body = getattr(message, "body", "")
            timestamp = getattr(message, "timestamp", 0)
        return cls(from_=str(sender), body=str(body), timestamp=int(timestamp or 0))

    def to_payload(self) -> dict[str, Any]:
        return {"from": self.from_, "body": self.body, "timestamp": self.timestamp}
