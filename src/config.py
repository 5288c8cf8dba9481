"""Runtime configuration read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_PORT = 3006
DEFAULT_WEBHOOK_URL = "http://localhost:8000/whatsapp/webhook"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class GatewaySettings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    webhook_url: str | None = DEFAULT_WEBHOOK_URL
    webhook_timeout: float = 10.0
    restart_delay: float = 1.0
    auto_start: bool = True
    client_id: str = "whatsapp-gateway"
    client_factory: str | None = None
    country_code: str = "62"
    media_max_bytes: int = 16 * 1024 * 1024
    media_timeout: float = 30.0
    audit_log_path: str | None = None
    audit_log_max_bytes: int = 10_485_760
    audit_log_backup_count: int = 5

    @classmethod
    def from_env(cls) -> GatewaySettings:
        """Build settings from the process environment.

        An empty ``WEBHOOK_URL`` disables the inbound relay.
        """
        webhook_url = os.environ.get("WEBHOOK_URL", DEFAULT_WEBHOOK_URL).strip() or None
        return cls(
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", str(DEFAULT_PORT))),
            webhook_url=webhook_url,
            webhook_timeout=float(os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "10")),
            restart_delay=float(os.environ.get("RESTART_DELAY_SECONDS", "1.0")),
            auto_start=_env_bool("GATEWAY_AUTO_START", True),
            client_id=os.environ.get("GATEWAY_CLIENT_ID", "whatsapp-gateway"),
            client_factory=os.environ.get("GATEWAY_CLIENT_FACTORY") or None,
            country_code=os.environ.get("COUNTRY_CODE", "62"),
            media_max_bytes=int(os.environ.get("MEDIA_MAX_BYTES", str(16 * 1024 * 1024))),
            media_timeout=float(os.environ.get("MEDIA_TIMEOUT_SECONDS", "30")),
            audit_log_path=os.environ.get("AUDIT_LOG_PATH") or None,
            audit_log_max_bytes=int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760")),
            audit_log_backup_count=int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5")),
        )
