"""Relay configuration, loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

MIB = 1024 * 1024

# Room for the JSON envelope and metadata around the base64 body.
ENVELOPE_HEADROOM = 64 * 1024


def encoded_size(raw_bytes: int) -> int:
    """Length of the base64 text that encodes *raw_bytes* bytes."""
    return -(-raw_bytes // 3) * 4


@dataclass
class RelaySettings:
    """Relay settings.

    Priority (highest to lowest):
    1. Explicit CLI flags
    2. Environment variables (LANRELAY_*), optionally from a .env file
    3. Default values
    """

    host: str = "0.0.0.0"
    port: int = 3000
    base_url: str | None = None
    content_dir: Path = field(default_factory=lambda: Path("./received"))
    static_dir: Path | None = None
    max_payload_bytes: int = 100 * MIB
    ack_timeout: float = 60.0
    delivery_timeout: float = 10.0
    log_level: str = "INFO"

    @property
    def max_message_bytes(self) -> int:
        """Largest WebSocket message accepted for a payload at the ceiling."""
        return encoded_size(self.max_payload_bytes) + ENVELOPE_HEADROOM

    @classmethod
    def from_env(cls) -> RelaySettings:
        load_dotenv()

        settings = cls()
        settings.host = os.getenv("LANRELAY_HOST", settings.host)
        settings.port = int(os.getenv("LANRELAY_PORT", settings.port))
        settings.base_url = os.getenv("LANRELAY_BASE_URL") or None

        content_dir = os.getenv("LANRELAY_CONTENT_DIR")
        if content_dir:
            settings.content_dir = Path(content_dir)
        static_dir = os.getenv("LANRELAY_STATIC_DIR")
        if static_dir:
            settings.static_dir = Path(static_dir)

        settings.max_payload_bytes = int(
            os.getenv("LANRELAY_MAX_PAYLOAD_BYTES", settings.max_payload_bytes)
        )
        settings.ack_timeout = float(
            os.getenv("LANRELAY_ACK_TIMEOUT", settings.ack_timeout)
        )
        settings.delivery_timeout = float(
            os.getenv("LANRELAY_DELIVERY_TIMEOUT", settings.delivery_timeout)
        )
        settings.log_level = os.getenv("LANRELAY_LOG_LEVEL", settings.log_level)

        if settings.max_payload_bytes <= 0:
            raise ValueError("LANRELAY_MAX_PAYLOAD_BYTES must be positive")
        return settings
