from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from lanrelay.config import RelaySettings
from lanrelay.server.coordinator import TransferCoordinator
from lanrelay.server.registry import ConnectionRegistry
from lanrelay.server.store import DurableStore


@dataclass
class AppState:
    """Everything the routes share for one relay session."""

    settings: RelaySettings
    base_url: str
    registry: ConnectionRegistry
    store: DurableStore
    coordinator: TransferCoordinator
    # Strong references keep in-flight transfers alive after their sender leaves.
    inflight: set[asyncio.Task] = field(default_factory=set)

    @classmethod
    def build(cls, settings: RelaySettings, base_url: str) -> AppState:
        registry = ConnectionRegistry()
        store = DurableStore(settings.content_dir, base_url)
        coordinator = TransferCoordinator(
            registry,
            store,
            max_payload_bytes=settings.max_payload_bytes,
            delivery_timeout=settings.delivery_timeout,
        )
        return cls(
            settings=settings,
            base_url=base_url,
            registry=registry,
            store=store,
            coordinator=coordinator,
        )
