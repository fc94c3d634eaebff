"""End-to-end handling of one inbound transfer."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from lanrelay.errors import MalformedPayload, PayloadTooLarge, StorageWriteError
from lanrelay.server import codec
from lanrelay.server.broadcast import DELIVERY_TIMEOUT, fan_out
from lanrelay.server.models import AcknowledgmentResult, BroadcastNotification

if TYPE_CHECKING:
    from lanrelay.server.models import TransferRequest
    from lanrelay.server.registry import ConnectionRegistry
    from lanrelay.server.store import DurableStore

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "File successfully received and processed"
FAILURE_MESSAGE = "Error processing file"
TOO_LARGE_MESSAGE = "File too large"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def failure(message: str = FAILURE_MESSAGE, code: str | None = None) -> AcknowledgmentResult:
    return AcknowledgmentResult(success=False, message=message, code=code)


class TransferCoordinator:
    """Runs decode, persist, fan-out and acknowledge for each request.

    Holds no lock of its own: concurrent calls only meet inside the store's
    name generation.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: DurableStore,
        max_payload_bytes: int,
        delivery_timeout: float = DELIVERY_TIMEOUT,
    ) -> None:
        self.registry = registry
        self.store = store
        self.max_payload_bytes = max_payload_bytes
        self.delivery_timeout = delivery_timeout

    def check_size(self, request: TransferRequest) -> None:
        estimated = codec.estimate_decoded_size(request.payload)
        if estimated > self.max_payload_bytes:
            raise PayloadTooLarge(estimated, self.max_payload_bytes)

    async def handle(
        self, request: TransferRequest, sender_id: str | None
    ) -> AcknowledgmentResult:
        """Process one transfer. Never raises for request-level failures."""
        try:
            self.check_size(request)
        except PayloadTooLarge as exc:
            logger.warning("Rejected %s from %s: %s", request.name, sender_id, exc)
            return failure(TOO_LARGE_MESSAGE, exc.code)

        try:
            # Off the event loop: a payload at the ceiling takes a while.
            decoded = await asyncio.to_thread(codec.decode, request.payload)
        except MalformedPayload as exc:
            logger.warning("Malformed payload for %s from %s: %s", request.name, sender_id, exc)
            return failure(code=exc.code)

        if request.size and request.size != len(decoded.data):
            logger.warning(
                "Declared size %d for %s does not match decoded size %d",
                request.size,
                request.name,
                len(decoded.data),
            )

        try:
            stored = await self.store.persist(request.name, decoded.data)
        except StorageWriteError as exc:
            logger.error("Storage failed for %s from %s: %s", request.name, sender_id, exc)
            return failure(code=exc.code)

        notification = BroadcastNotification(
            name=request.name,
            reference=stored.full_url,
            size=stored.size,
            media_type=request.media_type or decoded.media_type,
            timestamp=_now_ms(),
        )
        await fan_out(
            self.registry,
            notification,
            self.registry.broadcast_targets(sender_id),
            timeout=self.delivery_timeout,
        )

        return AcknowledgmentResult(success=True, message=SUCCESS_MESSAGE, code="ok")
