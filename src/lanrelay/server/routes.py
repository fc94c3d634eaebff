from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from lanrelay import __version__
from lanrelay.server.coordinator import FAILURE_MESSAGE, failure
from lanrelay.server.models import (
    AddressResponse,
    HealthResponse,
    InboundEvent,
    TransferRequest,
)

if TYPE_CHECKING:
    from lanrelay.server.coordinator import TransferCoordinator
    from lanrelay.server.registry import Connection
    from lanrelay.server.state import AppState


def get_state(request: Request) -> AppState:
    return request.app.state


StateDep = Depends(get_state)

logger = logging.getLogger(__name__)

router = APIRouter()

WELCOME_EVENT = "welcome"
ACK_EVENT = "ack"
ERROR_EVENT = "error"


@router.get("/health", response_model=HealthResponse)
async def health(state: AppState = StateDep) -> HealthResponse:
    """
    Simple health check endpoint that returns the relay status, version,
      connected peer count, payload ceiling and acknowledgment timeout.
    """
    return HealthResponse(
        status="ok",
        version=__version__,
        peers=len(state.registry),
        max_payload_bytes=state.settings.max_payload_bytes,
        ack_timeout=state.settings.ack_timeout,
    )


@router.get("/address", response_model=AddressResponse)
async def address(state: AppState = StateDep) -> AddressResponse:
    """
    Report the LAN-reachable address peers should use to build file URLs.
    """
    host = urlparse(state.base_url).hostname or "localhost"
    return AddressResponse(ip=host, base_url=state.base_url)


async def _process_transfer(
    coordinator: TransferCoordinator,
    conn: Connection,
    request: TransferRequest,
    ack: str | None,
) -> None:
    try:
        result = await coordinator.handle(request, conn.connection_id)
    except Exception:
        # The sender is still owed an answer.
        logger.exception("Unexpected error handling %s", request.name)
        result = failure()

    # Fire-and-forget submits get no reply.
    if ack is None:
        return
    try:
        await conn.send({"event": ACK_EVENT, "ack": ack, "data": result.model_dump()})
    except Exception as exc:
        # The sender left; the transfer itself already completed.
        logger.debug("Dropping ack %s for %s: %s", ack, conn.connection_id, exc)


async def _send_error(conn: Connection, message: str) -> None:
    await conn.send({"event": ERROR_EVENT, "data": {"message": message}})


@router.websocket("/ws")
async def relay_socket(websocket: WebSocket) -> None:
    """
    Persistent peer connection. Peers submit files with ``submit-transfer``
    events and receive ``notify-transfer`` events for files sent by others.

    Each submit is processed in its own task so a single peer can have
    several transfers in flight while this loop keeps reading.
    """
    state: AppState = websocket.app.state
    registry = state.registry

    await websocket.accept()
    connection_id = registry.register(websocket)
    conn = registry.get(connection_id)
    if conn is None:
        return

    try:
        await conn.send(
            {"event": WELCOME_EVENT, "data": {"connection_id": connection_id}}
        )
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            text = message.get("text")
            if text is None:
                await _send_error(conn, "Binary frames are not supported")
                continue

            # Validate the envelope, then the transfer it carries.
            try:
                envelope = InboundEvent.model_validate_json(text)
            except ValidationError as exc:
                logger.warning("Invalid event from %s: %s", connection_id, exc)
                await _send_error(conn, "Invalid event")
                continue

            try:
                request = TransferRequest.model_validate(envelope.data)
            except ValidationError as exc:
                logger.warning("Invalid transfer from %s: %s", connection_id, exc)
                if envelope.ack is not None:
                    result = failure(FAILURE_MESSAGE, "invalid_request")
                    await conn.send(
                        {"event": ACK_EVENT, "ack": envelope.ack, "data": result.model_dump()}
                    )
                continue

            request.submitted_at = time.time_ns() // 1_000_000
            logger.info("Receiving %s from %s", request.name, connection_id)

            task = asyncio.create_task(
                _process_transfer(state.coordinator, conn, request, envelope.ack)
            )
            state.inflight.add(task)
            task.add_done_callback(state.inflight.discard)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.warning("Connection %s closed: %s", connection_id, exc)
    finally:
        registry.unregister(connection_id)
