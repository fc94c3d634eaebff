from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from lanrelay.server.models import ConnectionState

logger = logging.getLogger(__name__)


class PeerSocket(Protocol):
    """The part of a WebSocket the relay needs to push events."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...


@dataclass
class Connection:
    """A live peer link owned by the registry."""

    connection_id: str
    socket: PeerSocket
    state: ConnectionState = ConnectionState.CONNECTED
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def send(self, message: dict[str, Any]) -> None:
        # Frames from concurrent fan-outs and acks must not interleave.
        async with self._send_lock:
            await self.socket.send_json(message)


class ConnectionRegistry:
    """Thread-safe in-memory registry of peer connections."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._lock = threading.Lock()

    def register(self, socket: PeerSocket) -> str:
        connection_id = uuid.uuid4().hex
        with self._lock:
            self._connections[connection_id] = Connection(connection_id, socket)
        logger.info("Peer connected: %s", connection_id)
        return connection_id

    def unregister(self, connection_id: str) -> None:
        with self._lock:
            conn = self._connections.pop(connection_id, None)
        if conn is not None:
            conn.state = ConnectionState.DISCONNECTED
            logger.info("Peer disconnected: %s", connection_id)

    def get(self, connection_id: str) -> Connection | None:
        with self._lock:
            return self._connections.get(connection_id)

    def broadcast_targets(self, exclude_id: str | None) -> set[str]:
        """Ids of every live connection except *exclude_id*."""
        with self._lock:
            return {cid for cid in self._connections if cid != exclude_id}

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
