from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

DEFAULT_MEDIA_TYPE = "application/octet-stream"


class ConnectionState(str, Enum):
    """Liveness of a registered peer connection."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class TransferRequest(BaseModel):
    """A file submitted by a sender, as received on the wire."""
    name: str = Field(min_length=1)
    payload: str
    size: int = Field(default=0, ge=0)
    media_type: str | None = Field(default=None, alias="mediaType")
    submitted_at: int = 0

    model_config = {"populate_by_name": True}


class StoredFile(BaseModel):
    """A file written to the content directory."""
    original_name: str
    saved_as: str
    path: str
    relative_url: str
    full_url: str
    size: int


class BroadcastNotification(BaseModel):
    """Event pushed to every peer other than the sender."""
    name: str
    reference: str
    size: int
    media_type: str
    timestamp: int


class AcknowledgmentResult(BaseModel):
    """Outcome of one transfer, returned to its sender only."""
    success: bool
    message: str
    code: str | None = None


class InboundEvent(BaseModel):
    """Envelope of a message sent by a peer over the WebSocket."""
    event: Literal["submit-transfer"]
    data: dict[str, Any]
    ack: str | None = None


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str
    version: str
    peers: int
    max_payload_bytes: int
    ack_timeout: float


class AddressResponse(BaseModel):
    """Response model for the address discovery endpoint."""
    ip: str
    base_url: str
