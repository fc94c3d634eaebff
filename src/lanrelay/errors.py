"""Error taxonomy shared by the relay and its clients."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every lanrelay failure."""

    code = "error"


class MalformedPayload(RelayError):
    """The sender supplied a payload that is not a base64 data URL."""

    code = "malformed_payload"


class PayloadTooLarge(RelayError):
    """The payload would decode to more bytes than the configured ceiling."""

    code = "payload_too_large"

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Payload of {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class StorageWriteError(RelayError):
    """The decoded bytes could not be written to the content directory."""

    code = "storage_error"


class BroadcastDeliveryFailure(RelayError):
    """A notification could not be delivered to one peer."""

    code = "delivery_failed"

    def __init__(self, connection_id: str, cause: BaseException) -> None:
        super().__init__(f"Delivery to {connection_id} failed: {cause}")
        self.connection_id = connection_id
        self.cause = cause


class AcknowledgmentTimeout(RelayError, TimeoutError):
    """Raised on the sending side when the relay never acknowledged."""

    code = "ack_timeout"
