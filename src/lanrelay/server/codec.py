"""Data URL codec for inbound file payloads.

A payload looks like ``data:image/jpeg;base64,/9j/4AAQ...``. The ``data:``
scheme prefix is optional; the ``;base64`` marker and the ``,`` separator
are not.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

from lanrelay.errors import MalformedPayload
from lanrelay.server.models import DEFAULT_MEDIA_TYPE

_HEADER_RE = re.compile(
    r"^(?:data:)?(?P<media_type>[^;,]*)(?P<params>(?:;[^;,]*)*?);base64$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class DecodedPayload:
    media_type: str
    data: bytes


def _split(payload: str) -> tuple[str, str]:
    header, sep, body = payload.partition(",")
    if not sep:
        raise MalformedPayload("Missing ',' separator")
    match = _HEADER_RE.match(header)
    if match is None:
        raise MalformedPayload("Missing ';base64' encoding marker")
    media_type = match.group("media_type").strip().lower() or DEFAULT_MEDIA_TYPE
    return media_type, body


def decode(payload: str) -> DecodedPayload:
    """Decode a base64 data URL into its media type and raw bytes."""
    media_type, body = _split(payload)
    try:
        data = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedPayload(f"Body is not valid base64: {exc}") from exc
    return DecodedPayload(media_type=media_type, data=data)


def encode(media_type: str, data: bytes) -> str:
    """Build a base64 data URL for *data*."""
    body = base64.b64encode(data).decode("ascii")
    return f"data:{media_type or DEFAULT_MEDIA_TYPE};base64,{body}"


def estimate_decoded_size(payload: str) -> int:
    """Decoded length of *payload* computed from the body length alone.

    Returns 0 for payloads without a separator; those fail in :func:`decode`.
    """
    _, sep, body = payload.partition(",")
    if not sep:
        return 0
    padding = len(body) - len(body.rstrip("="))
    return max(len(body) * 3 // 4 - min(padding, 2), 0)
