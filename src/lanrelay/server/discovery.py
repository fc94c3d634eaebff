"""LAN address discovery for building absolute file references."""

from __future__ import annotations

import logging
import socket

logger = logging.getLogger(__name__)


def get_local_ip() -> str:
    """Return the primary non-loopback IPv4 address of this host.

    Connecting a UDP socket sends nothing; it only makes the OS pick the
    interface it would route through.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            ip = s.getsockname()[0]
    except OSError:
        try:
            ip = socket.gethostbyname(socket.gethostname())
        except OSError:
            logger.warning("Could not determine LAN address, using localhost")
            return "localhost"
    if ip.startswith("127."):
        return "localhost"
    return ip


def advertised_base_url(port: int, base_url: str | None = None) -> str:
    """Base URL peers use to reach the relay."""
    if base_url:
        return base_url.rstrip("/")
    return f"http://{get_local_ip()}:{port}"
