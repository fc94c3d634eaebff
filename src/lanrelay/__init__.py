"""lanrelay: share files between devices on a local network."""

__version__ = "0.1.0"

from lanrelay.config import RelaySettings
from lanrelay.server.app import create_app

__all__ = [
    "__version__",
    "RelaySettings",
    "create_app",
]
