from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

import httpx
from websockets.sync.client import connect

from lanrelay.client.sender import ws_url
from lanrelay.server.models import BroadcastNotification
from lanrelay.server.store import sanitize_filename

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

NOTIFY_EVENT = "notify-transfer"

# How often the listen loop checks its stop event.
POLL_INTERVAL = 0.5


def listen(
    base_url: str,
    on_notify: Callable[[BroadcastNotification], None],
    stop: threading.Event | None = None,
    on_connected: Callable[[str], None] | None = None,
) -> None:
    """Stay connected to the relay and report every file other peers send.

    Runs until *stop* is set or the relay closes the connection.
    """
    with connect(ws_url(base_url), max_size=None, open_timeout=10) as ws:
        while stop is None or not stop.is_set():
            try:
                raw = ws.recv(timeout=POLL_INTERVAL)
            except TimeoutError:
                continue

            message = json.loads(raw)
            event = message.get("event")
            if event == "welcome" and on_connected:
                on_connected(message["data"]["connection_id"])
            elif event == NOTIFY_EVENT:
                on_notify(BroadcastNotification.model_validate(message["data"]))
            else:
                logger.debug("Ignoring %s event", event)


def download_file(
    reference: str,
    dest_dir: Path,
    name: str | None = None,
    timeout: float = 60.0,
) -> Path:
    """Fetch a stored file by its reference URL into *dest_dir*."""
    filename = sanitize_filename(name or unquote(Path(urlparse(reference).path).name))
    dest_dir.mkdir(parents=True, exist_ok=True)
    target = dest_dir / filename

    with httpx.Client(timeout=httpx.Timeout(timeout, connect=10.0)) as client:
        with client.stream("GET", reference) as resp:
            resp.raise_for_status()
            with open(target, "wb") as f:
                for chunk in resp.iter_bytes():
                    f.write(chunk)

    logger.info("Downloaded %s to %s", reference, target)
    return target
