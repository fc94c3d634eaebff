from __future__ import annotations

import asyncio
import base64
import os
import socket
import threading
import time

import httpx
import pytest
import uvicorn
from fastapi.testclient import TestClient

from lanrelay.config import MIB, RelaySettings
from lanrelay.server.app import create_app
from lanrelay.server.registry import ConnectionRegistry
from lanrelay.server.store import DurableStore

BASE_URL = "http://relay.test:3000"


class FakeSocket:
    """Records events pushed to a peer; optionally fails every send."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, data, mode: str = "text") -> None:
        if self.fail:
            raise ConnectionError("peer went away")
        self.sent.append(data)


class StalledSocket:
    """A peer that has stopped reading: every send waits forever."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self._never = asyncio.Event()

    async def send_json(self, data, mode: str = "text") -> None:
        await self._never.wait()
        self.sent.append(data)


def data_url(data: bytes, media_type: str = "application/octet-stream") -> str:
    return f"data:{media_type};base64," + base64.b64encode(data).decode("ascii")


def stored_files(content_dir) -> list:
    """Files in the content directory, ignoring temporaries."""
    return sorted(p for p in content_dir.iterdir() if not p.name.startswith("."))


@pytest.fixture()
def make_socket():
    return FakeSocket


@pytest.fixture()
def content_dir(tmp_path):
    """Temporary content directory for the relay."""
    d = tmp_path / "received"
    d.mkdir()
    return d


@pytest.fixture()
def settings(content_dir) -> RelaySettings:
    return RelaySettings(
        content_dir=content_dir,
        base_url=BASE_URL,
        max_payload_bytes=1 * MIB,
    )


@pytest.fixture()
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture()
def store(content_dir) -> DurableStore:
    return DurableStore(content_dir, BASE_URL)


@pytest.fixture()
def relay_app(settings):
    """FastAPI app with a 1 MiB payload ceiling."""
    return create_app(settings)


@pytest.fixture()
def relay_client(relay_app):
    """httpx AsyncClient wired to the relay via ASGI transport."""
    transport = httpx.ASGITransport(app=relay_app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.fixture()
def ws_client(relay_app):
    """Starlette TestClient, used for WebSocket sessions."""
    with TestClient(relay_app) as client:
        yield client


@pytest.fixture()
def payload_bytes() -> bytes:
    return os.urandom(1024)


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture()
def live_relay(tmp_path):
    """Start a real relay on a free port in a background thread."""
    content = tmp_path / "live_received"
    port = _free_port()
    base_url = f"http://127.0.0.1:{port}"
    settings = RelaySettings(
        port=port,
        base_url=base_url,
        content_dir=content,
        max_payload_bytes=64 * 1024,
    )
    app = create_app(settings)

    config = uvicorn.Config(
        app,
        host="127.0.0.1",
        port=port,
        log_level="error",
        ws_max_size=settings.max_message_bytes,
    )
    server = uvicorn.Server(config)

    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()

    # Wait for server to be ready
    for _ in range(50):
        if server.started:
            break
        time.sleep(0.1)
    else:
        raise RuntimeError("Relay did not start in time")

    yield {"base_url": base_url, "content_dir": content, "app": app}

    server.should_exit = True
    thread.join(timeout=5)
