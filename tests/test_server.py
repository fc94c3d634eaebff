"""Tests for the relay routes (HTTP via ASGI transport, WebSocket via TestClient)."""

from __future__ import annotations

from urllib.parse import urlparse

import pytest
from conftest import BASE_URL, data_url, stored_files

from lanrelay.config import MIB
from lanrelay.server.coordinator import FAILURE_MESSAGE, SUCCESS_MESSAGE

# ---------------------------------------------------------------------------
# HTTP routes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health(relay_client):
    resp = await relay_client.get("/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["peers"] == 0
    assert data["max_payload_bytes"] == MIB
    assert data["ack_timeout"] == 60.0
    assert "version" in data


@pytest.mark.asyncio
async def test_address(relay_client):
    resp = await relay_client.get("/v1/address")
    assert resp.status_code == 200
    assert resp.json() == {"ip": "relay.test", "base_url": BASE_URL}


@pytest.mark.asyncio
async def test_files_are_served(relay_client, content_dir):
    (content_dir / "123-notes.txt").write_bytes(b"shared notes")
    resp = await relay_client.get("/files/123-notes.txt")
    assert resp.status_code == 200
    assert resp.content == b"shared notes"


@pytest.mark.asyncio
async def test_missing_file_404(relay_client):
    resp = await relay_client.get("/files/nothing-here.txt")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_cors_open(relay_client):
    resp = await relay_client.get("/v1/health", headers={"Origin": "http://phone.lan"})
    assert resp.headers["access-control-allow-origin"] == "*"


# ---------------------------------------------------------------------------
# WebSocket relay
# ---------------------------------------------------------------------------


def _submit(name: str, payload: str, size: int = 0, ack: str | None = "a1", **extra) -> dict:
    return {
        "event": "submit-transfer",
        "ack": ack,
        "data": {"name": name, "payload": payload, "size": size, **extra},
    }


def _welcome(session) -> str:
    """Consume the welcome event and return the assigned connection id."""
    welcome = session.receive_json()
    assert welcome["event"] == "welcome"
    return welcome["data"]["connection_id"]


def test_welcome_assigns_id(ws_client):
    with ws_client.websocket_connect("/v1/ws") as ws:
        msg = ws.receive_json()
        assert msg["event"] == "welcome"
        assert len(msg["data"]["connection_id"]) == 32


def test_health_counts_peers(ws_client):
    with ws_client.websocket_connect("/v1/ws") as ws:
        ws.receive_json()
        assert ws_client.get("/v1/health").json()["peers"] == 1


def test_transfer_reaches_other_peer(ws_client, content_dir, payload_bytes):
    """Peer A sends photo.jpg; B is notified and can fetch it; A gets success."""
    with (
        ws_client.websocket_connect("/v1/ws") as a,
        ws_client.websocket_connect("/v1/ws") as b,
    ):
        _welcome(a)
        _welcome(b)
        a.send_json(
            _submit(
                "photo.jpg",
                data_url(payload_bytes, "image/jpeg"),
                size=1024,
                media_type="image/jpeg",
            )
        )

        notify = b.receive_json()
        assert notify["event"] == "notify-transfer"
        assert notify["data"]["name"] == "photo.jpg"
        assert notify["data"]["size"] == 1024
        assert notify["data"]["reference"].startswith(BASE_URL + "/files/")

        ack = a.receive_json()
        assert ack == {
            "event": "ack",
            "ack": "a1",
            "data": {"success": True, "message": SUCCESS_MESSAGE, "code": "ok"},
        }

        resp = ws_client.get(urlparse(notify["data"]["reference"]).path)
        assert resp.status_code == 200
        assert resp.content == payload_bytes


def test_malformed_payload_not_broadcast(ws_client, content_dir):
    with (
        ws_client.websocket_connect("/v1/ws") as a,
        ws_client.websocket_connect("/v1/ws") as b,
    ):
        _welcome(a)
        _welcome(b)
        a.send_json(_submit("bad.txt", "not-a-data-url", ack="bad"))
        ack = a.receive_json()
        assert ack["ack"] == "bad"
        assert ack["data"]["success"] is False
        assert ack["data"]["message"] == FAILURE_MESSAGE
        assert stored_files(content_dir) == []

        # The next event B sees is for the good file, not the bad one.
        a.send_json(_submit("good.txt", data_url(b"ok"), ack="good"))
        assert b.receive_json()["data"]["name"] == "good.txt"
        assert a.receive_json()["ack"] == "good"
        assert len(stored_files(content_dir)) == 1


def test_oversized_payload_rejected_connection_kept(ws_client, content_dir):
    with (
        ws_client.websocket_connect("/v1/ws") as a,
        ws_client.websocket_connect("/v1/ws") as b,
    ):
        _welcome(a)
        _welcome(b)
        a.send_json(_submit("huge.bin", data_url(b"\0" * (MIB + MIB // 2)), ack="huge"))
        ack = a.receive_json()
        assert ack["data"]["success"] is False
        assert ack["data"]["code"] == "payload_too_large"
        assert stored_files(content_dir) == []

        a.send_json(_submit("small.bin", data_url(b"\0" * 10), ack="small"))
        assert b.receive_json()["data"]["name"] == "small.bin"
        assert a.receive_json()["data"]["success"] is True


def test_lone_sender_succeeds(ws_client, content_dir):
    with ws_client.websocket_connect("/v1/ws") as a:
        a.receive_json()
        a.send_json(_submit("alone.txt", data_url(b"just me")))
        ack = a.receive_json()
        assert ack["data"]["success"] is True
    assert len(stored_files(content_dir)) == 1


def test_fire_and_forget(ws_client, content_dir):
    with (
        ws_client.websocket_connect("/v1/ws") as a,
        ws_client.websocket_connect("/v1/ws") as b,
    ):
        _welcome(a)
        _welcome(b)
        a.send_json(_submit("quiet.txt", data_url(b"q"), ack=None))
        assert b.receive_json()["data"]["name"] == "quiet.txt"

        # A got no ack for the first submit: the next message is this ack.
        a.send_json(_submit("loud.txt", data_url(b"l"), ack="loud"))
        assert a.receive_json()["ack"] == "loud"


def test_invalid_json_keeps_connection(ws_client):
    with ws_client.websocket_connect("/v1/ws") as a:
        a.receive_json()
        a.send_text("this is not json")
        err = a.receive_json()
        assert err["event"] == "error"

        a.send_json(_submit("after.txt", data_url(b"x"), ack="after"))
        assert a.receive_json()["data"]["success"] is True


def test_unknown_event_rejected(ws_client):
    with ws_client.websocket_connect("/v1/ws") as a:
        a.receive_json()
        a.send_json({"event": "delete-everything", "data": {}})
        assert a.receive_json()["event"] == "error"


def test_invalid_transfer_fields(ws_client, content_dir):
    with ws_client.websocket_connect("/v1/ws") as a:
        a.receive_json()
        a.send_json({"event": "submit-transfer", "ack": "x", "data": {"payload": "y"}})
        ack = a.receive_json()
        assert ack["ack"] == "x"
        assert ack["data"]["success"] is False
        assert ack["data"]["code"] == "invalid_request"
    assert stored_files(content_dir) == []


def test_binary_frame_rejected(ws_client):
    with ws_client.websocket_connect("/v1/ws") as a:
        a.receive_json()
        a.send_bytes(b"\x00\x01")
        err = a.receive_json()
        assert err["event"] == "error"
        assert "Binary" in err["data"]["message"]


def test_traversal_name_stored_inside(ws_client, content_dir):
    with ws_client.websocket_connect("/v1/ws") as a:
        a.receive_json()
        a.send_json(_submit("../../etc/passwd", data_url(b"root:x")))
        assert a.receive_json()["data"]["success"] is True
    files = stored_files(content_dir)
    assert len(files) == 1
    assert files[0].name.endswith("-passwd")


def test_unexpected_error_still_acknowledged(ws_client, relay_app, monkeypatch):
    async def exploding_handle(request, sender_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(relay_app.state.coordinator, "handle", exploding_handle)
    with ws_client.websocket_connect("/v1/ws") as a:
        a.receive_json()
        a.send_json(_submit("a.txt", data_url(b"a"), ack="owed"))
        ack = a.receive_json()
        assert ack["ack"] == "owed"
        assert ack["data"]["success"] is False
        assert ack["data"]["message"] == FAILURE_MESSAGE
