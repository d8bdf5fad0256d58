"""HTTP and WebSocket endpoint tests with FastAPI's TestClient."""

import asyncio
import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from backend.app import create_app
from dndbot.llm import EchoClient
from dndbot.registry import is_valid_session_id


@pytest.fixture
def app(settings):
    return create_app(settings, client=EchoClient())


@pytest.fixture
def http(app):
    with TestClient(app) as client:
        yield client


def _wait_done(http: TestClient, progress, timeout: float = 5.0) -> None:
    async def wait():
        await asyncio.wait_for(progress.done.wait(), timeout)

    http.portal.call(wait)


def _generate(http: TestClient, prompt: str = "A heist in a floating city"):
    return http.post("/generate", data={"prompt": prompt})


# ---------------------------------------------------------------------------
# Health & settings
# ---------------------------------------------------------------------------

def test_health(http):
    assert http.get("/api/health").json() == {"status": "ok"}


def test_public_settings_hide_key(http):
    data = http.get("/api/settings").json()
    assert data["provider_format"] == "anthropic"
    assert "api_key" not in data


def test_index_page(http):
    resp = http.get("/")
    assert resp.status_code == 200
    assert "WebSocket" in resp.text


# ---------------------------------------------------------------------------
# POST /generate
# ---------------------------------------------------------------------------

def test_generate_requires_prompt(http):
    assert _generate(http, "   ").status_code == 400
    assert http.post("/generate").status_code == 400


def test_generate_starts_session(app, http):
    resp = _generate(http)
    assert resp.status_code == 200

    session_id = resp.json()["session_id"]
    assert is_valid_session_id(session_id)
    assert resp.headers["X-Session-Id"] == session_id
    assert resp.cookies["session_id"] == session_id

    progress = app.state.registry.get(session_id)
    _wait_done(http, progress)

    messages = http.get(f"/api/messages/{session_id}").json()
    assert messages[0]["status"] == "generating"
    assert messages[-1]["status"] == "completed"
    assert http.get(f"/outputs/{session_id}.zip").status_code == 200


def test_generate_rate_limited(settings):
    app = create_app(settings.model_copy(update={"rate_limit": 2}), client=EchoClient())
    with TestClient(app) as http:
        assert _generate(http).status_code == 200
        assert _generate(http).status_code == 200
        assert _generate(http).status_code == 429


# ---------------------------------------------------------------------------
# GET /api/messages/{session_id}
# ---------------------------------------------------------------------------

def test_messages_invalid_id(http):
    assert http.get("/api/messages/not-a-uuid").status_code == 400


def test_messages_upper_case_id_is_invalid(app, http):
    progress = app.state.registry.create()
    resp = http.get(f"/api/messages/{progress.session_id.upper()}")
    assert resp.status_code == 400


def test_messages_unknown_session(http):
    assert http.get(f"/api/messages/{uuid.uuid4()}").status_code == 404


def test_messages_html_is_escaped(app, http):
    progress = app.state.registry.create()
    http.portal.call(progress.report, "<script>alert(1)</script>")

    resp = http.get(f"/api/messages/{progress.session_id}", params={"format": "html"})
    assert resp.status_code == 200
    assert "&lt;script&gt;" in resp.text
    assert "<script>" not in resp.text


# ---------------------------------------------------------------------------
# GET /check-session
# ---------------------------------------------------------------------------

def test_check_session_without_id(http):
    assert http.get("/check-session").json() == {
        "session_id": None, "exists": False, "state": None,
    }


def test_check_session_by_header(app, http):
    progress = app.state.registry.create()
    data = http.get("/check-session", headers={"X-Session-Id": progress.session_id}).json()
    assert data == {"session_id": progress.session_id, "exists": True, "state": "initialized"}


def test_check_session_by_cookie(app, http):
    progress = app.state.registry.create()
    data = http.get("/check-session", headers={"cookie": f"session_id={progress.session_id}"}).json()
    assert data["exists"] is True


def test_check_session_unknown(http):
    assert http.get("/check-session", headers={"X-Session-Id": str(uuid.uuid4())}).json()["exists"] is False


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------

def test_websocket_invalid_id_rejected(http):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with http.websocket_connect("/ws/not-a-uuid"):
            pass
    assert exc_info.value.code == 1008


def test_websocket_unknown_session_rejected(http):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with http.websocket_connect(f"/ws/{uuid.uuid4()}"):
            pass
    assert exc_info.value.code == 1008


def test_websocket_replays_history(app, http):
    progress = app.state.registry.create()
    http.portal.call(progress.report, "first")
    http.portal.call(progress.report, "second")

    with http.websocket_connect(f"/ws/{progress.session_id}") as ws:
        received = [ws.receive_json()["message"] for _ in range(3)]
        http.portal.call(progress.report, "live")
        assert ws.receive_json()["message"] == "live"

    assert received == ["first", "second", "🔌 Connected"]


def test_websocket_session_from_cookie(app, http):
    progress = app.state.registry.create()
    headers = {"cookie": f"session_id={progress.session_id}"}
    with http.websocket_connect("/ws", headers=headers) as ws:
        assert ws.receive_json()["status"] == "connected"


def test_websocket_reconnect_closes_previous(app, http):
    progress = app.state.registry.create()
    with http.websocket_connect(f"/ws/{progress.session_id}") as first:
        assert first.receive_json()["message"] == "🔌 Connected"
        with http.websocket_connect(f"/ws/{progress.session_id}") as second:
            replayed = second.receive_json()
            assert replayed["message"] == "🔌 Connected"
            assert second.receive_json()["message"] == "🎲 Current state: connected"
            with pytest.raises(WebSocketDisconnect):
                first.receive_json()


def test_websocket_idle_client_disconnected(settings):
    app = create_app(
        settings.model_copy(update={"idle_timeout": 0.1, "ping_interval": 60}),
        client=EchoClient(),
    )
    with TestClient(app) as http:
        progress = app.state.registry.create()
        with http.websocket_connect(f"/ws/{progress.session_id}") as ws:
            assert ws.receive_json()["message"] == "🔌 Connected"
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()
        assert progress.channel is None


def test_websocket_keepalive(settings):
    app = create_app(settings.model_copy(update={"ping_interval": 0.05}), client=EchoClient())
    with TestClient(app) as http:
        progress = app.state.registry.create()
        with http.websocket_connect(f"/ws/{progress.session_id}") as ws:
            assert ws.receive_json()["type"] == "update"
            assert ws.receive_json()["type"] == "ping"
        assert len(progress.history) == 1
