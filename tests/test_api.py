"""
tests.test_api
~~~~~~~~~~~~~~

HTTP 与 WebSocket 接口的端到端测试（FastAPI TestClient）。

测试环境未配置 Gemini Key，AI 助手默认关闭，需要时替换为 mock。
"""
from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.rate_limit import limiter
from app.main import app
from app.services.assistant import AssistantReply, AssistantResponder
from tests.conftest import ADMIN_PASSWORD


@pytest.fixture()
def client() -> Iterator[TestClient]:
    limiter.reset()
    with TestClient(app) as c:
        yield c


def join(ws, name: str, role: str, password: str | None = None) -> dict:
    data = {"name": name, "role": role}
    if password is not None:
        data["password"] = password
    ws.send_json({"event": "join", "data": data})
    return ws.receive_json()


# ── HTTP ──────────────────────────────────────────────────────────────

def test_health(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["environment"] == "test"
    assert body["assistant"] is False
    assert body["online"] == 0


def test_room_state_empty(client: TestClient) -> None:
    resp = client.get("/api/room")

    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 200
    assert body["data"]["room"] == {"admin": None, "guest": None, "pending": []}
    assert body["data"]["messageCount"] == 0
    assert body["data"]["onlineCount"] == 0


def test_assistant_reply_unavailable_without_key(client: TestClient) -> None:
    resp = client.post("/api/assistant/reply", json={"message": "hello", "guestName": "Bob"})

    assert resp.status_code == 503
    assert resp.json()["code"] == 503
    assert resp.json()["data"] is None


def test_assistant_reply_success(client: TestClient) -> None:
    responder = MagicMock(spec=AssistantResponder)
    responder.respond = AsyncMock(return_value=AssistantReply(text="FastAPI is a web framework.", ok=True))
    app.state.room_hub.responder = responder

    resp = client.post("/api/assistant/reply", json={"message": "What is FastAPI?", "guestName": "Bob"})

    assert resp.status_code == 200
    assert resp.json() == {"code": 200, "data": {"response": "FastAPI is a web framework."}, "msg": "success"}
    responder.respond.assert_awaited_once_with("What is FastAPI?", "Bob")


def test_assistant_reply_model_failure(client: TestClient) -> None:
    responder = MagicMock(spec=AssistantResponder)
    responder.respond = AsyncMock(return_value=AssistantReply(text="fallback", ok=False))
    app.state.room_hub.responder = responder

    resp = client.post("/api/assistant/reply", json={"message": "hello"})

    assert resp.status_code == 502
    assert resp.json()["code"] == 502
    assert resp.json()["msg"] == "Failed to generate response"


def test_assistant_reply_validates_body(client: TestClient) -> None:
    resp = client.post("/api/assistant/reply", json={"message": ""})

    assert resp.status_code == 422


def test_http_rate_limit(client: TestClient) -> None:
    codes = [client.get("/api/room").status_code for _ in range(11)]

    assert codes[:10] == [200] * 10
    assert codes[10] == 429


# ── WebSocket ─────────────────────────────────────────────────────────

def test_wrong_admin_password(client: TestClient) -> None:
    with client.websocket_connect("/ws/chat") as ws:
        reply = join(ws, "Mallory", "admin", "nope")

    assert reply == {"event": "joined", "data": {"success": False, "error": "Invalid admin password"}}


def test_admin_approves_guest_end_to_end(client: TestClient) -> None:
    with client.websocket_connect("/ws/chat") as admin_ws:
        joined = join(admin_ws, "Alice", "admin", ADMIN_PASSWORD)
        assert joined["data"]["success"] is True
        assert joined["data"]["role"] == "admin"

        with client.websocket_connect("/ws/chat") as guest_ws:
            pending = join(guest_ws, "Bob", "guest")
            assert pending["data"]["role"] == "pending"
            assert guest_ws.receive_json() == {"event": "pendingCountChanged", "data": {"count": 1}}

            requested = admin_ws.receive_json()
            assert requested["event"] == "guestRequested"
            bob_id = requested["data"]["entry"]["id"]
            assert admin_ws.receive_json()["event"] == "pendingCountChanged"

            admin_ws.send_json({"event": "approveGuest", "data": {"pendingId": bob_id}})
            assert guest_ws.receive_json() == {"event": "approved", "data": {"name": "Bob"}}
            assert guest_ws.receive_json()["event"] == "occupantJoined"
            notice = guest_ws.receive_json()
            assert notice["data"]["message"]["body"] == "Bob has been approved to join the chat"
            assert guest_ws.receive_json() == {"event": "pendingCountChanged", "data": {"count": 0}}

            guest_ws.send_json({"event": "sendMessage", "data": {"body": "hi Alice"}})
            for expected in ("occupantJoined", "newMessage", "pendingCountChanged"):
                assert admin_ws.receive_json()["event"] == expected
            message = admin_ws.receive_json()
            assert message["event"] == "newMessage"
            assert message["data"]["message"]["authorName"] == "Bob"
            assert message["data"]["message"]["body"] == "hi Alice"
            assert admin_ws.receive_json()["event"] == "activityUpdated"

            state = client.get("/api/room").json()["data"]
            assert state["room"]["guest"]["displayName"] == "Bob"
            assert state["messageCount"] == 1
            assert state["onlineCount"] == 2

        left = admin_ws.receive_json()
        assert left == {"event": "occupantLeft", "data": {"occupantId": bob_id, "role": "guest"}}


def test_malformed_frames_are_ignored(client: TestClient) -> None:
    with client.websocket_connect("/ws/chat") as ws:
        ws.send_text("not json")
        ws.send_json({"data": {}})
        reply = join(ws, "Bob", "guest")

    assert reply["event"] == "joined"
    assert reply["data"]["success"] is True
