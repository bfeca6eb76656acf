"""
tests.test_api
~~~~~~~~~~~~~~

HTTP 与 WebSocket 端点集成测试（FastAPI ``TestClient``）。
"""
from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.testclient import WebSocketTestSession

from watchparty.core.rate_limit import limiter
from watchparty.main import app
from watchparty.schemas.api_response import ApiResponse
from watchparty.services.errors import RoomFull


@pytest.fixture()
def client() -> Iterator[TestClient]:
    limiter.reset()
    with TestClient(app) as c:
        yield c


def _emit(ws: WebSocketTestSession, event: str, data: Any = None) -> None:
    ws.send_json({"event": event, "data": data})


def _expect(ws: WebSocketTestSession, event: str) -> dict[str, Any]:
    frame = ws.receive_json()
    assert frame["event"] == event, frame
    return frame["data"]


class TestHttp:
    """测试 REST 端点。"""

    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["rooms"] == 0

    def test_unknown_room_returns_404(self, client: TestClient) -> None:
        resp = client.get("/api/rooms/99999")

        assert resp.status_code == 404
        assert resp.json() == {"code": 404, "data": None, "msg": "Room not found"}

    def test_list_rooms_empty(self, client: TestClient) -> None:
        resp = client.get("/api/rooms")

        assert resp.status_code == 200
        assert resp.json()["data"] == []

    def test_error_envelope_uses_code_as_status(self) -> None:
        resp = ApiResponse.from_error(RoomFull(), code=409).to_response()

        assert resp.status_code == 409
        assert json.loads(resp.body) == {"code": 409, "data": None, "msg": "Room is full"}


class TestWebSocket:
    """测试 WebSocket 事件通道的完整流程。"""

    def test_connected_frame_carries_connection_id(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            data = _expect(ws, "connected")
            assert isinstance(data["connectionId"], str)
            assert data["connectionId"]

    def test_malformed_frame(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            _expect(ws, "connected")
            ws.send_text("not json")
            assert _expect(ws, "error") == {"message": "Malformed frame"}

    def test_binary_frame_is_malformed_and_connection_survives(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            _expect(ws, "connected")
            ws.send_bytes(b"\x00\x01")
            assert _expect(ws, "error") == {"message": "Malformed frame"}

            _emit(ws, "getRoomInfo", "99999")
            assert _expect(ws, "error") == {"message": "Room not found"}

    def test_create_join_sync_and_failover(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as bob:
            bob_id = _expect(bob, "connected")["connectionId"]

            with client.websocket_connect("/ws") as alice:
                _expect(alice, "connected")
                _emit(alice, "createRoom", {"nickname": "Alice"})
                created = _expect(alice, "roomCreated")
                code = created["roomCode"]
                assert len(code) == 5 and code.isdigit()
                assert created["isHost"] is True
                assert created["members"] == [{"nickname": "Alice", "isHost": True}]

                _emit(bob, "joinRoom", {"roomCode": code, "nickname": "Bob"})
                assert _expect(bob, "userJoined")["nickname"] == "Bob"
                joined = _expect(bob, "roomJoined")
                assert joined["isHost"] is False
                assert len(joined["members"]) == 2
                assert _expect(alice, "userJoined")["nickname"] == "Bob"

                _emit(alice, "videoAction", {"action": {"isPlaying": True, "currentTime": 42.5}})
                assert _expect(bob, "videoAction") == {"isPlaying": True, "currentTime": 42.5}

                _emit(bob, "chatMessage", {"message": "nice"})
                assert _expect(alice, "chatMessage")["message"] == "nice"
                assert _expect(bob, "chatMessage")["isHost"] is False

                info = client.get(f"/api/rooms/{code}").json()["data"]
                assert info["videoState"]["currentTime"] == 42.5
                assert info["videoState"]["isPlaying"] is True

                rooms = client.get("/api/rooms").json()["data"]
                assert rooms == [{
                    "roomCode": code,
                    "memberCount": 2,
                    "hostNickname": "Alice",
                    "currentEpisode": None,
                    "animeId": None,
                }]

            # Alice 断开，Bob 成为房主
            new_host = _expect(bob, "newHost")
            assert new_host["newHostId"] == bob_id
            assert new_host["newHostNickname"] == "Bob"
            left = _expect(bob, "userLeft")
            assert left["nickname"] == "Alice"
            assert left["members"] == [{"nickname": "Bob", "isHost": True}]

            _emit(bob, "getRoomInfo", code)
            assert _expect(bob, "roomInfo")["members"] == [{"nickname": "Bob", "isHost": True}]

        assert client.get("/health").json()["rooms"] == 0

    def test_join_unknown_room_reports_error(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            _expect(ws, "connected")
            _emit(ws, "joinRoom", {"roomCode": "99999", "nickname": "Bob"})
            assert _expect(ws, "error") == {"message": "Room not found"}
