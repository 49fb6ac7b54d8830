"""
tests.test_api
~~~~~~~~~~~~~~

REST 接口与 ``/ws`` 端点集成测试。

HTTP 部分使用 ``TestClient``（触发 lifespan，创建真实的注册表与网关）；
WebSocket 端点另有一组使用 ``AsyncMock`` 的用例，不依赖真实连接。
"""
from __future__ import annotations

import json
from collections.abc import Iterator
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.testclient import TestClient

from conftest import DRIVE_URL, YOUTUBE_URL, frame
from watchtogether.api.ws import websocket_endpoint
from watchtogether.core.settings import settings
from watchtogether.main import app
from watchtogether.services.gateway import ConnectionGateway
from watchtogether.services.registry import RoomRegistry
from watchtogether.services.video import VideoRef


@pytest.fixture()
def client() -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _create(client: TestClient, url: str = YOUTUBE_URL) -> str:
    resp = client.post("/api/rooms", json={"videoUrl": url})
    assert resp.status_code == 200
    return resp.json()["data"]["roomCode"]


# ── REST ──────────────────────────────────────────────────────────────

class TestRoomsApi:

    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["environment"] == "test"
        assert body["connections"] == 0

    def test_create_room(self, client: TestClient) -> None:
        resp = client.post("/api/rooms", json={"videoUrl": YOUTUBE_URL})

        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == 200
        data = body["data"]
        assert len(data["roomCode"]) == settings.ROOM_CODE_LENGTH
        assert data["shareLink"].endswith(f"/room/{data['roomCode']}")
        assert data["video"]["kind"] == "youtube"
        assert data["video"]["resolvedId"] == "dQw4w9WgXcQ"

    def test_create_room_legacy_field_name(self, client: TestClient) -> None:
        resp = client.post("/api/rooms", json={"videoURL": DRIVE_URL})

        assert resp.status_code == 200
        assert resp.json()["data"]["video"]["kind"] == "drive"

    def test_create_room_invalid_video(self, client: TestClient) -> None:
        resp = client.post("/api/rooms", json={"videoUrl": "https://example.com/page.html"})

        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == 400
        assert body["data"] == {"reason": "invalidVideo"}

    def test_create_room_unparseable_url(self, client: TestClient) -> None:
        resp = client.post("/api/rooms", json={"videoUrl": "http://[abc/x.mp4"})

        assert resp.status_code == 400
        assert resp.json()["data"] == {"reason": "invalidVideo"}

    def test_create_room_missing_body(self, client: TestClient) -> None:
        resp = client.post("/api/rooms", json={})

        assert resp.status_code == 422

    def test_room_info(self, client: TestClient) -> None:
        code = _create(client)

        resp = client.get(f"/api/rooms/{code.lower()}")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["roomCode"] == code
        assert data["memberCount"] == 0
        assert data["adminId"] is None
        assert data["isPlaying"] is False

    def test_room_info_not_found(self, client: TestClient) -> None:
        resp = client.get("/api/rooms/NOPE99")

        assert resp.status_code == 404
        assert resp.json()["data"] == {"reason": "roomNotFound"}

    def test_list_rooms(self, client: TestClient) -> None:
        codes = {_create(client) for _ in range(3)}

        resp = client.get("/api/rooms")

        assert resp.status_code == 200
        assert {room["roomCode"] for room in resp.json()["data"]} == codes

    def test_create_room_rate_limited(self, client: TestClient) -> None:
        """超过每分钟创建次数后返回 429。"""
        for _ in range(10):
            assert client.post("/api/rooms", json={"videoUrl": YOUTUBE_URL}).status_code == 200

        resp = client.post("/api/rooms", json={"videoUrl": YOUTUBE_URL})

        assert resp.status_code == 429


# ── WebSocket（TestClient）─────────────────────────────────────────────

class TestWebSocketEndpoint:

    def test_join_control_and_reject(self, client: TestClient) -> None:
        code = _create(client)

        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            alice.send_text(frame(type="join", roomCode=code, displayName="Alice"))
            snapshot = alice.receive_json()
            assert snapshot["type"] == "stateSnapshot"
            assert snapshot["isAdmin"] is True
            assert alice.receive_json()["type"] == "membershipChanged"

            bob.send_text(frame(type="join", roomCode=code, displayName="Bob"))
            assert bob.receive_json()["isAdmin"] is False
            assert bob.receive_json()["type"] == "membershipChanged"
            assert [m["displayName"] for m in alice.receive_json()["members"]] == ["Alice", "Bob"]

            bob.send_text(frame(type="control", roomCode=code, action="pause"))
            assert bob.receive_json()["reason"] == "notAdmin"

            alice.send_text(frame(type="control", roomCode=code, action="play", position=42.0))
            for ws in (alice, bob):
                sync = ws.receive_json()
                assert sync["type"] == "playbackSync"
                assert sync["position"] == 42.0
                assert sync["isPlaying"] is True

    def test_malformed_frame(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("hello?")

            assert ws.receive_json()["reason"] == "malformedEvent"


# ── WebSocket（AsyncMock）──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_disconnect_runs_implicit_leave(
    registry: RoomRegistry, gateway: ConnectionGateway, youtube_video: VideoRef,
) -> None:
    """连接断开后隐式离开房间；最后一个成员离开时房间被销毁。"""
    code = registry.create_room(youtube_video)

    mock_ws = AsyncMock(spec=WebSocket)
    mock_ws.app = SimpleNamespace(state=SimpleNamespace(gateway=gateway))
    mock_ws.receive_text.side_effect = [
        frame(type="join", roomCode=code, displayName="Alice"),
        frame(type="control", roomCode=code, action="seek", position=12),
        WebSocketDisconnect(),
    ]

    await websocket_endpoint(mock_ws)

    mock_ws.accept.assert_awaited_once()
    sent = [json.loads(call.args[0]) for call in mock_ws.send_text.await_args_list]
    assert [m["type"] for m in sent] == ["stateSnapshot", "membershipChanged", "playbackSync"]
    assert sent[-1]["position"] == 12.0
    assert code not in registry
    assert gateway.connection_count == 0


@pytest.mark.asyncio
async def test_send_failure_does_not_leak_session(gateway: ConnectionGateway) -> None:
    mock_ws = AsyncMock(spec=WebSocket)
    mock_ws.app = SimpleNamespace(state=SimpleNamespace(gateway=gateway))
    mock_ws.receive_text.side_effect = ["garbage", WebSocketDisconnect()]
    mock_ws.send_text.side_effect = RuntimeError("socket closed")

    await websocket_endpoint(mock_ws)

    assert gateway.connection_count == 0


@pytest.mark.asyncio
async def test_evicted_connection_is_closed(registry: RoomRegistry) -> None:
    """下行队列溢出的连接由服务端主动关闭，积压消息不再发送。"""
    gateway = ConnectionGateway(registry, outbox_size=2)
    mock_ws = AsyncMock(spec=WebSocket)
    mock_ws.app = SimpleNamespace(state=SimpleNamespace(gateway=gateway))
    mock_ws.receive_text.side_effect = ["garbage", "garbage", "garbage", WebSocketDisconnect()]

    await websocket_endpoint(mock_ws)

    mock_ws.close.assert_awaited_once_with(code=1013)
    mock_ws.send_text.assert_not_awaited()
    assert gateway.connection_count == 0
