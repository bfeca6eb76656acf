"""
tests.test_broadcaster
~~~~~~~~~~~~~~~~~~~~~~

ConnectionHub 单元测试：topic 订阅、排除来源的广播、单播与队列满丢帧。
WebSocket 使用 ``AsyncMock`` 代替。
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocket

from watchparty.services.broadcaster import ConnectionHub


def _sent(ws: AsyncMock) -> list[dict]:
    return [c.args[0] for c in ws.send_json.call_args_list]


async def _drain() -> None:
    # 让写协程有机会把队列中的帧发出
    for _ in range(5):
        await asyncio.sleep(0)


class TestConnectionHub:
    """测试连接广播器。"""

    @pytest.mark.asyncio
    async def test_publish_reaches_topic_subscribers_except_origin(self) -> None:
        hub = ConnectionHub()
        a, b, c = (AsyncMock(spec=WebSocket) for _ in range(3))
        await hub.connect("a", a)
        await hub.connect("b", b)
        await hub.connect("c", c)
        hub.subscribe("12345", "a")
        hub.subscribe("12345", "b")

        hub.publish("12345", "videoAction", {"currentTime": 1.0}, exclude="a")
        await _drain()

        assert _sent(a) == []
        assert _sent(b) == [{"event": "videoAction", "data": {"currentTime": 1.0}}]
        assert _sent(c) == []

        for cid in ("a", "b", "c"):
            await hub.disconnect(cid)

    @pytest.mark.asyncio
    async def test_send_is_unicast_and_ordered(self) -> None:
        hub = ConnectionHub()
        ws = AsyncMock(spec=WebSocket)
        await hub.connect("a", ws)

        hub.send("a", "first", {})
        hub.send("a", "second", {})
        await hub.disconnect("a")

        ws.accept.assert_awaited_once()
        assert [f["event"] for f in _sent(ws)] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_unsubscribe_and_disconnect_drop_topics(self) -> None:
        hub = ConnectionHub()
        await hub.connect("a", AsyncMock(spec=WebSocket))
        await hub.connect("b", AsyncMock(spec=WebSocket))
        hub.subscribe("t", "a")
        hub.subscribe("t", "b")

        hub.unsubscribe("t", "a")
        assert hub.subscribers("t") == {"b"}

        await hub.disconnect("b")
        assert hub.subscribers("t") == set()
        assert hub.online_count == 1

        await hub.disconnect("a")
        assert hub.online_count == 0

    @pytest.mark.asyncio
    async def test_full_outbox_drops_frames(self) -> None:
        hub = ConnectionHub(outbox_max_size=2)
        ws = AsyncMock(spec=WebSocket)
        await hub.connect("a", ws)

        # 写协程尚未运行，前两帧入队，第三帧被丢弃
        for i in range(3):
            hub.send("a", "chatMessage", {"n": i})
        await _drain()

        assert [f["data"]["n"] for f in _sent(ws)] == [0, 1]
        await hub.disconnect("a")

    @pytest.mark.asyncio
    async def test_send_to_unknown_connection_is_ignored(self) -> None:
        hub = ConnectionHub()

        hub.send("ghost", "error", {"message": "x"})
        hub.publish("nobody", "chatMessage", {})
        await hub.disconnect("ghost")

        assert hub.online_count == 0

    @pytest.mark.asyncio
    async def test_failed_send_stops_writer(self) -> None:
        hub = ConnectionHub()
        ws = AsyncMock(spec=WebSocket)
        ws.send_json.side_effect = RuntimeError("socket closed")
        await hub.connect("a", ws)

        hub.send("a", "first", {})
        hub.send("a", "second", {})
        await _drain()

        assert ws.send_json.await_count == 1
        await hub.disconnect("a")
