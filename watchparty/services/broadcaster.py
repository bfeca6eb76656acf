"""
watchparty.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接广播器 —— 维护在线连接、房间 topic 订阅与消息投递。

``ConnectionHub`` 实现 ``EventPublisher`` 协议：业务层同步调用
``publish`` / ``send``，帧被放入每个连接独立的有界发送队列后立即返回，
由该连接的写协程异步发出。队列已满时直接丢帧（尽力投递），
客户端可通过 ``getRoomInfo`` 重新同步。
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from fastapi import WebSocket

from watchparty.core.logging import get_logger

logger = get_logger(__name__)


class _Outbox:
    """单个连接的发送队列与写协程。"""

    def __init__(self, websocket: WebSocket, max_size: int) -> None:
        self.websocket = websocket
        self.queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=max_size)
        self.task: asyncio.Task[None] | None = None

    async def run(self) -> None:
        while True:
            frame = await self.queue.get()
            if frame is None:
                break
            try:
                await self.websocket.send_json(frame)
            except Exception as e:
                logger.warning("发送失败，停止向该连接写入: %s", e)
                break


class ConnectionHub:
    """WebSocket 连接广播器（全局单例，挂载于 ``app.state``）。

    Attributes:
        outbox_max_size: 每个连接发送队列的容量。
    """

    def __init__(self, outbox_max_size: int = 256) -> None:
        self.outbox_max_size = outbox_max_size
        self._outboxes: dict[str, _Outbox] = {}
        self._topics: dict[str, set[str]] = {}

    # ── 连接生命周期 ──────────────────────────────────────────────────

    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """接受新连接，登记发送队列并启动写协程。"""
        await websocket.accept()
        outbox = _Outbox(websocket, self.outbox_max_size)
        outbox.task = asyncio.create_task(outbox.run())
        self._outboxes[connection_id] = outbox

    async def disconnect(self, connection_id: str) -> None:
        """移除连接及其全部订阅，排空已入队的帧后结束写协程。"""
        for members in self._topics.values():
            members.discard(connection_id)
        self._prune_topics()

        outbox = self._outboxes.pop(connection_id, None)
        if outbox is None or outbox.task is None:
            return
        try:
            outbox.queue.put_nowait(None)
        except asyncio.QueueFull:
            outbox.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await outbox.task

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self._outboxes)

    # ── EventPublisher ────────────────────────────────────────────────

    def subscribe(self, topic: str, connection_id: str) -> None:
        self._topics.setdefault(topic, set()).add(connection_id)

    def unsubscribe(self, topic: str, connection_id: str) -> None:
        members = self._topics.get(topic)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            self._topics.pop(topic, None)

    def subscribers(self, topic: str) -> set[str]:
        return set(self._topics.get(topic, ()))

    def publish(
        self,
        topic: str,
        event: str,
        data: dict[str, Any],
        exclude: str | None = None,
    ) -> None:
        """向 topic 的所有订阅者投递事件，可排除来源连接。"""
        frame = {"event": event, "data": data}
        for connection_id in list(self._topics.get(topic, ())):
            if connection_id != exclude:
                self._enqueue(connection_id, frame)

    def send(self, connection_id: str, event: str, data: dict[str, Any]) -> None:
        """只向单个连接投递事件。"""
        self._enqueue(connection_id, {"event": event, "data": data})

    def _enqueue(self, connection_id: str, frame: dict[str, Any]) -> None:
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return
        try:
            outbox.queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("发送队列已满，丢弃事件 | conn=%s | event=%s", connection_id, frame["event"])

    def _prune_topics(self) -> None:
        for topic in [t for t, members in self._topics.items() if not members]:
            self._topics.pop(topic, None)
