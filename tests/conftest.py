"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 注册表、记录型发布器与业务服务。

``RecordingPublisher`` 代替真实的 WebSocket 广播器，按调用顺序记录所有
订阅与投递，测试可以据此断言"谁收到了什么、以什么顺序"。
"""
from __future__ import annotations

import os
import random
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CHAT_RATE_LIMIT_INTERVAL", "0")

from watchparty.services.registry import RoomRegistry  # noqa: E402
from watchparty.services.watch_session import WatchSession  # noqa: E402


class RecordingPublisher:
    """按 topic 维护订阅关系，并把每次投递展开为 (接收者, 事件, 载荷)。"""

    def __init__(self) -> None:
        self.topics: dict[str, set[str]] = {}
        self.deliveries: list[tuple[str, str, dict[str, Any]]] = []

    def subscribe(self, topic: str, connection_id: str) -> None:
        self.topics.setdefault(topic, set()).add(connection_id)

    def unsubscribe(self, topic: str, connection_id: str) -> None:
        self.topics.get(topic, set()).discard(connection_id)

    def publish(
        self,
        topic: str,
        event: str,
        data: dict[str, Any],
        exclude: str | None = None,
    ) -> None:
        for connection_id in sorted(self.topics.get(topic, ())):
            if connection_id != exclude:
                self.deliveries.append((connection_id, event, data))

    def send(self, connection_id: str, event: str, data: dict[str, Any]) -> None:
        self.deliveries.append((connection_id, event, data))

    # ── 断言辅助 ──────────────────────────────────────────────────────

    def received(self, connection_id: str, event: str | None = None) -> list[tuple[str, dict[str, Any]]]:
        """返回某个连接收到的 (事件, 载荷) 列表，可按事件名过滤。"""
        return [
            (ev, data)
            for cid, ev, data in self.deliveries
            if cid == connection_id and (event is None or ev == event)
        ]

    def clear(self) -> None:
        self.deliveries.clear()


@pytest.fixture()
def registry() -> RoomRegistry:
    """固定随机种子的房间注册表，房间号可复现。"""
    return RoomRegistry(rng=random.Random(42))


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture()
def session(registry: RoomRegistry, publisher: RecordingPublisher) -> WatchSession:
    return WatchSession(registry, publisher)
