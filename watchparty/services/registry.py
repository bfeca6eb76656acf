"""
watchparty.services.registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 进程内唯一的房间号 → ``Room`` 映射。

- ``create_room()``         → 生成不冲突的五位房间号并创建房间
- ``lookup()`` / ``get()``  → 按房间号查找
- ``delete()``              → 移除房间（幂等）
- ``bind_connection()``     → 记录连接当前所在房间（同一时刻至多一个）

注册表自身的锁只保护映射的插入 / 删除与连接绑定，房间内部状态由各自的
``Room.lock`` 保护。
"""
from __future__ import annotations

import random
import threading

from watchparty.core.logging import get_logger
from watchparty.services.errors import AlreadyInRoom, CapacityExhausted, RoomNotFound
from watchparty.services.room import Member, Room

logger = get_logger(__name__)

ROOM_CODE_MIN: int = 10000
ROOM_CODE_MAX: int = 99999
# 随机抽样的最大次数，超出后改为顺序扫描空闲房间号
ROOM_CODE_MAX_ATTEMPTS: int = 64


class RoomRegistry:
    """房间注册表（进程内单例，挂载于 ``app.state``）。

    Attributes:
        rng: 房间号随机源，测试中可替换为固定种子的 ``random.Random``。
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()
        self._rooms: dict[str, Room] = {}
        self._bindings: dict[str, str] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, code: object) -> bool:
        return code in self._rooms

    # ── 房间 ──────────────────────────────────────────────────────────

    def create_room(self, connection_id: str, nickname: str) -> Room:
        """创建房间，创建者成为唯一成员兼房主，并绑定到该房间。

        Raises:
            AlreadyInRoom: 该连接已在某个房间中。
            CapacityExhausted: 房间号已全部被占用。
        """
        with self._lock:
            if connection_id in self._bindings:
                raise AlreadyInRoom()
            code = self._generate_code()
            room = Room(code, Member(connection_id=connection_id, nickname=nickname))
            self._rooms[code] = room
            self._bindings[connection_id] = code
        logger.info("房间已创建 | room=%s | host=%s | 房间总数: %d", code, nickname, len(self))
        return room

    def _generate_code(self) -> str:
        # 调用方需持有 self._lock
        for _ in range(ROOM_CODE_MAX_ATTEMPTS):
            code = str(self.rng.randint(ROOM_CODE_MIN, ROOM_CODE_MAX))
            if code not in self._rooms:
                return code

        logger.warning("房间号随机抽样 %d 次均冲突，改为顺序扫描", ROOM_CODE_MAX_ATTEMPTS)
        start = self.rng.randint(ROOM_CODE_MIN, ROOM_CODE_MAX)
        span = ROOM_CODE_MAX - ROOM_CODE_MIN + 1
        for offset in range(span):
            code = str(ROOM_CODE_MIN + (start - ROOM_CODE_MIN + offset) % span)
            if code not in self._rooms:
                return code

        logger.error("房间号已耗尽 | 房间总数: %d", len(self._rooms))
        raise CapacityExhausted()

    def get(self, code: str) -> Room | None:
        return self._rooms.get(code)

    def lookup(self, code: str) -> Room:
        """按房间号查找房间。

        Raises:
            RoomNotFound: 房间不存在。
        """
        room = self._rooms.get(code)
        if room is None:
            raise RoomNotFound()
        return room

    def delete(self, code: str) -> None:
        """移除房间并标记为已关闭。重复删除不报错。"""
        with self._lock:
            room = self._rooms.pop(code, None)
        if room is not None:
            room.closed = True
            logger.info("房间已删除 | room=%s | 房间总数: %d", code, len(self))

    def list_rooms(self) -> list[Room]:
        return list(self._rooms.values())

    def clear(self) -> None:
        """丢弃所有房间与绑定。在进程关闭时调用。"""
        with self._lock:
            for room in self._rooms.values():
                room.closed = True
            self._rooms.clear()
            self._bindings.clear()

    # ── 连接绑定 ──────────────────────────────────────────────────────

    def bind_connection(self, connection_id: str, code: str) -> None:
        """记录连接所在的房间。

        Raises:
            AlreadyInRoom: 该连接已绑定到某个房间。
        """
        with self._lock:
            if connection_id in self._bindings:
                raise AlreadyInRoom()
            self._bindings[connection_id] = code

    def resolve_room(self, connection_id: str) -> str | None:
        return self._bindings.get(connection_id)

    def unbind_connection(self, connection_id: str) -> str | None:
        with self._lock:
            return self._bindings.pop(connection_id, None)

    def stats(self) -> dict[str, int]:
        """返回注册表统计信息。"""
        return {
            "rooms_total": len(self._rooms),
            "memberships": sum(len(r.members) for r in self._rooms.values()),
            "connections_bound": len(self._bindings),
        }
