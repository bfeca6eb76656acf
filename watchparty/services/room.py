"""
watchparty.services.room
~~~~~~~~~~~~~~~~~~~~~~~~

房间领域模型 —— 封装一个一起看房间的全部状态。

每个 ``Room`` 持有自己的成员表、播放状态和聊天记录，并携带一把独立的锁；
对这些字段的任何读改写都必须在 ``room.lock`` 内完成。房间之间互不干扰。
"""
from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from watchparty.schemas.events import (
    ChatMessageData,
    MemberData,
    RoomInfoData,
    RoomSummaryData,
    VideoState,
)

# 房间人数硬上限
MAX_MEMBERS: int = 10
# 服务端保留的聊天条数
CHAT_HISTORY_LIMIT: int = 100
# 加入房间时下发的聊天条数
CHAT_SNAPSHOT_LIMIT: int = 50


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Member:
    """房间成员。只有房主转移时才会修改 ``is_host``。"""

    connection_id: str
    nickname: str
    is_host: bool = False

    def to_data(self) -> MemberData:
        return MemberData(nickname=self.nickname, is_host=self.is_host)


class Room:
    """一个一起看房间。

    Attributes:
        code: 五位数字房间号。
        host_connection_id: 当前房主的连接 ID。
        members: 连接 ID → ``Member``，按加入顺序排列。
        current_episode: 当前剧集 ID。
        anime_id: 当前番剧 ID。
        video_state: 房主最近一次上报的播放状态。
        chat: 聊天记录，最多 ``CHAT_HISTORY_LIMIT`` 条。
        closed: 房间已从注册表移除，后续加入应视为房间不存在。
    """

    def __init__(self, code: str, host: Member) -> None:
        host.is_host = True
        self.code = code
        self.host_connection_id = host.connection_id
        self.members: dict[str, Member] = {host.connection_id: host}
        self.current_episode: str | None = None
        self.anime_id: str | None = None
        self.video_state = VideoState(is_playing=False, current_time=0.0, last_update=now_ms())
        self.chat: list[ChatMessageData] = []
        self.closed = False
        self._lock = threading.RLock()

    @contextmanager
    def lock(self) -> Iterator[Room]:
        """独占本房间，``with room.lock():`` 内的修改对其他事件原子可见。"""
        with self._lock:
            yield self

    # ── 成员 ──────────────────────────────────────────────────────────

    @property
    def host(self) -> Member:
        return self.members[self.host_connection_id]

    @property
    def is_full(self) -> bool:
        return len(self.members) >= MAX_MEMBERS

    def add_member(self, member: Member) -> None:
        self.members[member.connection_id] = member

    def remove_member(self, connection_id: str) -> Member | None:
        return self.members.pop(connection_id, None)

    def promote_successor(self) -> Member:
        """把最早加入的剩余成员提升为房主。调用方需保证房间非空。"""
        successor = next(iter(self.members.values()))
        successor.is_host = True
        self.host_connection_id = successor.connection_id
        return successor

    def member_list(self) -> list[MemberData]:
        return [m.to_data() for m in self.members.values()]

    # ── 播放与聊天 ────────────────────────────────────────────────────

    def append_chat(self, message: ChatMessageData) -> None:
        self.chat.append(message)
        if len(self.chat) > CHAT_HISTORY_LIMIT:
            del self.chat[:-CHAT_HISTORY_LIMIT]

    def recent_chat(self) -> list[ChatMessageData]:
        return self.chat[-CHAT_SNAPSHOT_LIMIT:]

    # ── 快照 ──────────────────────────────────────────────────────────

    def info(self) -> RoomInfoData:
        """返回房间快照（不含聊天记录）。"""
        return RoomInfoData(
            members=self.member_list(),
            current_episode=self.current_episode,
            anime_id=self.anime_id,
            video_state=self.video_state,
        )

    def summary(self) -> RoomSummaryData:
        return RoomSummaryData(
            room_code=self.code,
            member_count=len(self.members),
            host_nickname=self.host.nickname,
            current_episode=self.current_episode,
            anime_id=self.anime_id,
        )
