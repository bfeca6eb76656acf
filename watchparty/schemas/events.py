"""
watchparty.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 事件载荷的 Pydantic 模型。

线上协议统一使用 camelCase 字段名（``roomCode``、``isHost`` …），
Python 侧使用 snake_case，二者通过 ``alias_generator`` 自动转换。
出站载荷一律通过 :func:`dump` 序列化。
"""
from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """camelCase 线上字段的基类。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def dump(model: BaseModel) -> dict[str, Any]:
    """把模型序列化为线上 JSON 结构。"""
    return model.model_dump(by_alias=True, mode="json")


def _coerce_str(value: Any) -> Any:
    # 前端有时把房间号、剧集 ID 当数字发送
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


LooseStr = Annotated[str, BeforeValidator(_coerce_str)]


# ── 共享结构 ──────────────────────────────────────────────────────────

class MemberData(CamelModel):
    """对外暴露的成员信息（不含连接 ID）。"""

    nickname: str = Field(..., description="昵称")
    is_host: bool = Field(..., description="是否为房主")


class VideoState(CamelModel):
    """房主最近一次上报的播放状态。

    ``last_update`` 为服务端记录该状态的毫秒时间戳，迟到的成员据此在客户端
    推算当前进度。房主动作中携带的额外字段原样保留。
    """

    model_config = ConfigDict(extra="allow")

    is_playing: bool = Field(default=False, description="是否正在播放")
    current_time: float = Field(default=0.0, description="播放进度（秒）")
    last_update: int = Field(..., description="记录时间（Unix 毫秒）")


class ChatMessageData(CamelModel):
    """一条聊天消息，创建后不可变。"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="消息唯一 ID")
    nickname: str = Field(..., description="发送者昵称")
    message: str = Field(..., description="消息文本")
    timestamp: int = Field(..., description="发送时间（Unix 毫秒）")
    is_host: bool = Field(..., description="发送时是否为房主")


# ── 入站事件 ──────────────────────────────────────────────────────────

class CreateRoomRequest(CamelModel):
    nickname: str


class JoinRoomRequest(CamelModel):
    room_code: LooseStr
    nickname: str


class VideoAction(CamelModel):
    """房主的播放控制动作（播放 / 暂停 / 跳转）。"""

    model_config = ConfigDict(extra="allow")

    is_playing: bool
    current_time: float = Field(..., ge=0)


class VideoActionRequest(CamelModel):
    action: VideoAction


class ChangeEpisodeRequest(CamelModel):
    episode_id: LooseStr | None = None
    anime_id: LooseStr | None = None


class ChatMessageRequest(CamelModel):
    message: str


class RoomInfoRequest(CamelModel):
    room_code: LooseStr


# ── 出站事件 ──────────────────────────────────────────────────────────

class RoomCreatedData(CamelModel):
    room_code: str
    is_host: bool = True
    members: list[MemberData]


class RoomJoinedData(CamelModel):
    room_code: str
    is_host: bool = False
    current_episode: str | None
    anime_id: str | None
    video_state: VideoState
    members: list[MemberData]
    chat: list[ChatMessageData]


class UserJoinedData(CamelModel):
    nickname: str
    members: list[MemberData]


class ChangeEpisodeData(CamelModel):
    episode_id: str | None
    anime_id: str | None


class RoomInfoData(CamelModel):
    """房间快照（不含聊天记录）。"""

    members: list[MemberData]
    current_episode: str | None
    anime_id: str | None
    video_state: VideoState


class NewHostData(CamelModel):
    new_host_id: str
    new_host_nickname: str
    members: list[MemberData]


class UserLeftData(CamelModel):
    nickname: str
    members: list[MemberData]


class RoomLeftData(CamelModel):
    room_code: str


class ErrorData(CamelModel):
    message: str


class RoomSummaryData(CamelModel):
    """HTTP 房间列表中的单个房间摘要。"""

    room_code: str = Field(..., description="房间号")
    member_count: int = Field(..., description="当前成员数")
    host_nickname: str = Field(..., description="房主昵称")
    current_episode: str | None = Field(default=None, description="当前剧集 ID")
    anime_id: str | None = Field(default=None, description="当前番剧 ID")
