"""
watchparty.services.watch_session
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

一起看房间业务服务 —— 成员进出、房主权限与转移、播放同步、聊天。

架构设计:
  - ``RoomRegistry`` 持有所有房间，``WatchSession`` 只通过它访问房间
  - 每个事件在对应房间的 ``room.lock`` 内一次性完成读改写并发布出站事件，
    因此同一房间的事件不会交错，出站顺序与修改顺序一致
  - 出站推送通过 ``EventPublisher`` 协议交给传输层（每个房间是一个 topic），
    发布即忘，不等待送达
  - 所有处理函数同步、非阻塞，可直接在事件循环中调用

业务异常见 ``watchparty.services.errors``；``dispatch()`` 负责把需要上报的
异常转换为发给请求方的 ``error`` 事件。
"""
from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from watchparty.core.logging import get_logger
from watchparty.schemas.events import (
    ChangeEpisodeData,
    ChangeEpisodeRequest,
    ChatMessageData,
    ChatMessageRequest,
    CreateRoomRequest,
    ErrorData,
    JoinRoomRequest,
    NewHostData,
    RoomCreatedData,
    RoomInfoData,
    RoomInfoRequest,
    RoomJoinedData,
    RoomLeftData,
    UserJoinedData,
    UserLeftData,
    VideoAction,
    VideoActionRequest,
    VideoState,
    dump,
)
from watchparty.services.errors import (
    AlreadyInRoom,
    InvalidPayload,
    NotAMember,
    RoomFull,
    RoomNotFound,
    Unauthorized,
    WatchPartyError,
)
from watchparty.services.registry import RoomRegistry
from watchparty.services.room import Member, Room, now_ms

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


class EventPublisher(Protocol):
    """传输层提供的发布 / 订阅能力。所有方法都应立即返回。"""

    def subscribe(self, topic: str, connection_id: str) -> None: ...

    def unsubscribe(self, topic: str, connection_id: str) -> None: ...

    def publish(
        self,
        topic: str,
        event: str,
        data: dict[str, Any],
        exclude: str | None = None,
    ) -> None: ...

    def send(self, connection_id: str, event: str, data: dict[str, Any]) -> None: ...


def _parse(model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or "payload"
        raise InvalidPayload(f"Invalid payload: {field}: {first['msg']}") from e


class WatchSession:
    """房间事件处理器（全局单例，挂载于 ``app.state``）。

    Attributes:
        registry: 房间注册表。
        publisher: 传输层发布器。
    """

    def __init__(self, registry: RoomRegistry, publisher: EventPublisher) -> None:
        self.registry = registry
        self.publisher = publisher
        self._handlers: dict[str, Callable[[str, Any], object]] = {
            "createRoom": self._on_create_room,
            "joinRoom": self._on_join_room,
            "videoAction": self._on_video_action,
            "changeEpisode": self._on_change_episode,
            "chatMessage": self._on_chat_message,
            "getRoomInfo": self._on_get_room_info,
            "leaveRoom": self._on_leave_room,
        }

    @property
    def events(self) -> frozenset[str]:
        """可处理的入站事件名。"""
        return frozenset(self._handlers)

    # ── 入口 ──────────────────────────────────────────────────────────

    def dispatch(self, connection_id: str, event: str, data: Any = None) -> None:
        """处理一条入站事件。

        需要上报的业务异常转换为 ``error`` 事件回复给请求方；
        静默策略的异常（非房主操作、非成员发言）只记日志。

        Args:
            connection_id: 事件来源连接。
            event: 事件名。
            data: 事件载荷（已解码的 JSON）。
        """
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("忽略未知事件 | event=%s", event)
            return
        try:
            handler(connection_id, data)
        except WatchPartyError as e:
            if e.reported:
                logger.info("请求失败 | event=%s | %s", event, e.message)
                self.publisher.send(connection_id, "error", dump(ErrorData(message=e.message)))
            else:
                logger.debug("丢弃请求 | event=%s | %s", event, e.message)

    def _on_create_room(self, connection_id: str, data: Any) -> None:
        req = _parse(CreateRoomRequest, data)
        self.create_room(connection_id, req.nickname)

    def _on_join_room(self, connection_id: str, data: Any) -> None:
        req = _parse(JoinRoomRequest, data)
        self.join_room(connection_id, req.room_code, req.nickname)

    # 房主专属事件先校验身份再解析载荷，非房主的畸形请求同样静默丢弃
    def _on_video_action(self, connection_id: str, data: Any) -> None:
        self._require_host(connection_id)
        req = _parse(VideoActionRequest, data)
        self.video_action(connection_id, req.action)

    def _on_change_episode(self, connection_id: str, data: Any) -> None:
        self._require_host(connection_id)
        req = _parse(ChangeEpisodeRequest, data)
        self.change_episode(connection_id, req.episode_id, req.anime_id)

    def _on_chat_message(self, connection_id: str, data: Any) -> None:
        req = _parse(ChatMessageRequest, data)
        self.chat_message(connection_id, req.message)

    def _on_get_room_info(self, connection_id: str, data: Any) -> None:
        # 旧版客户端直接发送房间号本身
        if isinstance(data, (str, int)) and not isinstance(data, bool):
            data = {"roomCode": data}
        req = _parse(RoomInfoRequest, data)
        self.get_room_info(connection_id, req.room_code)

    def _on_leave_room(self, connection_id: str, data: Any) -> None:
        self.leave_room(connection_id)

    # ── 创建 / 加入 ───────────────────────────────────────────────────

    def create_room(self, connection_id: str, nickname: str) -> RoomCreatedData:
        """创建房间，创建者成为房主，仅回复创建者 ``roomCreated``。

        Raises:
            AlreadyInRoom: 该连接已在某个房间中。
            CapacityExhausted: 房间号已耗尽。
        """
        room = self.registry.create_room(connection_id, nickname)
        with room.lock():
            self.publisher.subscribe(room.code, connection_id)
            result = RoomCreatedData(room_code=room.code, is_host=True, members=room.member_list())
            self.publisher.send(connection_id, "roomCreated", dump(result))
        return result

    def join_room(self, connection_id: str, room_code: str, nickname: str) -> RoomJoinedData:
        """加入已有房间。

        先向全房间（含新成员）广播 ``userJoined``，再单独回复新成员完整快照
        ``roomJoined``，其中聊天记录只包含最近 50 条。

        Raises:
            AlreadyInRoom: 该连接已在某个房间中。
            RoomNotFound: 房间不存在。
            RoomFull: 房间已满。
        """
        if self.registry.resolve_room(connection_id) is not None:
            raise AlreadyInRoom()

        room = self.registry.lookup(room_code)
        with room.lock():
            if room.closed:
                raise RoomNotFound()
            if room.is_full:
                raise RoomFull()

            self.registry.bind_connection(connection_id, room.code)
            room.add_member(Member(connection_id=connection_id, nickname=nickname))
            self.publisher.subscribe(room.code, connection_id)

            members = room.member_list()
            self.publisher.publish(
                room.code, "userJoined", dump(UserJoinedData(nickname=nickname, members=members)),
            )
            result = RoomJoinedData(
                room_code=room.code,
                is_host=False,
                current_episode=room.current_episode,
                anime_id=room.anime_id,
                video_state=room.video_state,
                members=members,
                chat=room.recent_chat(),
            )
            self.publisher.send(connection_id, "roomJoined", dump(result))

        logger.info("%s 加入房间 | room=%s | 成员: %d", nickname, room.code, len(members))
        return result

    # ── 房主专属操作 ──────────────────────────────────────────────────

    def _room_for(self, connection_id: str) -> Room:
        code = self.registry.resolve_room(connection_id)
        room = self.registry.get(code) if code is not None else None
        if room is None:
            raise NotAMember()
        return room

    def _require_host(self, connection_id: str) -> Room:
        room = self._room_for(connection_id)
        if room.host_connection_id != connection_id:
            raise Unauthorized()
        return room

    def video_action(self, connection_id: str, action: VideoAction) -> VideoState:
        """用房主的动作整体替换播放状态，并广播给除房主外的所有成员。

        Raises:
            NotAMember: 连接不在任何房间。
            Unauthorized: 连接不是房主。
        """
        room = self._room_for(connection_id)
        with room.lock():
            if room.closed or room.host_connection_id != connection_id:
                raise Unauthorized()
            payload = dump(action)
            room.video_state = VideoState.model_validate({**payload, "lastUpdate": now_ms()})
            self.publisher.publish(room.code, "videoAction", payload, exclude=connection_id)
            state = room.video_state

        logger.debug(
            "播放动作 | room=%s | playing=%s | t=%.2f",
            room.code, state.is_playing, state.current_time,
        )
        return state

    def change_episode(
        self, connection_id: str, episode_id: str | None, anime_id: str | None,
    ) -> ChangeEpisodeData:
        """切换剧集，广播给全房间（含房主）。

        Raises:
            NotAMember: 连接不在任何房间。
            Unauthorized: 连接不是房主。
        """
        room = self._room_for(connection_id)
        with room.lock():
            if room.closed or room.host_connection_id != connection_id:
                raise Unauthorized()
            room.current_episode = episode_id
            room.anime_id = anime_id
            result = ChangeEpisodeData(episode_id=episode_id, anime_id=anime_id)
            self.publisher.publish(room.code, "changeEpisode", dump(result))

        logger.info("切换剧集 | room=%s | episode=%s | anime=%s", room.code, episode_id, anime_id)
        return result

    # ── 聊天 ──────────────────────────────────────────────────────────

    def chat_message(self, connection_id: str, text: str) -> ChatMessageData:
        """任何成员都可发言；消息广播给全房间（含发送者）。

        Raises:
            NotAMember: 连接不在任何房间。
        """
        room = self._room_for(connection_id)
        with room.lock():
            member = room.members.get(connection_id)
            if room.closed or member is None:
                raise NotAMember()
            message = ChatMessageData(
                id=str(uuid.uuid4()),
                nickname=member.nickname,
                message=text,
                timestamp=now_ms(),
                is_host=member.is_host,
            )
            room.append_chat(message)
            self.publisher.publish(room.code, "chatMessage", dump(message))
        return message

    # ── 查询 ──────────────────────────────────────────────────────────

    def get_room_info(self, connection_id: str, room_code: str) -> RoomInfoData:
        """只读查询房间快照，仅回复请求方。

        Raises:
            RoomNotFound: 房间不存在。
        """
        room = self.registry.lookup(room_code)
        with room.lock():
            if room.closed:
                raise RoomNotFound()
            info = room.info()
            self.publisher.send(connection_id, "roomInfo", dump(info))
        return info

    # ── 离开 / 断线 ───────────────────────────────────────────────────

    def disconnect(self, connection_id: str) -> str | None:
        """连接断开时清理成员关系。

        Returns:
            连接离开的房间号；连接不在任何房间时返回 ``None``。
        """
        return self._depart(connection_id)

    def leave_room(self, connection_id: str) -> str:
        """主动离开当前房间，连接保持打开并收到 ``roomLeft``。

        Raises:
            NotAMember: 连接不在任何房间。
        """
        code = self._depart(connection_id)
        if code is None:
            raise NotAMember()
        self.publisher.send(connection_id, "roomLeft", dump(RoomLeftData(room_code=code)))
        return code

    def _depart(self, connection_id: str) -> str | None:
        code = self.registry.unbind_connection(connection_id)
        if code is None:
            return None
        room = self.registry.get(code)
        if room is None:
            return code

        with room.lock():
            member = room.remove_member(connection_id)
            self.publisher.unsubscribe(code, connection_id)
            if member is None:
                return code

            if not room.members:
                self.registry.delete(code)
                logger.info("%s 离开房间 | room=%s | 房间已空，删除", member.nickname, code)
                return code

            if room.host_connection_id == connection_id:
                successor = room.promote_successor()
                self.publisher.publish(
                    code,
                    "newHost",
                    dump(NewHostData(
                        new_host_id=successor.connection_id,
                        new_host_nickname=successor.nickname,
                        members=room.member_list(),
                    )),
                )
                logger.info("房主转移 | room=%s | %s → %s", code, member.nickname, successor.nickname)

            self.publisher.publish(
                code,
                "userLeft",
                dump(UserLeftData(nickname=member.nickname, members=room.member_list())),
            )
            remaining = len(room.members)

        logger.info("%s 离开房间 | room=%s | 成员: %d", member.nickname, code, remaining)
        return code
