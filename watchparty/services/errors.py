"""
watchparty.services.errors
~~~~~~~~~~~~~~~~~~~~~~~~~~

房间业务异常。

所有异常都只作用于单个请求，不会影响其他房间或连接。
``reported`` 为 ``True`` 的异常会被转换为 ``error`` 事件回复给请求方；
为 ``False`` 的异常（非房主操作、非成员发言）按策略静默丢弃，只记日志。
"""
from __future__ import annotations


class WatchPartyError(Exception):
    """房间业务异常基类。

    Attributes:
        message: 发给客户端的错误文本。
        reported: 是否需要回复 ``error`` 事件。
    """

    default_message: str = "Request failed"
    reported: bool = True

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class RoomNotFound(WatchPartyError):
    default_message = "Room not found"


class RoomFull(WatchPartyError):
    default_message = "Room is full"


class AlreadyInRoom(WatchPartyError):
    default_message = "Already in a room"


class CapacityExhausted(WatchPartyError):
    """房间号空间已被占满。"""

    default_message = "No room codes available"


class InvalidPayload(WatchPartyError):
    default_message = "Invalid payload"


class Unauthorized(WatchPartyError):
    """非房主尝试执行房主专属操作。"""

    default_message = "Only the host can do that"
    reported = False


class NotAMember(WatchPartyError):
    default_message = "Not in a room"
    reported = False
