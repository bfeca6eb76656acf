"""
watchparty.api.ws
~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 一起看房间的唯一事件通道。

每个连接分配一个连接 ID，收到的帧交给 ``WatchSession.dispatch`` 处理，
出站事件经 ``ConnectionHub`` 投递。

帧格式（双向一致）::

    {"event": "<事件名>", "data": <载荷>}

连接建立后服务端先推送 ``connected{connectionId}``，客户端据此判断
``newHost.newHostId`` 是否指向自己。
"""
from __future__ import annotations

import json
import uuid

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from watchparty.api.deps import get_hub, get_watch_session
from watchparty.core.config import settings
from watchparty.core.logging import connection_id_ctx_var, get_logger
from watchparty.core.rate_limit import WebSocketRateLimiter
from watchparty.services.broadcaster import ConnectionHub
from watchparty.services.watch_session import WatchSession

logger = get_logger(__name__)

router: APIRouter = APIRouter()


def _decode_frame(raw: str) -> tuple[str, object] | None:
    """解析一帧入站消息，格式不合法时返回 ``None``。"""
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        return None
    return frame["event"], frame.get("data")


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    session: WatchSession = Depends(get_watch_session),
    hub: ConnectionHub = Depends(get_hub),
) -> None:
    """WebSocket 一起看端点。

    消息协议见模块文档。断线时自动离开所在房间（必要时转移房主）。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        session: 房间事件处理器。
        hub: 连接广播器。
    """
    connection_id = uuid.uuid4().hex
    token = connection_id_ctx_var.set(connection_id[:8])

    chat_limiter = WebSocketRateLimiter(interval_seconds=settings.CHAT_RATE_LIMIT_INTERVAL)

    try:
        await hub.connect(connection_id, websocket)
        logger.info("连接建立 | 在线: %d", hub.online_count)
        hub.send(connection_id, "connected", {"connectionId": connection_id})

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # 二进制帧不属于协议，与非法 JSON 同样处理
            raw = message.get("text")
            decoded = _decode_frame(raw) if raw is not None else None
            if decoded is None:
                hub.send(connection_id, "error", {"message": "Malformed frame"})
                continue

            event, data = decoded
            if event == "chatMessage" and not chat_limiter.is_allowed(connection_id):
                hub.send(connection_id, "error", {"message": "You are sending messages too fast"})
                continue

            session.dispatch(connection_id, event, data)

    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        session.disconnect(connection_id)
        chat_limiter.remove_client(connection_id)
        await hub.disconnect(connection_id)
        logger.info("连接断开 | 在线: %d", hub.online_count)
        connection_id_ctx_var.reset(token)
