from fastapi.requests import HTTPConnection

from watchparty.services.broadcaster import ConnectionHub
from watchparty.services.registry import RoomRegistry
from watchparty.services.watch_session import WatchSession


# HTTPConnection 同时覆盖 HTTP 请求与 WebSocket 连接
def get_registry(conn: HTTPConnection) -> RoomRegistry:
    return conn.app.state.registry


def get_hub(conn: HTTPConnection) -> ConnectionHub:
    return conn.app.state.hub


def get_watch_session(conn: HTTPConnection) -> WatchSession:
    return conn.app.state.watch_session
