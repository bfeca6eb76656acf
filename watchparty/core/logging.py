"""
watchparty.core.logging
~~~~~~~~~~~~~~~~~~~~~~~

统一日志配置，根据环境自动设置日志级别和格式。

所有模块应通过 ``get_logger(__name__)`` 获取 logger 实例。
WebSocket 连接在处理期间会设置 ``connection_id_ctx_var``，
日志记录中的 ``conn_id`` 字段即来自于此，便于按连接追踪事件。
"""
from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

from watchparty.core.config import settings

# 当前正在处理的连接 ID，未处于连接上下文时为 "-"
connection_id_ctx_var: ContextVar[str] = ContextVar("connection_id", default="-")

# 日志格式：时间 | 级别 | 连接 | 模块名 | 消息
_LOG_FORMAT: str = "%(asctime)s | %(levelname)-7s | %(conn_id)s | %(name)s | %(message)s"
_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"


class ConnectionIdFilter(logging.Filter):
    """把 ``connection_id_ctx_var`` 注入到每条日志记录的 ``conn_id`` 属性。"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.conn_id = connection_id_ctx_var.get()
        return True


def setup_logging() -> None:
    """根据当前环境配置全局日志。应在应用启动时调用一次。"""
    level = getattr(logging, settings.effective_log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.addFilter(ConnectionIdFilter())

    logging.basicConfig(
        level=level,
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
        handlers=[handler],
        force=True,
    )

    # 生产环境不需要逐条访问日志
    if settings.is_prod:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """获取指定模块的 logger 实例。

    Args:
        name: 模块名，通常传 ``__name__``。

    Returns:
        配置好的 ``logging.Logger`` 实例。
    """
    return logging.getLogger(name)
