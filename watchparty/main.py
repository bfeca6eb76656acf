"""
watchparty.main
~~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from watchparty.api import rooms, ws
from watchparty.api.deps import get_hub, get_registry
from watchparty.core.config import settings
from watchparty.core.logging import get_logger, setup_logging
from watchparty.core.rate_limit import limiter
from watchparty.schemas.api_response import ApiResponse
from watchparty.services.broadcaster import ConnectionHub
from watchparty.services.registry import RoomRegistry
from watchparty.services.watch_session import WatchSession

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子：创建进程内唯一的注册表、广播器与业务服务。"""
    registry = RoomRegistry()
    hub = ConnectionHub(outbox_max_size=settings.OUTBOX_MAX_SIZE)
    app.state.registry = registry
    app.state.hub = hub
    app.state.watch_session = WatchSession(registry, hub)
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    stats = registry.stats()
    registry.clear()
    logger.info("👋 应用已关闭 | 丢弃房间: %d", stats["rooms_total"])


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="一起看番：房间、房主播放同步与聊天",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
app.include_router(ws.router, tags=["WebSocket"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    return ApiResponse.fail(msg=detail, code=500).to_response()


@app.get("/health", tags=["System"])
async def health_check(
    registry: RoomRegistry = Depends(get_registry),
    hub: ConnectionHub = Depends(get_hub),
) -> JSONResponse:
    """验证服务是否正常运行。"""
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "rooms": len(registry),
            "connections": hub.online_count,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "watchparty.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
