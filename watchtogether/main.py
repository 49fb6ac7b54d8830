"""
watchtogether.main
~~~~~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。

房间注册表与连接网关在 lifespan 中各构造一次，挂载到 ``app.state``，
路由通过依赖注入获取，不使用模块级全局变量。
"""
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from watchtogether.api import rooms, ws
from watchtogether.core.errors import RoomError
from watchtogether.core.logging import get_logger, setup_logging
from watchtogether.core.rate_limit import limiter
from watchtogether.core.settings import settings
from watchtogether.schemas.api_response import ApiResponse
from watchtogether.services.gateway import ConnectionGateway
from watchtogether.services.registry import RoomRegistry, reap_idle_rooms_forever

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    registry = RoomRegistry()
    app.state.registry = registry
    app.state.gateway = ConnectionGateway(registry)
    reaper = asyncio.create_task(
        reap_idle_rooms_forever(registry, settings.ROOM_REAPER_INTERVAL_SECONDS),
    )
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    reaper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await reaper
    logger.info("👋 应用已关闭 | 丢弃房间: %d", len(registry))


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="一起看视频 —— 房间协调后端",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

# ── 限流 ──────────────────────────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
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
        allow_origins=[settings.PUBLIC_BASE_URL],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
app.include_router(ws.router, tags=["WebSocket Sync"])


# ── 异常处理器 ────────────────────────────────────────────────────────

@app.exception_handler(RoomError)
async def room_error_handler(request: Request, exc: RoomError) -> JSONResponse:
    """业务异常（房间不存在、视频地址非法等）转为统一的失败应答。"""
    logger.info("请求被拒绝: %s %s -> %s", request.method, request.url.path, exc.reason)
    response = ApiResponse.fail(msg=exc.message, code=exc.status_code, data={"reason": exc.reason})
    return JSONResponse(status_code=exc.status_code, content=response.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(status_code=500, content=response.model_dump())


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "rooms": len(request.app.state.registry),
            "connections": request.app.state.gateway.connection_count,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "watchtogether.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
