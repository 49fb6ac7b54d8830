"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 内存房间注册表、连接网关，以及读取下行队列的辅助函数。
"""
from __future__ import annotations

import json
import os
import random
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from watchtogether.core.rate_limit import WebSocketRateLimiter, limiter  # noqa: E402
from watchtogether.services.gateway import ConnectionGateway, Session  # noqa: E402
from watchtogether.services.registry import RoomRegistry  # noqa: E402
from watchtogether.services.video import VideoRef, resolve_video  # noqa: E402

YOUTUBE_URL: str = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
DRIVE_URL: str = "https://drive.google.com/file/d/1AbCdEfGhIjKlMnOpQr/view?usp=sharing"


class FakeClock:
    """可手动推进的单调时钟。"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def drain(session: Session) -> list[dict[str, Any]]:
    """取出会话下行队列中的全部消息（跳过结束信号）。"""
    messages: list[dict[str, Any]] = []
    while not session.outbox.empty():
        raw = session.outbox.get_nowait()
        if raw is not None:
            messages.append(json.loads(raw))
    return messages


def frame(**payload: Any) -> str:
    """构造一帧入站 JSON。"""
    return json.dumps(payload)


@pytest.fixture(autouse=True)
def _reset_http_limiter() -> None:
    """每个用例开始前清空 HTTP 限流计数。"""
    limiter.reset()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def youtube_video() -> VideoRef:
    return resolve_video(YOUTUBE_URL)


@pytest.fixture()
def registry(clock: FakeClock) -> RoomRegistry:
    return RoomRegistry(idle_ttl=600.0, clock=clock, rng=random.Random(42))


@pytest.fixture()
def gateway(registry: RoomRegistry) -> ConnectionGateway:
    # 聊天间隔设为 0，避免用例之间互相影响；限流行为有单独的用例
    return ConnectionGateway(registry, chat_limiter=WebSocketRateLimiter(interval_seconds=0.0))
