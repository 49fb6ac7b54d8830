"""
watchtogether.core.settings
~~~~~~~~~~~~~~~~~~~~~~~~~~~

服务配置（pydantic-settings）。

取值来源按优先级从高到低：环境变量、项目根目录下的 ``.env.{ENVIRONMENT}``、
``.env``、字段默认值。``ENVIRONMENT`` 取 dev / test / prod，决定日志级别、
CORS 策略与热重载等派生行为。
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 项目根目录（watchtogether/ 的上一级）
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent

# 决定加载哪个 .env.{env} 文件，必须在类定义前读取
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置。字段名即环境变量名。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="WatchTogether", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=10000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")
    PUBLIC_BASE_URL: str = Field(
        default="http://localhost:10000",
        description="对外访问地址，用于拼接房间分享链接",
    )

    # ── 房间码 ────────────────────────────────────────────────────────
    ROOM_CODE_LENGTH: int = Field(default=6, ge=4, description="房间码长度")
    ROOM_CODE_ALPHABET: str = Field(
        default="ABCDEFGHJKLMNPQRSTUVWXYZ23456789",
        min_length=2,
        description="房间码字符集（去除了 0/O、1/I 等易混淆字符）",
    )
    ROOM_CODE_MAX_RETRIES: int = Field(
        default=10, ge=1, description="随机生成房间码的最大重试次数",
    )

    # ── 房间生命周期 ──────────────────────────────────────────────────
    ROOM_IDLE_TTL_SECONDS: float = Field(
        default=600.0, gt=0, description="无人房间的最长保留时间（秒）",
    )
    ROOM_REAPER_INTERVAL_SECONDS: float = Field(
        default=60.0, gt=0, description="空闲房间清理任务的执行间隔（秒）",
    )

    # ── 消息约束 ──────────────────────────────────────────────────────
    DISPLAY_NAME_MAX_LENGTH: int = Field(default=32, description="昵称最大长度")
    CHAT_MESSAGE_MAX_LENGTH: int = Field(default=500, description="聊天消息最大长度")

    # ── 限流 ──────────────────────────────────────────────────────────
    CREATE_ROOM_RATE_LIMIT: str = Field(
        default="10/minute", description="创建房间接口的限流规则（slowapi 格式）",
    )
    WS_CHAT_RATE_LIMIT_INTERVAL: float = Field(
        default=0.5, description="同一连接两条聊天消息之间的最小间隔（秒）",
    )
    WS_OUTBOX_SIZE: int = Field(
        default=256, ge=1, description="每个连接的下行消息队列容量",
    )

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 同名变量以 .env.{env} 为准，.env 只提供公共默认值
    model_config = SettingsConfigDict(
        env_file=(PROJECT_ROOT / f".env.{_CURRENT_ENV}", PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境 ──────────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def is_dev(self) -> bool:
        return self.ENVIRONMENT == "dev"

    @property
    def debug(self) -> bool:
        """FastAPI debug 开关，只在 dev 打开。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """uvicorn 热重载，只在 dev 打开。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """实际生效的日志级别。

        显式设置的 ``LOG_LEVEL`` 环境变量优先；否则按环境取值:
        dev → INFO，test → DEBUG，prod → WARNING。
        """
        explicit = os.getenv("LOG_LEVEL")
        if explicit:
            return explicit
        by_env = {"dev": "INFO", "test": "DEBUG", "prod": "WARNING"}
        return by_env.get(self.ENVIRONMENT, self.LOG_LEVEL)

    @property
    def allow_cors_all_origins(self) -> bool:
        """prod 只放行 ``PUBLIC_BASE_URL``，其余环境放行所有来源。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """进程内唯一的 Settings 实例。"""
    return Settings()


settings: Settings = get_settings()
