"""
信号刷新服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_mongo_host() -> str:
    """Docker 环境使用服务名 'mongodb'，本地使用 'localhost'"""
    return "mongodb" if _is_docker() else "localhost"


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class SignalServiceSettings(BaseSettings):
    """信号刷新服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── MongoDB 配置（慢速缓存层 / 自选股存储） ────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="signals")
    MONGODB_AUTH_SOURCE: str = Field(default="admin")
    MONGODB_ENABLED: bool = Field(default=True)
    MONGO_MAX_CONNECTIONS: int = Field(default=50)
    MONGO_MIN_CONNECTIONS: int = Field(default=5)
    MONGO_CONNECT_TIMEOUT_MS: int = Field(default=30000)
    MONGO_SOCKET_TIMEOUT_MS: int = Field(default=60000)
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    @property
    def MONGO_URI(self) -> str:
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            return (
                f"mongodb://{self.MONGODB_USERNAME}:{self.MONGODB_PASSWORD}"
                f"@{self.MONGODB_HOST}:{self.MONGODB_PORT}"
                f"/{self.MONGODB_DATABASE}?authSource={self.MONGODB_AUTH_SOURCE}"
            )
        return f"mongodb://{self.MONGODB_HOST}:{self.MONGODB_PORT}/{self.MONGODB_DATABASE}"

    # ── Redis 配置（快速缓存层，可选） ─────────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── 准入队列配置（每类外部依赖独立并发上限） ───────────
    QUEUE_CAPACITIES: Dict[str, int] = Field(
        default_factory=lambda: {"market_data": 10}
    )

    # ── 缓存配置 ──────────────────────────────────────────
    CACHE_DIR: str = Field(default="./.cache")        # 文件快速层根目录
    SIGNALS_CACHE_TTL: int = Field(default=3600)      # 信号 TTL（秒）
    HISTORY_CACHE_TTL: int = Field(default=86400)     # 历史 K 线 TTL
    REMOTE_CACHE_COLLECTION: str = Field(default="cache_remote")

    # ── 扫描配置 ──────────────────────────────────────────
    SCAN_WORKERS: int = Field(default=5, ge=1)
    SCAN_PROGRESS_EVERY: int = Field(default=50, ge=1)
    SCAN_EXCLUDE_SYMBOLS: List[str] = Field(
        default_factory=lambda: ["7817.T"]            # 数据源长期返回错误数据
    )

    # ── 数据源配置 ─────────────────────────────────────────
    HISTORY_PERIOD: str = Field(default="1y")
    HISTORY_INTERVAL: str = Field(default="1d")

    # ── 自选股配置 ─────────────────────────────────────────
    WATCHLIST_FILE: str = Field(default="./data/watchlist.json")
    WATCHLIST_COLLECTION: str = Field(default="stocks")
    WATCHLIST_PAGE_SIZE: int = Field(default=1000)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    TZ: str = Field(default="Asia/Tokyo")


@lru_cache
def get_settings() -> SignalServiceSettings:
    """获取全局配置（单例）"""
    return SignalServiceSettings()


settings = get_settings()
