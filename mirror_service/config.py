"""
镜像服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List, Optional

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


class MirrorServiceSettings(BaseSettings):
    """镜像服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3000)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )
    SOURCE_NAME: str = Field(default="eranova")  # 命中本地镜像时返回的数据来源标识

    # ── MongoDB 配置（支持服务发现） ───────────────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="company_mirror")
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

    # ── Redis 配置（用于多进程共享限流窗口） ───────────────
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

    # ── ANAF 上游接口 ─────────────────────────────────────
    ANAF_GENERAL_INFO_URL: str = Field(
        default="https://webservicesp.anaf.ro/api/PlatitorTvaRest/v9/tva"
    )
    ANAF_BALANCE_SHEET_URL: str = Field(default="https://webservicesp.anaf.ro/bilant")
    # 默认不设超时，与上游行为保持一致（见 DESIGN.md）
    UPSTREAM_TIMEOUT_SECONDS: Optional[float] = Field(default=None)

    # ── 请求合并 ──────────────────────────────────────────
    ANAF_BUNDLE_WAIT_MS: int = Field(default=100)         # 收集窗口
    ANAF_BUNDLE_MAX_SIZE: int = Field(default=100)        # ANAF 单次最多 100 个 CUI
    ANAF_DISPATCH_INTERVAL_MS: int = Field(default=1000)  # ANAF 每秒最多 1 次请求

    # ── 镜像缓存 / 回填 ───────────────────────────────────
    DATA_FRESHNESS_HOURS: float = Field(default=24)
    MIN_SUPPORTED_YEAR: int = Field(default=2014)         # ANAF 资产负债表数据起始年份
    BACKFILL_PACING_MS: int = Field(default=200)
    ENRICHMENT_MAX_YEARS: int = Field(default=6)

    # ── 客户端限流 ────────────────────────────────────────
    RATE_LIMIT_WINDOW_MS: int = Field(default=60000)
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=100)
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: int = Field(default=300)

    # ── 管理接口 ──────────────────────────────────────────
    ADMIN_TOKEN: str = Field(default="")

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    TZ: str = Field(default="Europe/Bucharest")


@lru_cache
def get_settings() -> MirrorServiceSettings:
    """获取全局配置（单例）"""
    return MirrorServiceSettings()


settings = get_settings()
