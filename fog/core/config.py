# 读取 .env 配置
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Service
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Redis（实验记录 / 爬坡计数器 / 每日 salt 所在的 KV 存储）
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_UNIX_SOCKET: Optional[str] = None
    FOG_KEY_PREFIX: str = ""

    # 聚合查询服务（只返回按 variant 预聚合的计数，不暴露原始事件）
    ANALYTICS_SQL_URL: str = "http://localhost:8787/analytics_engine/sql"
    ANALYTICS_WRITE_URL: str = "http://localhost:8787/analytics_engine/write"
    ANALYTICS_API_TOKEN: str = ""
    ANALYTICS_DATASET: str = "fog_events"
    ANALYTICS_TIMEOUT_SECONDS: float = 10.0

    # 概率估计
    MONTE_CARLO_SAMPLES: int = 10_000
    EVALUATION_TIMEOUT_SECONDS: float = 5.0

    # Auto-stop
    AUTO_STOP_UPPER: float = 0.99
    AUTO_STOP_LOWER: float = 0.01

    # Auto-ramp
    RAMP_THRESHOLD: float = 0.95
    RAMP_CONSECUTIVE_REQUIRED: int = 3
    RAMP_SCHEDULE: List[int] = [10, 25, 50, 75, 100]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore" # 忽略多余的环境变量
    )

settings = Settings()
