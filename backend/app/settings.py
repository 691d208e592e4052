"""
应用配置。

所有配置项均可通过环境变量（或 backend/.env）覆盖，字段名即环境变量名
（大小写不敏感），例如 OPENROUTER_API_KEY、REDIS_URL。
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", description="运行环境：development / production")
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Storage
    database_url: str = Field(default="sqlite:///./fidi.db")
    redis_url: str = Field(default="redis://localhost:6379/0")
    celery_broker_url: str = Field(default="redis://localhost:6379/1")

    # Auth
    secret_key: str = Field(default="", description="JWT 签名密钥（HS256）")
    jwt_algorithm: str = Field(default="HS256")

    # Upstream providers
    openrouter_api_key: str = Field(default="")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")
    replicate_api_key: str = Field(default="")
    replicate_base_url: str = Field(default="https://api.replicate.com/v1")
    upstream_timeout: float = Field(default=30.0, description="上游 HTTP 连接/读超时（秒）")

    # Chat pipeline
    chat_stream_timeout_seconds: float = Field(
        default=120.0,
        description="单个候选模型的流式请求总时长上限（秒），每个候选重新计时",
    )
    chat_max_messages: int = Field(default=1000)
    chat_max_message_chars: int = Field(default=32000)
    chat_min_balance_floor: int = Field(
        default=0,
        description="预检余额下限：余额小于等于该值时拒绝付费模型请求",
    )
    chat_require_system_prompt: bool = Field(default=False)

    # Credits
    credit_input_rate_per_million: int = Field(default=1_000_000)
    credit_output_rate_per_million: int = Field(default=1_000_000)
    credit_min_chat_charge: int = Field(default=1)
    free_plan_monthly_credits: int = Field(default=1_000_000)
    pro_plan_monthly_credits: int = Field(default=10_000_000)
    credit_reset_interval_days: int = Field(default=30)
    credit_grant_max_amount: int = Field(default=1_000_000)
    credit_lock_ttl_ms: int = Field(default=30_000)
    credit_lock_retries: int = Field(default=50)
    credit_lock_retry_delay_seconds: float = Field(default=0.1)
    credit_period_reset_interval_seconds: int = Field(default=3600)

    # Media generation
    image_generation_model: str = Field(default="black-forest-labs/flux-1.1-pro")
    video_generation_model: str = Field(default="minimax/video-01")
    image_generation_cost: int = Field(default=5)
    video_generation_cost: int = Field(default=50)
    media_poll_interval_seconds: float = Field(default=2.0)
    media_poll_max_attempts: int = Field(default=60)


settings = Settings()

__all__ = ["Settings", "settings"]
