from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    REDIS_URL: str

    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    LOG_LEVEL: str = "INFO"

    ADMIN_CHANNEL: str = "admin:notifications"

    BATCH_KEY_PREFIX: str = "admin:order-notifications"
    BATCH_EXPIRY_SECONDS: int = 120
    BATCH_MAX_LIST_LEN: int = 1000
    BATCH_MAX_ORDERS_TO_SEND: int = 50
    BATCH_FLUSH_INTERVAL: float = 60.0

    POLL_INTERVAL: float = 60.0
    PROCESSED_ORDERS_KEY: str = "admin:processed-order-ids"
    PROCESSED_ORDERS_TTL_SECONDS: int = 48 * 3600
    POLL_CHECKPOINT_KEY: str = "admin:order-poller:checkpoint"
    ORDER_TIMEZONE: str = "Africa/Nairobi"

    ORDER_QUEUE_STREAM: str = "order-notifications"
    ORDER_QUEUE_GROUP: str = "order-batcher"
    ORDER_QUEUE_CONCURRENCY: int = 10
    ORDER_QUEUE_ATTEMPTS: int = 3
    ORDER_QUEUE_BACKOFF_SECONDS: float = 2.0
    ORDER_QUEUE_FAILED_MAXLEN: int = 200

    ACTIVE_ORDERS_KEY: str = "admin:active_orders"
    OUTBOX_KEY: str = "outbox:notifications"
    DEAD_LETTER_KEY: str = "outbox:dead_letter"
    OUTBOX_POLL_INTERVAL: float = 3.0
    OUTBOX_BATCH_SIZE: int = 20
    OUTBOX_MAX_RETRIES: int = 5
    OUTBOX_MAX_AGE_SECONDS: int = 24 * 3600

    BREAKER_THRESHOLD: int = 3
    BREAKER_COOLDOWN_SECONDS: float = 10.0

    STALE_CLEANUP_INTERVAL: float = 2 * 3600
    STALE_ORDER_MAX_AGE_HOURS: float = 12.0
    OUTBOX_CLEANUP_INTERVAL: float = 24 * 3600
    STATS_INTERVAL: float = 600.0

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
