from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300
    DB_POOL_TIMEOUT: float = 10.0

    REDIS_URL: str = "redis://localhost:6379/0"

    FABRIC_BACKEND: Literal["redis", "memory"] = "redis"
    FABRIC_CONNECT_TIMEOUT: float = 5.0
    FABRIC_RECONNECT_BASE_DELAY: float = 0.5
    FABRIC_RECONNECT_MAX_DELAY: float = 30.0
    FABRIC_POLL_TIMEOUT: float = 1.0

    LEDGER_RETRY_ATTEMPTS: int = 4
    LEDGER_RETRY_BASE_DELAY: float = 0.2
    LEDGER_RETRY_MAX_DELAY: float = 5.0

    PENDING_OUTBOX_URL: str = "sqlite+aiosqlite:///pending_outbox.db"
    PENDING_OUTBOX_CAPACITY: int = 500
    PENDING_OUTBOX_FLUSH_INTERVAL: float = 5.0

    TYPING_TTL_SECONDS: float = 3.0
    TYPING_STALE_MARGIN_SECONDS: float = 1.0
    TYPING_JANITOR_INTERVAL: float = 30.0

    OUTBOX_POLL_INTERVAL: float = 1.0
    OUTBOX_BATCH_SIZE: int = 50
    OUTBOX_MAX_ATTEMPTS: int = 5

    NOTIFICATION_EXCERPT_LENGTH: int = 100
    NOTIFICATIONS_PRESENT_ENABLED: bool = True

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def typing_max_age(self) -> float:
        return self.TYPING_TTL_SECONDS + self.TYPING_STALE_MARGIN_SECONDS

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
