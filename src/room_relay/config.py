from __future__ import annotations

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

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_FANOUT_CHANNEL: str = "relay.fanout"

    CORS_ORIGINS: list[str] = ["*"]

    HISTORY_LIMIT: int = 200
    DEFAULT_DISPLAY_NAME: str = "Anon"
    # legacy clients that ack without a roomId get a process-wide status broadcast
    STATUS_GLOBAL_FALLBACK: bool = False

    WS_HEARTBEAT_SECONDS: int = 30

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
