from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE: str = "http://localhost:8080/api/v1"
    WS_BASE: str | None = None
    TENANT_ID: int = 1

    REQUEST_TIMEOUT_SECONDS: float = 10.0

    PAIRING_MAX_ATTEMPTS: int = 60
    PAIRING_POLL_INTERVAL_SECONDS: float = 2.0

    MESSAGES_PAGE_SIZE: int = 20
    MERGE_RESORT_THRESHOLD: int = 32

    CONVERSATIONS_LIMIT: int = 50

    PUSH_TRANSPORT: Literal["websocket", "redis"] = "websocket"
    PUSH_RECONNECT_DELAY_SECONDS: float = 3.0
    WS_PING_INTERVAL_SECONDS: float = 30.0

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CHANNEL_PREFIX: str = "messageflow.tenant"

    LOG_LEVEL: str = "INFO"

    @property
    def ws_base(self) -> str:
        if self.WS_BASE:
            return self.WS_BASE.rstrip("/")
        return self.API_BASE.replace("http", "ws", 1).rstrip("/")

    def redis_channel(self, tenant_id: int) -> str:
        return f"{self.REDIS_CHANNEL_PREFIX}.{tenant_id}"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
