from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENGINE: Literal["memory", "postgres"] = "memory"
    DATABASE_URL: Optional[str] = None
    POOL_MAX: int = 10
    STATEMENT_TIMEOUT_MS: Optional[int] = None

    ADMISSION_ENABLED: bool = True
    RATE_POINTS: int = 5
    RATE_DURATION_SEC: float = 1.0

    DEFERRED_STORE_PATH: Optional[str] = None
    DLQ_PATH: str = "dlq/realtime_db.ndjson"
    DEFAULT_TENANT: str = "default"

    TRANSACTION_MAX_ATTEMPTS: int = 5
    REPLAY_INTERVAL_SEC: float = 5.0
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> Optional[str]:
        return self.DATABASE_URL

    class Config:
        env_file = ".env"
        env_prefix = "RTDB_"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
