from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./draftsync.db"
    database_echo: bool = False

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_minutes: int = 60

    # Локальный кэш черновиков
    cache_dir: str = "./.draftsync-cache"
    cache_ttl_seconds: int = 300
    cache_schema_version: int = 1

    # Удаленное хранилище и повторные попытки записи
    remote_timeout_seconds: float = Field(15.0, ge=10.0, le=20.0)
    max_write_attempts: int = Field(3, ge=1)
    retry_base_delay_ms: int = 100

    undo_history_limit: int = 10
    background_sync_seconds: int = 300

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_prefix": "DRAFTSYNC_", "extra": "ignore"}

settings = Settings()
