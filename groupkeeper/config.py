from pathlib import Path
from urllib.parse import quote

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Postgres settings (registration system database)
    DATABASE_URL: str | None = None
    PG_DB_HOST: str = "localhost"
    PG_DB_PORT: int = 5432
    PG_DB_NAME: str = "postgres"
    PG_DB_USER: str = "postgres"
    PG_DB_PASSWORD: str = ""

    # =================================================================
    # DATABASE POOL SETTINGS - a single sequential worker needs very few
    # =================================================================
    DB_POOL_MIN_SIZE: int = 1
    DB_POOL_MAX_SIZE: int = 4
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # Redis settings
    REDIS_URL: str | None = None
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str | None = None

    # Work queues
    ADD_QUEUE_KEY: str = "addQueue"
    REMOVE_QUEUE_KEY: str = "removeQueue"
    QUEUE_POLL_INTERVAL_SECONDS: float = 1.0

    # Backoff windows (seconds)
    MIN_DELAY: float = 10.0
    MAX_DELAY: float = 20.0
    DELAY_JITTER: float = 0.0
    IDLE_DELAY: float = 3.0
    IDLE_DELAY_JITTER: float = 6.0

    # Bounded calls against the messaging client
    CALL_TIMEOUT_MS: int = 15_000
    CALL_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_BASE_SECONDS: float = 1.0
    # add/remove are not idempotent on the platform side; retrying them is opt-in
    RETRY_MEMBERSHIP_CALLS: bool = False

    # Telegram notifications
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_FAILURES_CHAT_ID: str | None = None
    TELEGRAM_MODERATIONS_CHAT_ID: str | None = None
    TELEGRAM_TIMEOUT_SECONDS: float = 30.0

    # Moderation
    OPENAI_API_KEY: str | None = None
    OPENAI_MODERATION_MODEL: str = "omni-moderation-latest"
    OPENAI_TIMEOUT_SECONDS: float = 30.0
    ENABLE_LINK_MODERATION: bool = False
    ENABLE_CONTENT_MODERATION: bool = False

    # Messaging client adapter, as "package.module:factory"
    MESSAGING_CLIENT_FACTORY: str | None = None

    # Worker
    WORKER_JOB: str = "membership"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_windows(self) -> "Settings":
        delays = {
            "MIN_DELAY": self.MIN_DELAY,
            "MAX_DELAY": self.MAX_DELAY,
            "DELAY_JITTER": self.DELAY_JITTER,
            "IDLE_DELAY": self.IDLE_DELAY,
            "IDLE_DELAY_JITTER": self.IDLE_DELAY_JITTER,
        }
        negative = [name for name, value in delays.items() if value < 0]
        if negative:
            raise ValueError(f"Delay settings must be >= 0: {', '.join(negative)}")
        if self.MIN_DELAY > self.MAX_DELAY:
            raise ValueError(
                f"MIN_DELAY ({self.MIN_DELAY}) must not exceed MAX_DELAY ({self.MAX_DELAY})"
            )
        if self.CALL_TIMEOUT_MS <= 0:
            raise ValueError("CALL_TIMEOUT_MS must be positive")
        if self.CALL_MAX_ATTEMPTS < 1:
            raise ValueError("CALL_MAX_ATTEMPTS must be at least 1")
        return self

    def database_conninfo(self) -> str:
        """Postgres connection string, preferring DATABASE_URL when set."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        password = quote(self.PG_DB_PASSWORD, safe="")
        return (
            f"postgresql://{self.PG_DB_USER}:{password}"
            f"@{self.PG_DB_HOST}:{self.PG_DB_PORT}/{self.PG_DB_NAME}"
        )

    def redis_url(self) -> str:
        if self.REDIS_URL:
            return self.REDIS_URL
        auth = f":{quote(self.REDIS_PASSWORD, safe='')}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/0"

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"timeout": 15.0})

        return config


settings = Settings()
