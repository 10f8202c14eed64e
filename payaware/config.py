from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Stores
    DATABASE_URL: str
    REDIS_URL: str

    # Kafka settings
    KAFKA_BROKER: str
    KAFKA_TOPIC: str
    KAFKA_CONSUMER_GROUP: str = "subscription_consumer_group"
    KAFKA_USE_SSL: bool = False
    KAFKA_SSL_CAFILE: str | None = None

    # Expo push settings
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_ACCESS_TOKEN: str | None = None
    PUSH_ICON_URL: str | None = None
    PUSH_TIMEOUT_SECONDS: float = 15.0
    PUSH_CURRENCY: str = "₽"

    # =================================================================
    # REMINDER PIPELINE - scan period must not exceed the lookahead
    # =================================================================
    SCAN_INTERVAL_SECONDS: int = 60
    LOOKAHEAD_SECONDS: int = 120
    WORKER_COUNT: int = 10
    DISPATCH_QUEUE_SIZE: int = 100
    PUSH_JITTER_MAX_SECONDS: int = 120

    # Startup / reconnect retries (fixed delay)
    STARTUP_RETRY_ATTEMPTS: int = 3
    STARTUP_RETRY_DELAY_SECONDS: float = 5.0

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def check_scan_window(self) -> "Settings":
        if self.SCAN_INTERVAL_SECONDS <= 0 or self.LOOKAHEAD_SECONDS <= 0:
            raise ValueError("SCAN_INTERVAL_SECONDS and LOOKAHEAD_SECONDS must be positive")
        # A tick longer than the window leaves gaps no scan ever covers
        if self.SCAN_INTERVAL_SECONDS > self.LOOKAHEAD_SECONDS:
            raise ValueError(
                "SCAN_INTERVAL_SECONDS must be less than or equal to LOOKAHEAD_SECONDS"
            )
        if self.WORKER_COUNT < 1:
            raise ValueError("WORKER_COUNT must be at least 1")
        if self.DISPATCH_QUEUE_SIZE < 1:
            raise ValueError("DISPATCH_QUEUE_SIZE must be at least 1")
        return self

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
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config


@lru_cache
def get_settings() -> Settings:
    """Load settings once; missing required variables fail fast here."""
    return Settings()
