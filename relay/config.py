import os
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MESSAGES_DB = os.path.expanduser("~/Library/Messages/chat.db")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Local message store (read-only from this service's point of view)
    DATABASE_URL: str = f"sqlite:///{DEFAULT_MESSAGES_DB}"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    ACTIVITY_LOG_PATH: str = "./message-logs.jsonl"

    # Delivery status / verification
    SEND_FAIL_TIMEOUT_SECONDS: float = 600.0
    VERIFY_ATTEMPTS: int = 5
    VERIFY_DELAY_MS: int = 400

    # Native decode bridge
    NATIVE_DECODE_ENABLED: bool = True
    SWIFT_BINARY: str = "swift"
    BRIDGE_TIMEOUT_SECONDS: float = 10.0
    BRIDGE_BATCH_TIMEOUT_SECONDS: float = 30.0
    UNDECODED_PLACEHOLDER: str = "[Rich content]"

    # Send action
    OSASCRIPT_BINARY: str = "osascript"
    SEND_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_COUNTRY_CODE: str = "84"
    MAX_BODY_LENGTH: int = 1000


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
