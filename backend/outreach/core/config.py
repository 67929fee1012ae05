"""Application configuration using Pydantic settings."""

from typing import Any

from pydantic import Field, PostgresDsn, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Callcaster Outreach API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    PUBLIC_URL: str = "http://localhost:8000"  # Base URL the provider calls back into

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "outreach"
    DATABASE_URL: str | None = Field(default=None, validate_default=True)

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: str | None, info: Any) -> str:
        """Build database URL from components if not provided."""
        if isinstance(v, str):
            return v

        data = info.data
        return str(
            PostgresDsn.build(
                scheme="postgresql+asyncpg",
                username=data.get("POSTGRES_USER"),
                password=data.get("POSTGRES_PASSWORD"),
                host=data.get("POSTGRES_SERVER"),
                port=data.get("POSTGRES_PORT"),
                path=f"{data.get('POSTGRES_DB') or ''}",
            ),
        )

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None
    REDIS_URL: RedisDsn | None = Field(default=None, validate_default=True)

    @field_validator("REDIS_URL", mode="before")
    @classmethod
    def assemble_redis_connection(cls, v: str | None, info: Any) -> str:
        """Build Redis URL from components if not provided."""
        if isinstance(v, str):
            return v

        data = info.data
        password_part = f":{data.get('REDIS_PASSWORD')}@" if data.get("REDIS_PASSWORD") else ""
        return f"redis://{password_part}{data.get('REDIS_HOST')}:{data.get('REDIS_PORT')}/{data.get('REDIS_DB')}"

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # Telephony
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    VALIDATE_WEBHOOK_SIGNATURES: bool = False  # Verify X-Twilio-Signature on callbacks

    # Outbound collaborators
    DIALER_URL: str = "http://localhost:9000/dial"  # Places a single outbound call
    MESSENGER_URL: str = "http://localhost:9000/message"  # Sends a single outbound message
    BILLING_URL: str = "http://localhost:9100/debits"  # Ledger debit endpoint
    AUDIO_BASE_URL: str = "http://localhost:9200/audio"  # Stored IVR/voicemail audio

    # External Service Timeouts (seconds)
    DIALER_TIMEOUT: float = 10.0
    BILLING_TIMEOUT: float = 10.0
    TWILIO_TIMEOUT: float = 10.0

    # Retry Configuration
    BILLING_MAX_RETRIES: int = 3
    RETRY_BACKOFF_FACTOR: float = 2.0

    # Dialer circuit breaker
    DIALER_CIRCUIT_FAILURE_THRESHOLD: int = 5  # Failures before circuit opens
    DIALER_CIRCUIT_RECOVERY_TIMEOUT: int = 60  # Seconds before circuit recovery

    # Queue
    CLAIM_MAX_RETRIES: int = 5  # Lost claim races tolerated before giving up
    SCHEDULER_MAX_PLACEMENTS: int = 25  # Placement failures skipped per trigger

    # IVR
    IVR_ERROR_MESSAGE: str = "An error occurred. Please try again later."
    VOICEMAIL_PAUSE_SECONDS: int = 1

    # Realtime
    REALTIME_CHANNEL_PREFIX: str = "outreach:changes:"
    REALTIME_DEBOUNCE_MS: int = 250

    # Feature Flags
    ENABLE_CALL_REGISTRY: bool = True  # Track each caller's active call in Redis
    ENABLE_PROMETHEUS_METRICS: bool = True  # Expose /metrics endpoint
    ENABLE_SCHEDULER: bool = True  # Request the next contact when an attempt concludes

    CALL_REGISTRY_TTL: int = 1800  # 30 minutes TTL for call entries


settings = Settings()
