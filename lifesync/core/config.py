from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEV_ENCRYPTION_KEY = "lifesync-development-encryption-key-change-me"


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Storage: in-process registries (memory) or SQLAlchemy-backed tables (sql)
    STORAGE_BACKEND: Literal["memory", "sql"] = "memory"
    DATABASE_URL: str | None = None

    # Secret store
    ENCRYPTION_KEY: str = _DEV_ENCRYPTION_KEY
    ENCRYPTION_PREVIOUS_KEYS: str | None = None  # comma-separated, oldest last

    # OAuth
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    OAUTH_STATE_TTL_SECONDS: int = 10 * 60
    HTTP_TIMEOUT_SECONDS: float = 15.0

    PLAID_CLIENT_ID: str | None = None
    PLAID_SECRET: str | None = None
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    FITBIT_CLIENT_ID: str | None = None
    FITBIT_CLIENT_SECRET: str | None = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = True
    LOG_DIR: str = "logs"
    SLACK_WEBHOOK_URL: str | None = None

    # Sync scheduling
    SYNC_ENABLED: bool = True
    SYNC_TICK_SECONDS: int = 60  # periodic driver, once per minute
    SYNC_TIMEOUT_SECONDS: float = 5 * 60
    SYNC_DAILY_HOUR: int = 6  # UTC hour for daily/weekly cadences
    SYNC_MAX_RETRIES: int = 3
    SYNC_MAX_CONCURRENCY: int = 1

    # Pipeline
    BASE_CURRENCY: str = "USD"
    PIPELINE_VERSION: str = "1.0.0"

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def _check_encryption_key(cls, value: str) -> str:
        if len(value) < 32:
            raise ValueError("ENCRYPTION_KEY must be at least 32 characters long")
        return value

    @field_validator("SYNC_DAILY_HOUR")
    @classmethod
    def _check_daily_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError("SYNC_DAILY_HOUR must be between 0 and 23")
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development

    @property
    def uses_default_encryption_key(self) -> bool:
        return self.ENCRYPTION_KEY == _DEV_ENCRYPTION_KEY

    @property
    def previous_encryption_keys(self) -> list[str]:
        if not self.ENCRYPTION_PREVIOUS_KEYS:
            return []
        return [key.strip() for key in self.ENCRYPTION_PREVIOUS_KEYS.split(",") if key.strip()]


settings = Settings()
