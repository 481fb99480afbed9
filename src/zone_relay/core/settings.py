"""Application settings and configuration.

This module defines all configuration options for the Zone Relay service.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or a `.env` file.
    """

    # Application metadata
    app_name: str = Field(default="Zone Relay", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Authentication (tokens are issued elsewhere; we only verify them)
    secret_key: str = Field(default="change-me-in-production", alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./zone_relay.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Presence and room membership storage
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    presence_backend: Literal["redis", "memory"] = Field(
        default="redis",
        alias="PRESENCE_BACKEND",
    )
    presence_key_prefix: str = Field(default="zone", alias="PRESENCE_KEY_PREFIX")
    presence_timeout_seconds: float = Field(default=2.0, alias="PRESENCE_TIMEOUT_SECONDS")
    # Live sessions and room subscriptions expire unless a heartbeat refreshes them
    presence_ttl_seconds: int = Field(default=300, alias="PRESENCE_TTL_SECONDS")
    presence_heartbeat_seconds: float = Field(default=60.0, alias="PRESENCE_HEARTBEAT_SECONDS")
    typing_timeout_seconds: int = Field(default=10, alias="TYPING_TIMEOUT_SECONDS")

    # Pagination
    message_page_size: int = Field(default=30, alias="MESSAGE_PAGE_SIZE")
    message_page_max: int = Field(default=100, alias="MESSAGE_PAGE_MAX")
    notification_page_size: int = Field(default=10, alias="NOTIFICATION_PAGE_SIZE")
    notification_page_max: int = Field(default=100, alias="NOTIFICATION_PAGE_MAX")

    # Notification retention (maintenance script)
    notification_read_retention_days: int = Field(
        default=30,
        alias="NOTIFICATION_READ_RETENTION_DAYS",
    )
    notification_unread_retention_days: int = Field(
        default=90,
        alias="NOTIFICATION_UNREAD_RETENTION_DAYS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
