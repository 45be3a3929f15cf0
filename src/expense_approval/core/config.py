"""Application configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(
        default="expense-approval-engine", description="Application name"
    )
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")
    secret_key: str = Field(
        default="dev-secret-key-change-in-production",
        description="Secret key for signing",
    )

    # API
    api_v1_prefix: str = Field(default="/api/v1", description="API v1 prefix")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="CORS allowed origins",
    )

    # Database
    db_host: str = Field(default="localhost", description="PostgreSQL host")
    db_port: int = Field(default=5432, description="PostgreSQL port")
    db_user: str = Field(default="postgres", description="PostgreSQL user")
    db_password: str = Field(default="postgres", description="PostgreSQL password")
    db_name: str = Field(default="expense_approval", description="Database name")
    database_url_override: str | None = Field(
        default=None,
        description="Full async database URL (takes precedence over db_* fields)",
    )

    # Redis
    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_db: int = Field(default=0, description="Redis database number")
    redis_password: str | None = Field(default=None, description="Redis password")

    # JWT Authentication
    access_token_expire_minutes: int = Field(
        default=30, description="Access token expiration in minutes"
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    # Approval routing
    default_self_approval_policy: Literal["SKIP_SELF", "ALLOW_SELF"] = Field(
        default="SKIP_SELF",
        description="Policy used when a company has no explicit setting",
    )
    approval_condition_mode: Literal["permissive", "threshold"] = Field(
        default="permissive",
        description="Level condition evaluation strategy",
    )
    approval_max_retries: int = Field(
        default=3, ge=1, description="Optimistic lock retries per approval action"
    )
    pending_page_size: int = Field(
        default=10, ge=1, le=100, description="Default page size for pending lists"
    )

    # Collaborators
    ledger_service_url: str | None = Field(
        default=None,
        description="Base URL of the ledger service applying holds and deductions",
    )
    ledger_service_timeout: float = Field(
        default=10.0, ge=0, description="Ledger service request timeout in seconds"
    )
    notification_webhook_url: str | None = Field(
        default=None, description="Webhook receiving approval notifications"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @computed_field
    @property
    def database_url_sync(self) -> str:
        """Construct synchronous database URL for migrations."""
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @computed_field
    @property
    def redis_url(self) -> str:
        """Construct Redis URL from components."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
