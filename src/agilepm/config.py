"""Configuration management for AgilePM webhooks."""

import logging
import secrets
import warnings
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from agilepm.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _generate_dev_secret_key() -> str:
    """Generate a random secret key for development use.

    Tokens signed with it are invalidated on restart, which is acceptable
    outside production.

    Returns:
        A cryptographically secure random hex string (64 characters).
    """
    return secrets.token_hex(32)


class Settings(BaseSettings):
    """AgilePM configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the AGILEPM_ prefix. For example:
        AGILEPM_QDRANT_URL=http://localhost:6333
        AGILEPM_WEBHOOK_TIMEOUT_SECONDS=5

    Security Notes:
        - In production (AGILEPM_ENV=production), auth is enabled by default
        - Production without AGILEPM_AUTH_SECRET_KEY raises an error
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL (':memory:' for an in-process store)",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="agilepm",
        description="Prefix for Qdrant collection names",
    )
    storage_max_scroll_limit: int = Field(
        default=10000,
        ge=100,
        le=100000,
        description="Maximum records fetched in a single scroll operation",
    )

    # Webhook delivery
    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Deadline for a single webhook HTTP attempt",
    )
    webhook_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total delivery attempts per event, including the first",
    )
    webhook_backoff_unit_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Retry n waits unit * 2**n seconds (2s, 4s with the default)",
    )
    webhook_max_concurrent: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum in-flight webhook HTTP requests per process",
    )
    webhook_user_agent: str = Field(
        default="AgilePM-Webhook/1.0",
        description="User-Agent header sent with every delivery",
    )
    webhook_response_snippet_max: int = Field(
        default=1000,
        ge=0,
        description="Characters of the receiver's response body kept in the log",
    )
    webhook_error_max: int = Field(
        default=500,
        ge=0,
        description="Characters of the error message kept in the log",
    )
    webhook_check_active_before_retry: bool = Field(
        default=True,
        description="Stop a retry chain when its subscription was deleted or disabled",
    )

    # Delivery log retention
    webhook_log_retention_days: int = Field(
        default=30,
        ge=1,
        description="Delivery records older than this are purged",
    )
    webhook_log_retention_count: int = Field(
        default=500,
        ge=1,
        description="Maximum delivery records kept per subscription",
    )
    webhook_log_purge_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="How often the retention worker runs",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Authentication
    auth_enabled: bool | None = Field(
        default=None,
        description=(
            "Enable Bearer token authentication. "
            "If not set, defaults to True in production, False otherwise."
        ),
    )
    auth_secret_key: str | None = Field(
        default=None,
        description="Secret key for token validation (HMAC). REQUIRED in production.",
    )
    auth_token_expire_minutes: int = Field(
        default=60,
        ge=1,
        description="Token expiration time in minutes",
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="List of allowed CORS origins",
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )

    # Runtime-generated dev secret (not from env)
    _runtime_dev_secret: str | None = None

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Resolve auth defaults and enforce a real secret in production."""
        is_production = self.env == "production"

        if self.auth_enabled is None:
            object.__setattr__(self, "auth_enabled", is_production)

        if is_production:
            if self.auth_secret_key is None:
                raise ValueError(
                    "AGILEPM_AUTH_SECRET_KEY must be set in production. "
                    'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
                )
            if not self.auth_enabled:
                warnings.warn(
                    "Authentication is disabled in production environment. "
                    "Set AGILEPM_AUTH_ENABLED=true to enable.",
                    UserWarning,
                    stacklevel=2,
                )
                logger.warning("Authentication disabled in production")
        elif self.auth_secret_key is None:
            object.__setattr__(self, "_runtime_dev_secret", _generate_dev_secret_key())
            logger.debug("Generated random auth secret for development")

        return self

    @property
    def is_auth_enabled(self) -> bool:
        """Get resolved auth_enabled value (always bool, never None)."""
        if self.auth_enabled is None:
            return self.env == "production"
        return self.auth_enabled

    @property
    def effective_auth_secret_key(self) -> str:
        """Get the secret key used to sign and validate API tokens."""
        if self.auth_secret_key is not None:
            return self.auth_secret_key
        if self._runtime_dev_secret is not None:
            return self._runtime_dev_secret
        raise ConfigurationError("No auth secret key available")

    def backoff_seconds(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count`` (1-based)."""
        return self.webhook_backoff_unit_seconds * (2**retry_count)

    model_config = {
        "env_prefix": "AGILEPM_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }


# Global settings instance
settings = Settings()
