"""Configuration management for listingflow.

Centralized configuration using Pydantic Settings. Everything is loaded
from environment variables with the LISTINGFLOW_ prefix; nested settings use
a double underscore as delimiter (e.g., LISTINGFLOW_STORE__REDIS_URL).

Example:
    export LISTINGFLOW_ENVIRONMENT=staging
    export LISTINGFLOW_STORE__REST_URL=https://kv.example.com
    export LISTINGFLOW_STORE__REST_TOKEN=...
"""

from __future__ import annotations

import hashlib
import json
import logging
from enum import Enum
from functools import cached_property
from typing import Annotated, Any, Self

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Deployment environment.

    Production disables unauthenticated bootstrap and forbids debug mode.
    """

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class StoreBackend(str, Enum):
    """Key/value store backend selected at startup."""

    MEMORY = "memory"
    REDIS = "redis"
    REST = "rest"


class StoreSettings(BaseSettings):
    """Key/value store connection settings.

    When a REST endpoint and token are both set the REST backend is used;
    otherwise a Redis URL selects Redis; with neither, the in-memory store
    is used (local runs and tests only).
    """

    model_config = SettingsConfigDict(
        env_prefix="LISTINGFLOW_STORE__",
        extra="ignore",
    )

    rest_url: str | None = Field(
        default=None,
        description="Base URL of a REST key/value endpoint (get/set/incr/expire paths)",
    )
    rest_token: SecretStr | None = Field(
        default=None,
        description="Bearer token for the REST key/value endpoint",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis connection URL (redis://host:port/db)",
    )
    key_prefix: str = Field(
        default="lf",
        description="Namespace prepended to every stored key",
    )
    timeout: Annotated[float, Field(gt=0, le=120)] = Field(
        default=10.0,
        description="Network timeout in seconds for remote backends",
    )

    @field_validator("key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        """Key prefix must be non-empty and contain no separators."""
        v = v.strip()
        if not v:
            msg = "Key prefix cannot be empty"
            raise ValueError(msg)
        if ":" in v:
            msg = "Key prefix must not contain ':'"
            raise ValueError(msg)
        return v

    @property
    def backend(self) -> StoreBackend:
        """Backend implied by the configured connection settings."""
        if self.rest_url and self.rest_token and self.rest_token.get_secret_value():
            return StoreBackend.REST
        if self.redis_url:
            return StoreBackend.REDIS
        return StoreBackend.MEMORY


class AuditSettings(BaseSettings):
    """Audit trail retention and paging settings."""

    model_config = SettingsConfigDict(
        env_prefix="LISTINGFLOW_AUDIT__",
        extra="ignore",
    )

    max_entries: Annotated[int, Field(ge=100)] = Field(
        default=2000,
        description="Maximum events retained per brokerage log (oldest dropped first)",
    )
    default_limit: Annotated[int, Field(ge=1)] = Field(
        default=100,
        description="Events returned when the caller gives no limit",
    )
    max_limit: Annotated[int, Field(ge=1)] = Field(
        default=500,
        description="Upper bound for a single audit page",
    )


class Settings(BaseSettings):
    """Main listingflow configuration container.

    Example environment variables:
        LISTINGFLOW_ENVIRONMENT=production
        LISTINGFLOW_BOOTSTRAP_KEY=change-me
        LISTINGFLOW_STORE__REDIS_URL=redis://localhost:6379/0
    """

    model_config = SettingsConfigDict(
        env_prefix="LISTINGFLOW_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
    )

    environment: Environment = Field(
        default=Environment.DEV,
        description="Deployment environment (dev, staging, production)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (never in production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    bootstrap_key: SecretStr | None = Field(
        default=None,
        description="Shared secret required by the bootstrap endpoint",
    )

    store: StoreSettings = Field(default_factory=StoreSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)

    api_host: str = Field(
        default="127.0.0.1",
        description="API server bind address",
    )
    api_port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=8000,
        description="API server port",
    )

    app_name: str = Field(
        default="listingflow",
        description="Application name for logging",
    )
    app_version: str = Field(
        default="0.1.0",
        description="Application version",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            msg = f"Log level must be one of: {', '.join(sorted(allowed))}"
            raise ValueError(msg)
        return v.upper()

    @model_validator(mode="after")
    def validate_audit_limits(self) -> Self:
        """Default audit page must fit inside the maximum page."""
        if self.audit.default_limit > self.audit.max_limit:
            msg = "audit.default_limit cannot exceed audit.max_limit"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def validate_production_constraints(self) -> Self:
        """Enforce production environment constraints."""
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                msg = "Debug mode is not allowed in production environment"
                raise ValueError(msg)
            if self.store.backend == StoreBackend.MEMORY:
                logger.warning(
                    "No external key/value store configured in production. "
                    "Data will be lost when the process exits."
                )
        return self

    @cached_property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEV

    @cached_property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def bootstrap_enabled(self) -> bool:
        """Bootstrap is open without a key only outside production."""
        if self.bootstrap_key and self.bootstrap_key.get_secret_value().strip():
            return True
        return not self.is_production

    def get_config_snapshot(self) -> dict[str, Any]:
        """Non-sensitive configuration snapshot for startup logging."""
        return {
            "environment": self.environment.value,
            "store_backend": self.store.backend.value,
            "key_prefix": self.store.key_prefix,
            "audit": {
                "max_entries": self.audit.max_entries,
                "default_limit": self.audit.default_limit,
                "max_limit": self.audit.max_limit,
            },
            "bootstrap_key_set": bool(
                self.bootstrap_key and self.bootstrap_key.get_secret_value().strip()
            ),
            "api": {
                "host": self.api_host,
                "port": self.api_port,
            },
            "app_version": self.app_version,
        }

    def get_config_hash(self) -> str:
        """SHA-256 of the configuration snapshot, for spotting drift between deploys."""
        snapshot_json = json.dumps(self.get_config_snapshot(), sort_keys=True)
        return hashlib.sha256(snapshot_json.encode()).hexdigest()


class ConfigValidationError(Exception):
    """Raised when configuration validation fails.

    This exception should cause fast failure at startup.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)


def validate_settings(settings: Settings) -> None:
    """Perform runtime validation that cannot be expressed declaratively.

    Raises:
        ConfigValidationError: If validation fails.
    """
    store = settings.store
    if store.rest_url and not (store.rest_token and store.rest_token.get_secret_value()):
        raise ConfigValidationError(
            "REST store token is required when a REST URL is set. "
            "Set LISTINGFLOW_STORE__REST_TOKEN.",
            field="store.rest_token",
        )
    if store.rest_url and not store.rest_url.startswith(("http://", "https://")):
        raise ConfigValidationError(
            "REST store URL must start with http:// or https://",
            field="store.rest_url",
        )
    if store.redis_url and not store.redis_url.startswith(("redis://", "rediss://", "unix://")):
        raise ConfigValidationError(
            "Redis URL must use redis://, rediss:// or unix://",
            field="store.redis_url",
        )

    logger.info(
        "Configuration validated. Config hash: %s",
        settings.get_config_hash(),
    )
