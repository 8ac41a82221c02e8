"""Singleton settings accessor for listingflow configuration.

Usage:
    from listingflow.core.settings import get_settings

    settings = get_settings()
    if settings.bootstrap_enabled:
        ...

The settings are loaded once and cached. To reload settings (e.g., in tests),
use clear_settings_cache().
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from listingflow.core.config import (
    ConfigValidationError,
    Settings,
    validate_settings,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached application settings.

    Returns:
        Validated Settings instance.

    Raises:
        SystemExit: If settings cannot be loaded (fail-fast behavior).
    """
    try:
        logger.info("Loading application settings from environment")
        settings = Settings()
        validate_settings(settings)

        logger.info(
            "Configuration loaded: environment=%s, store_backend=%s, config_hash=%s",
            settings.environment.value,
            settings.store.backend.value,
            settings.get_config_hash()[:16] + "...",
        )
        return settings

    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            error_messages.append(f"  - {loc}: {error['msg']}")

        logger.critical(
            "Configuration validation failed:\n%s",
            "\n".join(error_messages),
        )
        raise SystemExit(1) from e

    except ConfigValidationError as e:
        logger.critical(
            "Configuration validation failed: %s (field: %s)",
            e.message,
            e.field or "unknown",
        )
        raise SystemExit(1) from e


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Example:
        def test_something(monkeypatch):
            clear_settings_cache()
            monkeypatch.setenv("LISTINGFLOW_ENVIRONMENT", "staging")
            settings = get_settings()
    """
    get_settings.cache_clear()
    logger.debug("Settings cache cleared")


def get_settings_safe() -> Settings | None:
    """Get settings without raising; None if they cannot be loaded."""
    try:
        return get_settings()
    except SystemExit:
        return None
