"""listingflow core module.

Shared components used across the service:
- Configuration management
- Error taxonomy
"""

from listingflow.core.config import (
    AuditSettings,
    ConfigValidationError,
    Environment,
    Settings,
    StoreBackend,
    StoreSettings,
)
from listingflow.core.errors import ERROR_STATUS, ErrorCode, WorkflowError
from listingflow.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ERROR_STATUS",
    "AuditSettings",
    "ConfigValidationError",
    "Environment",
    "ErrorCode",
    "Settings",
    "StoreBackend",
    "StoreSettings",
    "WorkflowError",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
