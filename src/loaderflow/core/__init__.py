"""loaderflow core module.

Shared components used across all services:
- Configuration management
- Logging setup
"""

from loaderflow.core.config import (
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    Settings,
    WorkflowSettings,
)
from loaderflow.core.settings import (
    clear_settings_cache,
    configure_logging,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "Settings",
    "WorkflowSettings",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
    "get_settings_safe",
]
