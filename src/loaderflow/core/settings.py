"""Singleton settings accessor for loaderflow configuration.

This module provides a cached accessor for the application settings,
ensuring consistent configuration across all services.

Usage:
    from loaderflow.core.settings import get_settings

    settings = get_settings()
    if not settings.workflow.allow_self_approval:
        ...

The settings are loaded once and cached. To reload settings (e.g., in tests),
use clear_settings_cache().
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from loaderflow.core.config import (
    ConfigValidationError,
    Settings,
    validate_settings,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Module-level cache for settings instance
_settings_cache: Settings | None = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached application settings.

    Returns:
        Validated Settings instance.

    Raises:
        SystemExit: If settings cannot be loaded (fail-fast behavior).
    """
    global _settings_cache

    if _settings_cache is not None:
        return _settings_cache

    try:
        logger.info("Loading application settings from environment")
        settings = Settings()
        validate_settings(settings)
        _settings_cache = settings

        logger.info(
            "Configuration loaded: environment=%s, backend=%s, policy_hash=%s",
            settings.environment.value,
            "sqlite" if settings.database.is_sqlite else "postgresql",
            settings.get_policy_hash()[:16] + "...",
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

    Use this function in tests to reset settings between test cases,
    or when configuration needs to be reloaded.
    """
    global _settings_cache
    _settings_cache = None
    get_settings.cache_clear()
    logger.debug("Settings cache cleared")


def get_settings_safe() -> Settings | None:
    """Get settings without raising exceptions.

    Returns:
        Settings instance if available, None otherwise.
    """
    try:
        return get_settings()
    except SystemExit:
        return None


def configure_logging(level: str | None = None) -> None:
    """Set up process-wide logging for embedding applications and scripts.

    Args:
        level: Log level name. Defaults to the configured ``log_level``.
    """
    if level is None:
        settings = get_settings_safe()
        level = settings.log_level if settings is not None else "INFO"

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # SQL echo goes through the sqlalchemy.engine logger; keep it quiet unless asked
    if level.upper() != "DEBUG":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
