"""
Configuration context logger.

Provides logging interface for configuration context with automatic [config] prefix.
All configuration modules should import from this module, not from utils.logger directly.
"""

from loguru import logger

CONTEXT_PREFIX = "[config]"


def _log_info(message: str) -> None:
    """Log info message with [config] prefix."""
    logger.info(f"{CONTEXT_PREFIX} {message}")


def _log_success(message: str) -> None:
    """Log success message with [config] prefix."""
    logger.success(f"{CONTEXT_PREFIX} {message}")


def _log_warning(message: str) -> None:
    """Log warning message with [config] prefix."""
    logger.warning(f"{CONTEXT_PREFIX} {message}")


def _log_debug(message: str) -> None:
    """Log debug message with [config] prefix."""
    logger.debug(f"{CONTEXT_PREFIX} {message}")


def log_layers_loaded(layers: list) -> None:
    """Log which configuration layers contributed to a resolved config."""
    _log_debug(f"Config layers (low to high): {', '.join(layers)}")
