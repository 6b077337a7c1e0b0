"""
Environment context logger.

Provides logging interface for environment context with automatic [env] prefix.
All environment modules should import from this module, not from utils.logger directly.
"""

from loguru import logger

CONTEXT_PREFIX = "[env]"


def _log_info(message: str) -> None:
    """Log info message with [env] prefix."""
    logger.info(f"{CONTEXT_PREFIX} {message}")


def _log_warning(message: str) -> None:
    """Log warning message with [env] prefix."""
    logger.warning(f"{CONTEXT_PREFIX} {message}")


def _log_debug(message: str) -> None:
    """Log debug message with [env] prefix."""
    logger.debug(f"{CONTEXT_PREFIX} {message}")


def log_resource_resolved(kind: str, name: str, source: str) -> None:
    """Record which layer of a merged environment served a resource."""
    _log_debug(f"{kind} '{name}' resolved from {source} environment")


def log_skipped_definition(kind: str, path, error: Exception) -> None:
    _log_warning(f"Skipping invalid {kind} definition {path}: {error}")
