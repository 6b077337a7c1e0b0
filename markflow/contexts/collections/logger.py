"""
Collections context logger.

Provides logging interface for the collection engine with automatic [engine] prefix.
All collections modules should import from this module, not from utils.logger directly.
"""

from pathlib import Path

from loguru import logger

from markflow.utils.logger import setup_logger as _setup_logger

CONTEXT_PREFIX = "[engine]"


def setup_engine_logger(log_dir: Path, project_root: Path) -> Path:
    """
    Setup logger for the collection engine.

    Args:
        log_dir: Directory for this session's logs
        project_root: Project the engine operates on (recorded in provenance)

    Returns:
        Path to log file
    """
    return _setup_logger(
        context_name="engine",
        log_dir=log_dir,
        extra_provenance={"Project": project_root},
    )


def _log_info(message: str) -> None:
    """Log info message with [engine] prefix."""
    logger.info(f"{CONTEXT_PREFIX} {message}")


def _log_success(message: str) -> None:
    """Log success message with [engine] prefix."""
    logger.success(f"{CONTEXT_PREFIX} {message}")


def _log_error(message: str) -> None:
    """Log error message with [engine] prefix."""
    logger.error(f"{CONTEXT_PREFIX} {message}")


def _log_warning(message: str) -> None:
    """Log warning message with [engine] prefix."""
    logger.warning(f"{CONTEXT_PREFIX} {message}")


def _log_debug(message: str) -> None:
    """Log debug message with [engine] prefix."""
    logger.debug(f"{CONTEXT_PREFIX} {message}")


# High-level engine-specific logging helpers


def log_collection_created(workflow: str, collection_id: str, path: Path, files: list) -> None:
    _log_success(f"Created {workflow} collection: {collection_id}")
    _log_debug(f"  Location: {path}")
    for name in files:
        _log_debug(f"  Rendered: {name}")


def log_status_transition(collection_id: str, old_status: str, new_status: str, moved: bool) -> None:
    if moved:
        _log_success(f"{collection_id}: {old_status} -> {new_status}")
    else:
        _log_info(f"{collection_id}: status {new_status} re-recorded (no move)")


def log_scan_failures(workflow: str, failures: list) -> None:
    """Warn about collection.yml files that could not be read during a scan."""
    if not failures:
        return
    _log_warning(f"{len(failures)} unreadable collection(s) in workflow '{workflow}'")
    for failure in failures[:5]:
        _log_warning(f"  {failure.path}: {failure.error}")
    if len(failures) > 5:
        _log_warning(f"  ... and {len(failures) - 5} more")
