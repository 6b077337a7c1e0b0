"""
Shared loguru configuration for markflow sessions.

Each context (engine, render) opens its own session through a thin wrapper in
contexts/{context}/logger.py. A session writes everything to
``<log_dir>/<context>.log`` and mirrors INFO and above to the terminal.
"""

import platform
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from markflow import __version__

SESSION_RULE = "-" * 72
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"
CONSOLE_FORMAT = "<level>{message}</level>"

LEVEL_COLORS = {
    "WARNING": "<yellow>",
    "ERROR": "<red>",
    "CRITICAL": "<bold><red>",
}


def setup_logger(
    context_name: str,
    log_dir: Path,
    extra_provenance: Optional[dict] = None,
    level_colors: Optional[dict] = None,
    console_level: str = "INFO",
) -> Path:
    """
    Start a logging session for one context and return its log file.

    Existing sinks are dropped, so a later session in the same process
    replaces the earlier one instead of duplicating output.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{context_name}.log"

    logger.remove()
    for level_name, color in {**LEVEL_COLORS, **(level_colors or {})}.items():
        logger.level(level_name, color=color)

    logger.add(log_file, format=FILE_FORMAT, level="DEBUG", encoding="utf-8")
    logger.add(sys.stdout, format=CONSOLE_FORMAT, level=console_level, colorize=True)

    log_provenance(extra_provenance, context_name=context_name)
    return log_file


def provenance(extra_context: Optional[dict] = None) -> dict:
    """Key/value pairs describing the current invocation."""
    details = {
        "markflow": __version__,
        "Invocation": " ".join(sys.argv),
        "Working directory": Path.cwd(),
        "Python": platform.python_version(),
    }
    for key, value in (extra_context or {}).items():
        if value is not None:
            details[key] = value
    return details


def log_provenance(extra_context: Optional[dict] = None, context_name: str = "") -> None:
    # Written at DEBUG so the header lands in the file but not the terminal
    title = f"session: {context_name}" if context_name else "session"
    logger.debug(f"{SESSION_RULE} {title}")
    for key, value in provenance(extra_context).items():
        logger.debug(f"{key}: {value}")
    logger.debug(SESSION_RULE)
