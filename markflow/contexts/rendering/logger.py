"""
Logging for the rendering context.

Messages carry a [render] prefix so conversion output can be told apart
from engine output in a shared terminal session.
"""

from pathlib import Path
from typing import List

from loguru import logger

from markflow.utils.logger import setup_logger as _setup_logger

CONTEXT_PREFIX = "[render]"
RULE = "-" * 72


def setup_rendering_logger(log_dir: Path, converter: str) -> Path:
    """Open a render session logging to ``<log_dir>/render.log``; the converter goes in the header."""
    return _setup_logger(
        context_name="render",
        log_dir=log_dir,
        extra_provenance={"Converter": converter},
    )


def _log_info(message: str) -> None:
    logger.info(f"{CONTEXT_PREFIX} {message}")


def _log_success(message: str) -> None:
    logger.success(f"{CONTEXT_PREFIX} {message}")


def _log_error(message: str) -> None:
    logger.error(f"{CONTEXT_PREFIX} {message}")


def _log_warning(message: str) -> None:
    logger.warning(f"{CONTEXT_PREFIX} {message}")


def _log_debug(message: str) -> None:
    logger.debug(f"{CONTEXT_PREFIX} {message}")


# High-level rendering-specific logging helpers


def log_conversion_start(converter: str, input_file: Path, output_file: Path, processors: List[str]) -> None:
    """Log start of conversion with context."""
    _log_info(f"Converting {input_file.name} -> {output_file.name} ({converter})")
    _log_debug(f"  Source: {input_file}")
    _log_debug(f"  Output: {output_file}")
    if processors:
        _log_debug(f"  Processors: {', '.join(processors)}")


def log_conversion_result(
    converter: str,
    result,  # ConversionResult
    stdout: str = "",
    stderr: str = "",
) -> None:
    """
    Log conversion result with diagnostics.

    Tool output is only dumped on failure, raw so multi-line output keeps
    its original formatting.
    """
    if result.success:
        _log_success(f"{converter}: {len(result.output_files)} file(s) ({result.elapsed:.2f}s)")
        for path in result.output_files:
            _log_debug(f"  Output: {path}")
        for path in result.artifacts:
            _log_debug(f"  Artifact: {path}")
        return

    if result.timed_out:
        _log_error(f"{converter} timed out ({result.elapsed:.2f}s)")
    else:
        _log_error(f"{converter} failed: {result.error} ({result.elapsed:.2f}s)")

    if stdout:
        logger.opt(raw=True).debug(
            f"\n{RULE}\n{converter.upper()} STDOUT:\n{RULE}\n{stdout}\n"
        )
    if stderr:
        logger.opt(raw=True).debug(
            f"\n{RULE}\n{converter.upper()} STDERR:\n{RULE}\n{stderr}\n"
        )


def log_diagram_result(processor: str, name: str, success: bool, error: str = "") -> None:
    if success:
        _log_debug(f"  {processor} diagram rendered: {name}")
    else:
        _log_warning(f"{processor} diagram '{name}' failed: {error}")
