"""
Shared utilities for markflow.

Common functionality used across contexts:
- Error taxonomy and user-facing error messages
- Logging setup and collection event log
- Date formatting and the explicit run context
- Resource-bounded external command execution
"""

from markflow.utils.exceptions import MarkflowError, public_error_message
from markflow.utils.run_context import RunContext
from markflow.utils.timestamp import format_date, format_timestamp, to_iso

__all__ = [
    "MarkflowError",
    "RunContext",
    "format_date",
    "format_timestamp",
    "public_error_message",
    "to_iso",
]
