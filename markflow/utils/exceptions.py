"""
Error taxonomy shared by all markflow contexts.

Every error raised by the core derives from MarkflowError and carries a
`kind` string. Boundary layers (CLI, HTTP handlers) must not forward raw
error text; they call public_error_message() which only lets an allow-listed
set of kinds through verbatim.
"""

from pathlib import Path
from typing import Optional


class MarkflowError(Exception):
    """
    Base class for all markflow errors.

    Attributes:
        message: Error description
        kind: Stable error category used by boundary layers
    """

    kind = "internal"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(MarkflowError):
    """A requested resource (path, workflow, collection, root) does not exist."""

    kind = "not_found"

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        super().__init__(message)


class ProjectNotFoundError(NotFoundError):
    """No project marker directory found between the start path and the filesystem root."""


class SystemNotFoundError(NotFoundError):
    """The markflow system installation could not be located."""


class WorkflowNotFoundError(NotFoundError):
    """A workflow definition is missing from an environment."""

    def __init__(self, workflow: str):
        self.workflow = workflow
        super().__init__(f"Workflow not found: {workflow}")


class CollectionNotFoundError(NotFoundError):
    """A collection id does not exist in any stage of its workflow."""

    def __init__(self, workflow: str, collection_id: str):
        self.workflow = workflow
        self.collection_id = collection_id
        super().__init__(f"Collection '{collection_id}' not found in workflow '{workflow}'")


class ValidationError(MarkflowError):
    """Malformed input, unknown workflow or stage, or an invalid definition file."""

    kind = "validation"


class ExternalToolError(MarkflowError):
    """
    An external tool is unavailable, exited non-zero, or was given a malformed command.

    Attributes:
        tool: Name of the tool or converter
        returncode: Exit status when the tool ran (None if it never started)
        stderr: Captured standard error, if any
    """

    kind = "external_tool"

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class OperationTimeoutError(MarkflowError, TimeoutError):
    """An external call or bounded operation exceeded its deadline."""

    kind = "timeout"

    def __init__(self, message: str, timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(message)


class ResourceLimitError(MarkflowError):
    """The concurrent-operation ceiling was reached."""

    kind = "resource_limit"


class ConsistencyError(MarkflowError):
    """On-disk state contradicts an invariant (e.g. one collection id in two stages)."""

    kind = "consistency"


# Kinds whose message is safe to show end users verbatim
PUBLIC_ERROR_KINDS = {"validation", "timeout", "resource_limit"}

GENERIC_MESSAGES = {
    "not_found": "The requested resource was not found.",
    "external_tool": "Document conversion failed. Check that the conversion tools are installed.",
    "consistency": "Project data is inconsistent. Please contact the project maintainer.",
    "internal": "An internal error occurred.",
}


def public_error_message(error: BaseException) -> str:
    """
    Map an error to a message that is safe to show end users.

    Validation, timeout and resource-limit messages are passed through;
    every other kind is replaced with a generic sentence.

    Args:
        error: Any exception raised while serving a request

    Returns:
        Sanitized, user-facing message
    """
    if not isinstance(error, MarkflowError):
        return GENERIC_MESSAGES["internal"]

    if error.kind in PUBLIC_ERROR_KINDS:
        return error.message

    return GENERIC_MESSAGES.get(error.kind, GENERIC_MESSAGES["internal"])
