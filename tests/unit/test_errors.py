"""Unit tests for the error taxonomy and user-facing messages."""

import pytest

from markflow.utils.exceptions import (
    CollectionNotFoundError,
    ConsistencyError,
    ExternalToolError,
    MarkflowError,
    OperationTimeoutError,
    ResourceLimitError,
    ValidationError,
    public_error_message,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "error",
    [
        ValidationError("Unknown workflow 'nope'"),
        OperationTimeoutError("pandoc timed out after 120 seconds", timeout=120),
        ResourceLimitError("Too many concurrent operations"),
    ],
)
def test_public_kinds_pass_through(error):
    assert public_error_message(error) == error.message


@pytest.mark.unit
def test_other_kinds_are_generic():
    not_found = CollectionNotFoundError("job", "secret_20250730")
    tool = ExternalToolError("pandoc: /home/alice/private.md missing", tool="pandoc", returncode=1)

    assert public_error_message(not_found) == "The requested resource was not found."
    assert "secret" not in public_error_message(not_found)
    assert "/home/alice" not in public_error_message(tool)
    assert "Project data is inconsistent" in public_error_message(ConsistencyError("x in a and b"))
    assert public_error_message(MarkflowError("boom")) == "An internal error occurred."
    assert public_error_message(KeyError("raw")) == "An internal error occurred."


@pytest.mark.unit
def test_timeout_is_also_builtin_timeout():
    assert isinstance(OperationTimeoutError("slow"), TimeoutError)
    assert CollectionNotFoundError("job", "x").kind == "not_found"
