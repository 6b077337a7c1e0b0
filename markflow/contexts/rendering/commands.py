"""
Command templates for external tools.

A command template is an argv list whose tokens may contain {placeholder}
fields. Tokens are never joined into a shell string.

    ["pandoc", "{input}", "-o", "{output}", "--reference-doc={reference_doc}"]

A token whose placeholders all resolve to empty values is dropped, so
optional flags vanish cleanly when there is nothing to pass.
"""

import re
from typing import Any, List, Mapping, Sequence

from markflow.utils.exceptions import ExternalToolError

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


def resolve_command(template: Sequence[str], values: Mapping[str, Any], tool: str = "") -> List[str]:
    """
    Substitute placeholders in an argv template.

    Examples:
        >>> resolve_command(["dot", "-T{format}", "{input}"], {"format": "png", "input": "a.dot"})
        ['dot', '-Tpng', 'a.dot']
        >>> resolve_command(["pandoc", "--reference-doc={reference_doc}"], {"reference_doc": ""})
        ['pandoc']

    Raises:
        ExternalToolError: Unknown placeholder or empty command
    """
    argv = []
    for token in template:
        token = str(token)
        names = PLACEHOLDER_PATTERN.findall(token)
        if not names:
            argv.append(token)
            continue

        unknown = [name for name in names if name not in values]
        if unknown:
            raise ExternalToolError(
                f"Malformed command template for {tool or 'tool'}: unknown placeholder "
                f"{{{unknown[0]}}}",
                tool=tool or None,
            )
        if all(values[name] in (None, "") for name in names):
            continue
        argv.append(PLACEHOLDER_PATTERN.sub(lambda m: str(values[m.group(1)] or ""), token))

    if not argv:
        raise ExternalToolError(f"Empty command for {tool or 'tool'}", tool=tool or None)
    return argv
