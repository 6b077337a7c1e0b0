"""
Collection id generation.

An id is the sanitized identifying fields of a collection joined with a
separator, followed by a date suffix:

    ("Google Inc", "Software Engineer") + 20250730
    -> google_inc_software_engineer_20250730

Over-long ids are shortened by truncating the field part only; the date
suffix is always kept whole and the result never exceeds max_length.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from markflow.utils.exceptions import ValidationError
from markflow.utils.timestamp import format_date

DEFAULT_SEPARATOR = "_"
DEFAULT_MAX_LENGTH = 50
DEFAULT_DATE_FORMAT = "YYYYMMDD"

NON_ALPHANUMERIC_PATTERN = re.compile(r"[^a-z0-9]+")


def sanitize_part(value: Any, separator: str = DEFAULT_SEPARATOR) -> str:
    """
    Lowercase a value and reduce it to [a-z0-9] runs joined by the separator.

    Examples:
        >>> sanitize_part("Google, Inc.")
        'google_inc'
        >>> sanitize_part("  --  ")
        ''
    """
    text = NON_ALPHANUMERIC_PATTERN.sub(separator, str(value).lower())
    return text.strip(separator) if separator else text


def generate_collection_id(
    parts: Sequence[Any],
    date_component: str,
    separator: str = DEFAULT_SEPARATOR,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> str:
    """
    Build a collection id from identifying parts and a date suffix.

    Args:
        parts: Identifying field values, in order (empty parts are dropped)
        date_component: Already-formatted date (e.g. '20250730')
        separator: Join/replacement character
        max_length: Upper bound on the id length

    Returns:
        Sanitized id, at most max_length characters

    Raises:
        ValidationError: No usable parts, or the date suffix alone cannot fit
    """
    sanitized = [p for p in (sanitize_part(part, separator) for part in parts) if p]
    if not sanitized:
        raise ValidationError("Collection id needs at least one non-empty identifying field")

    date_component = str(date_component)
    base = separator.join(sanitized)
    collection_id = f"{base}{separator}{date_component}"
    if len(collection_id) <= max_length:
        return collection_id

    available = max_length - len(date_component) - len(separator)
    if available < 1:
        raise ValidationError(
            f"max_length {max_length} is too short for date suffix '{date_component}'"
        )

    base = base[:available]
    if separator:
        base = base.rstrip(separator)
    if not base:
        raise ValidationError("Collection id truncated to nothing; raise max_length")
    return f"{base}{separator}{date_component}"


def identifying_values(fields_order: Sequence[str], fields: Mapping[str, Any]) -> List[Any]:
    """
    Pick the identifying field values in workflow order.

    Raises:
        ValidationError: A required identifying field is missing or blank
    """
    missing = [name for name in fields_order if not str(fields.get(name) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return [fields[name] for name in fields_order]


def build_collection_id(
    fields_order: Sequence[str],
    fields: Mapping[str, Any],
    now: datetime,
    rules: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Build the id for a new collection from its fields and the current time.

    Args:
        fields_order: Workflow's identifying field names
        fields: Values supplied by the caller
        now: Current time from the run context
        rules: Resolved collection-id rules (date_format, sanitize_spaces, max_length)
    """
    rules = rules or {}
    date_component = format_date(now, rules.get("date_format") or DEFAULT_DATE_FORMAT)
    separator = rules.get("sanitize_spaces")
    if separator is None:
        separator = DEFAULT_SEPARATOR
    return generate_collection_id(
        identifying_values(fields_order, fields),
        date_component,
        separator=separator,
        max_length=int(rules.get("max_length") or DEFAULT_MAX_LENGTH),
    )
