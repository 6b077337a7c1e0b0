"""Timestamp formatting utilities."""

import re
from datetime import datetime, timezone
from typing import Optional

# Tokens understood by format_date() for custom patterns, longest first
DATE_TOKEN_PATTERN = re.compile(r"YYYY|YY|MM|DD|HH|mm|ss")


def parse_iso(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp, accepting a trailing 'Z' for UTC.

    Naive timestamps are assumed to be UTC so that comparisons between
    history entries are always well defined.

    Raises:
        ValueError: If the value is not ISO 8601
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(dt: datetime) -> str:
    """Render a datetime as an ISO 8601 string (UTC if naive)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def format_date(dt: datetime, date_format: str) -> str:
    """
    Format a datetime with one of the collection-id date formats.

    Named formats: YYYY-MM-DD, YYYYMMDD, ISO, UNIX. Anything else is treated
    as a custom pattern of YYYY/YY/MM/DD/HH/mm/ss tokens.

    Examples:
        format_date(datetime(2025, 7, 30), "YYYYMMDD")
        # "20250730"

        format_date(datetime(2025, 7, 30, 9, 5), "YYYY.MM.DD-HHmm")
        # "2025.07.30-0905"
    """
    named = date_format.upper()
    if named == "ISO":
        return to_iso(dt)
    if named == "UNIX":
        return str(int(dt.timestamp()))

    values = {
        "YYYY": f"{dt.year:04d}",
        "YY": f"{dt.year % 100:02d}",
        "MM": f"{dt.month:02d}",
        "DD": f"{dt.day:02d}",
        "HH": f"{dt.hour:02d}",
        "mm": f"{dt.minute:02d}",
        "ss": f"{dt.second:02d}",
    }
    return DATE_TOKEN_PATTERN.sub(lambda match: values[match.group(0)], date_format)


# Largest unit first; days fall through as the final bucket
RELATIVE_UNITS = ((86400, "d"), (3600, "h"), (60, "m"))


def format_timestamp(iso_timestamp: str, relative: bool = False, now: Optional[datetime] = None) -> str:
    """
    Render an event or history timestamp for the terminal.

    Absolute form is "2025-07-30 10:00:00"; relative form is compact, e.g.
    "2h ago" or "3d from now". Unparseable input is returned unchanged.
    """
    try:
        dt = parse_iso(iso_timestamp)
    except (ValueError, AttributeError):
        return iso_timestamp

    if not relative:
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    return _relative(dt, now or datetime.now(timezone.utc))


def _relative(dt: datetime, now: datetime) -> str:
    seconds = int((now - dt).total_seconds())
    suffix = "ago" if seconds >= 0 else "from now"
    seconds = abs(seconds)
    for size, unit in RELATIVE_UNITS:
        if seconds >= size:
            return f"{seconds // size}{unit} {suffix}"
    return f"{seconds}s {suffix}"
