"""
Explicit run context for everything that reads the clock or mints ids.

Testing overrides (frozen date, timezone, deterministic ids) used to live in
module-level state; here they are carried by a RunContext instance that is
threaded into every date/id-generating call.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from markflow.utils.timestamp import parse_iso


@dataclass
class RunContext:
    """
    Clock and id source for one logical operation.

    Attributes:
        current_date: Fixed "now" for reproducible runs (None = real clock)
        timezone_name: IANA timezone used when rendering dates (None = UTC)
        deterministic_ids: Use a counter instead of random suffixes for process ids
        id_counter: Next counter value for deterministic ids
    """

    current_date: Optional[datetime] = None
    timezone_name: Optional[str] = None
    deterministic_ids: bool = False
    id_counter: int = 1

    @classmethod
    def from_config(cls, settings: Optional[Mapping[str, Any]]) -> "RunContext":
        """
        Build a context from the `system.testing` block of resolved settings.

        Invalid override dates are logged and ignored (real clock is used).
        """
        system = (settings or {}).get("system") or {}
        testing = system.get("testing") or {}

        current_date = None
        override = testing.get("override_current_date")
        if override:
            try:
                current_date = parse_iso(str(override))
            except ValueError:
                logger.warning(f"Invalid override_current_date: {override}, using system date")

        return cls(
            current_date=current_date,
            timezone_name=testing.get("override_timezone") or None,
            deterministic_ids=bool(testing.get("deterministic_ids", False)),
            id_counter=int(testing.get("id_counter_start") or 1),
        )

    @property
    def tz(self) -> tzinfo:
        if not self.timezone_name:
            return timezone.utc
        try:
            return ZoneInfo(self.timezone_name)
        except ZoneInfoNotFoundError:
            logger.warning(f"Unknown override_timezone: {self.timezone_name}, using UTC")
            return timezone.utc

    def now(self) -> datetime:
        """Current time, honouring the frozen date and timezone overrides."""
        if self.current_date is not None:
            return self.current_date.astimezone(self.tz)
        return datetime.now(self.tz)

    def next_id(self, prefix: str) -> str:
        """Mint an opaque operation id such as 'create-0001' or 'create-3f2a9c...'."""
        if self.deterministic_ids:
            value = f"{prefix}-{self.id_counter:04d}"
            self.id_counter += 1
            return value
        return f"{prefix}-{uuid.uuid4().hex[:12]}"
