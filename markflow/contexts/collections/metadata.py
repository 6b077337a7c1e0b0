"""
Collection metadata (collection.yml).

Required fields and workflow-specific extras are serialized together in one
YAML document but validated separately: CollectionMetadata.from_dict checks
the required core and keeps everything else in `extra`.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Union

import yaml

from markflow.utils.exceptions import ValidationError
from markflow.utils.timestamp import parse_iso, to_iso

METADATA_FILENAME = "collection.yml"

REQUIRED_FIELDS = (
    "collection_id",
    "workflow",
    "status",
    "date_created",
    "date_modified",
    "status_history",
)


@dataclass
class StatusEntry:
    status: str
    date: str

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.status, "date": self.date}


@dataclass
class CollectionMetadata:
    """
    Lifecycle record of one collection.

    Attributes:
        collection_id: Unique id within the workflow
        workflow: Workflow name
        status: Current stage
        date_created: ISO timestamp of creation
        date_modified: ISO timestamp of the last change
        status_history: Append-only stage transitions (non-decreasing dates)
        extra: Workflow-specific fields (company, role, title, url, ...)
    """

    collection_id: str
    workflow: str
    status: str
    date_created: str
    date_modified: str
    status_history: List[StatusEntry] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(
        cls, collection_id: str, workflow: str, status: str, now: datetime, extra: Dict[str, Any]
    ) -> "CollectionMetadata":
        timestamp = to_iso(now)
        return cls(
            collection_id=collection_id,
            workflow=workflow,
            status=status,
            date_created=timestamp,
            date_modified=timestamp,
            status_history=[StatusEntry(status=status, date=timestamp)],
            extra=dict(extra),
        )

    @classmethod
    def from_dict(cls, data: Any) -> "CollectionMetadata":
        """
        Validate parsed collection.yml content.

        Raises:
            ValidationError: Missing required fields or malformed status history
        """
        if not isinstance(data, dict):
            raise ValidationError("Collection metadata must be a mapping")

        data = {key: _normalize_value(value) for key, value in data.items()}
        missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise ValidationError(f"Collection metadata missing required fields: {', '.join(missing)}")

        raw_history = data["status_history"]
        if not isinstance(raw_history, list) or not raw_history:
            raise ValidationError("status_history must be a non-empty list")

        history = []
        previous = None
        for entry in raw_history:
            if not isinstance(entry, dict) or not entry.get("status") or not entry.get("date"):
                raise ValidationError(f"Malformed status_history entry: {entry!r}")
            try:
                when = parse_iso(str(entry["date"]))
            except ValueError as e:
                raise ValidationError(f"Invalid date in status_history: {entry['date']}") from e
            if previous is not None and when < previous:
                raise ValidationError(f"status_history goes backwards at {entry['date']}")
            previous = when
            history.append(StatusEntry(status=str(entry["status"]), date=str(entry["date"])))

        return cls(
            collection_id=str(data["collection_id"]),
            workflow=str(data["workflow"]),
            status=str(data["status"]),
            date_created=str(data["date_created"]),
            date_modified=str(data["date_modified"]),
            status_history=history,
            extra={key: value for key, value in data.items() if key not in REQUIRED_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection_id": self.collection_id,
            "workflow": self.workflow,
            "status": self.status,
            "date_created": self.date_created,
            "date_modified": self.date_modified,
            **self.extra,
            "status_history": [entry.to_dict() for entry in self.status_history],
        }

    def append_status(self, status: str, now: datetime) -> StatusEntry:
        """
        Record a transition, clamping its date so history never goes backwards.
        """
        when = now
        if self.status_history:
            last = parse_iso(self.status_history[-1].date)
            if last > when:
                when = last
        entry = StatusEntry(status=status, date=to_iso(when))
        self.status_history.append(entry)
        self.status = status
        self.date_modified = entry.date
        return entry

    def touch(self, now: datetime) -> None:
        """Bump date_modified (never earlier than the current value)."""
        current = parse_iso(self.date_modified)
        self.date_modified = to_iso(max(current, now))


def _normalize_value(value: Any) -> Any:
    """Hand-edited YAML may contain bare timestamps; keep everything as ISO strings."""
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_normalize_value(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize_value(item) for key, item in value.items()}
    return value


def parse_metadata(text: Union[str, bytes], source: Any = METADATA_FILENAME) -> CollectionMetadata:
    """
    Parse collection.yml content. Raw bytes must be UTF-8.

    Raises:
        ValidationError: Undecodable bytes, invalid YAML or invalid metadata
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"{source} is not valid UTF-8: {e.reason} at byte {e.start}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {source}: {e}") from e
    return CollectionMetadata.from_dict(data)


def serialize_metadata(metadata: CollectionMetadata) -> str:
    return yaml.safe_dump(
        metadata.to_dict(), sort_keys=False, default_flow_style=False, allow_unicode=True
    )
