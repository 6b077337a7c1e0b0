"""
Collection event logging utilities for markflow (Tier 2 logging).

Provides uniform interfaces for logging collection lifecycle events to
collection_events.log. This is for cross-context coordination via a JSON Lines
event log that lives inside the project's .markflow/logs directory and is
written through the storage adapter.

For detailed within-context logging (Tier 1), use markflow.utils.logger instead.

Usage:
    from markflow.utils.event_logging import log_collection_event, log_status_change

    # Record a stage transition
    log_status_change(
        storage, events_file,
        workflow="job",
        collection_id="google_inc_software_engineer_20250730",
        old_status="active",
        new_status="submitted",
        source="engine",
    )

    # Log custom collection event
    log_collection_event(
        storage, events_file,
        event_type="formatted",
        workflow="job",
        collection_id="google_inc_software_engineer_20250730",
        source="rendering",
        formats=["docx"],
    )
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from markflow.utils.exceptions import NotFoundError
from markflow.utils.timestamp import to_iso

if TYPE_CHECKING:
    from markflow.contexts.environment.storage import StorageAdapter

EVENTS_FILENAME = "collection_events.log"

# Event types that change which stage a collection is in
MUTATIVE_EVENTS = {"created", "status_change", "deleted"}

# Map event types to their status field names
STATUS_FIELD_BY_EVENT_TYPE = {
    "status_change": "new_status",
    "created": "status",
    "deleted": "status",
}


def log_collection_event(
    storage: "StorageAdapter",
    events_file: Path,
    event_type: str,
    workflow: str,
    collection_id: str,
    source: str,
    timestamp: Optional[datetime] = None,
    **extra_fields,
) -> dict:
    """
    Log an event to the project's collection event log.

    Events are appended in JSON Lines format (one JSON object per line). This
    enables streaming processing and easy filtering by event_type, workflow,
    collection_id, or source.

    Args:
        storage: Storage adapter the project lives on
        events_file: Path of the JSON Lines log
        event_type: Type of event (e.g., "created", "status_change", "formatted")
        workflow: Workflow name
        collection_id: Collection identifier
        source: Event source (e.g., "engine", "rendering", "cli")
        timestamp: Event time (use the run context's clock for reproducible logs)
        **extra_fields: Additional event-specific fields

    Returns:
        The event dict that was written
    """
    event = {
        "timestamp": to_iso(timestamp or datetime.now(timezone.utc)),
        "event_type": event_type,
        "workflow": workflow,
        "collection_id": collection_id,
        "source": source,
        **extra_fields,
    }

    try:
        existing = storage.read_text(events_file)
    except NotFoundError:
        existing = ""

    # Storage has no append primitive, so the log is rewritten with the new line
    storage.write_text(events_file, existing + json.dumps(event, default=str) + "\n")
    return event


def log_status_change(
    storage: "StorageAdapter",
    events_file: Path,
    workflow: str,
    collection_id: str,
    old_status: str,
    new_status: str,
    source: str,
    **extra_fields,
) -> dict:
    """
    Log status change event.

    Pure logging function - does NOT move the collection.
    Called by the engine after the directory has been moved.
    """
    return log_collection_event(
        storage,
        events_file,
        event_type="status_change",
        workflow=workflow,
        collection_id=collection_id,
        old_status=old_status,
        new_status=new_status,
        source=source,
        **extra_fields,
    )


def _load_events(storage: "StorageAdapter", events_file: Path) -> List[Dict]:
    try:
        content = storage.read_text(events_file)
    except NotFoundError:
        return []

    events = []
    for line in content.splitlines():
        if not line.strip():
            continue
        try:
            events.append(json.loads(line))
        except json.JSONDecodeError:
            # Skip malformed lines
            continue
    return events


def get_recent_events(
    storage: "StorageAdapter",
    events_file: Path,
    n: int = 10,
    workflow: Optional[str] = None,
    collection_id: Optional[str] = None,
    event_type: Optional[str] = None,
) -> List[Dict]:
    """
    Get the last n events from the collection log, optionally filtered.

    Args:
        storage: Storage adapter the project lives on
        events_file: Path of the JSON Lines log
        n: Number of recent events to return (default: 10)
        workflow: Filter to only events for this workflow (optional)
        collection_id: Filter to only events for this collection (optional)
        event_type: Filter to only events of this type (optional)

    Returns:
        List of event dicts (most recent last)

    Example:
        # Last 20 status changes of job applications
        events = get_recent_events(storage, events_file, 20, workflow="job",
                                   event_type="status_change")
    """
    events = _load_events(storage, events_file)

    if workflow:
        events = [e for e in events if e.get("workflow") == workflow]

    if collection_id:
        events = [e for e in events if e.get("collection_id") == collection_id]

    if event_type:
        events = [e for e in events if e.get("event_type") == event_type]

    return events[-n:] if len(events) > n else events


def get_status_from_event(event: Dict) -> str:
    """Extract status from event based on event type."""
    status_field = STATUS_FIELD_BY_EVENT_TYPE[event["event_type"]]
    return event[status_field]


def deduce_statuses_from_events(
    storage: "StorageAdapter", events_file: Path, workflow: str
) -> Dict[str, str]:
    """
    Rebuild the last known stage of every collection of a workflow from its events.

    Collections whose most recent mutative event is a deletion are omitted.

    Returns:
        Mapping of collection_id -> stage, in first-creation order
    """
    statuses: Dict[str, str] = {}
    for event in _load_events(storage, events_file):
        if event.get("workflow") != workflow or event.get("event_type") not in MUTATIVE_EVENTS:
            continue
        collection_id = event["collection_id"]
        if event["event_type"] == "deleted":
            statuses.pop(collection_id, None)
        else:
            statuses[collection_id] = get_status_from_event(event)
    return statuses
