"""
Collections Context

Responsibilities:
- Generates collection ids from identifying fields and the current date
- Creates collections from workflow templates
- Moves collections between lifecycle stages with an append-only history
- Scans and queries collections, reporting unreadable ones

Owns: WorkflowEngine, CollectionMetadata, collection ids, template rendering
Never: Runs document conversion (see rendering context)
"""

from markflow.contexts.collections.collection_id import (
    build_collection_id,
    generate_collection_id,
    sanitize_part,
)
from markflow.contexts.collections.engine import (
    Collection,
    CollectionScan,
    ScanFailure,
    WorkflowEngine,
)
from markflow.contexts.collections.metadata import (
    CollectionMetadata,
    StatusEntry,
    parse_metadata,
    serialize_metadata,
)

__all__ = [
    # Collection ids
    "generate_collection_id",
    "build_collection_id",
    "sanitize_part",
    # Engine
    "WorkflowEngine",
    "Collection",
    "CollectionScan",
    "ScanFailure",
    # Metadata
    "CollectionMetadata",
    "StatusEntry",
    "parse_metadata",
    "serialize_metadata",
]
