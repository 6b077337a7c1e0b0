"""
Workflow/collection engine.

A collection is a directory of markdown documents plus a collection.yml
metadata file, stored at:

    <project_root>/<workflow>/<stage>/<collection_id>/

Moving a collection to another stage moves its directory. The engine owns
every lifecycle mutation (create, advance, update, add item, delete) and
records each one in the project's collection event log.

Usage:
    engine = WorkflowEngine.from_cwd()
    collection = engine.create("job", {"company": "Google Inc", "role": "Software Engineer"})
    engine.advance("job", collection.collection_id, "submitted")
"""

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Tuple

from markflow.contexts.collections.collection_id import build_collection_id
from markflow.contexts.collections.integrations import (
    DEFAULT_SCRAPE_FILENAME,
    git_commit,
    scrape_url,
)
from markflow.contexts.collections.logger import (
    _log_debug,
    _log_info,
    _log_warning,
    log_collection_created,
    log_scan_failures,
    log_status_transition,
)
from markflow.contexts.collections.metadata import (
    METADATA_FILENAME,
    REQUIRED_FIELDS,
    CollectionMetadata,
    parse_metadata,
    serialize_metadata,
)
from markflow.contexts.collections.templates import TemplateRegistry, build_template_context
from markflow.contexts.configuration.discovery import ConfigDiscovery, Overrides, ResolvedConfig
from markflow.contexts.environment.schemas import WorkflowDefinition
from markflow.contexts.environment.storage import LocalStorage, StorageAdapter
from markflow.utils.event_logging import (
    EVENTS_FILENAME,
    get_recent_events,
    log_collection_event,
    log_status_change,
)
from markflow.utils.exceptions import (
    CollectionNotFoundError,
    ConsistencyError,
    NotFoundError,
    OperationTimeoutError,
    ResourceLimitError,
    ValidationError,
)
from markflow.utils.execution import ExecutionLimiter
from markflow.utils.run_context import RunContext

EVENT_SOURCE = "engine"
DEFAULT_COMMIT_MESSAGE = "Add {{ workflow }} collection: {{ collection_id }}"


@dataclass
class Collection:
    """A collection as found on storage."""

    metadata: CollectionMetadata
    path: Path
    stage: str

    @property
    def collection_id(self) -> str:
        return self.metadata.collection_id

    @property
    def workflow(self) -> str:
        return self.metadata.workflow

    @property
    def status(self) -> str:
        return self.metadata.status


@dataclass
class ScanFailure:
    path: Path
    stage: str
    error: str


@dataclass
class CollectionScan:
    """Result of scanning a workflow: readable collections plus unreadable ones."""

    collections: List[Collection] = field(default_factory=list)
    failures: List[ScanFailure] = field(default_factory=list)


def _validate_filename(filename: str) -> str:
    """Reject names that would escape the collection directory."""
    name = str(filename).strip()
    parts = PurePosixPath(name.replace("\\", "/")).parts
    if not name or len(parts) != 1 or parts[0] in (".", ".."):
        raise ValidationError(f"Invalid file name: '{filename}'")
    return name


class WorkflowEngine:
    """
    Lifecycle operations on the collections of one project.

    Args:
        config: Resolved project configuration (environment included)
        storage: Storage adapter the project lives on
        context: Clock and id source (defaults to the config's testing overrides)
        limiter: Execution limiter shared with the conversion pipeline
    """

    def __init__(
        self,
        config: ResolvedConfig,
        storage: Optional[StorageAdapter] = None,
        context: Optional[RunContext] = None,
        limiter: Optional[ExecutionLimiter] = None,
    ):
        self.config = config
        self.storage = storage or LocalStorage()
        self.context = context or RunContext.from_config(config.settings)
        self.limiter = limiter or ExecutionLimiter.from_config(config.settings)
        self.environment = config.environment
        self.project_root = config.paths.project_root
        self.templates = TemplateRegistry(self.environment)
        self.events_file = config.project_paths.logs_dir / EVENTS_FILENAME
        self._workflows: Dict[str, WorkflowDefinition] = {}

    @classmethod
    def from_cwd(
        cls,
        cwd: Optional[Path] = None,
        storage: Optional[StorageAdapter] = None,
        overrides: Overrides = None,
    ) -> "WorkflowEngine":
        """Discover the project containing cwd and build an engine for it."""
        discovery = ConfigDiscovery(storage)
        config = discovery.resolve_configuration(cwd, overrides)
        return cls(config, discovery.storage)

    # Workflow lookup

    def get_workflow(self, name: str) -> WorkflowDefinition:
        """
        Load a workflow definition.

        Raises:
            ValidationError: Unknown workflow name (checked before any collection I/O)
        """
        if name not in self.config.available_workflows:
            raise ValidationError(
                f"Unknown workflow '{name}'. Available: {', '.join(self.config.available_workflows)}"
            )
        if name not in self._workflows:
            self._workflows[name] = self.environment.get_workflow(name)
        return self._workflows[name]

    def collection_path(self, workflow: str, stage: str, collection_id: str) -> Path:
        return self.project_root / workflow / stage / collection_id

    def collection_id_rules(self, workflow: str) -> Dict[str, Any]:
        definition = self.get_workflow(workflow)
        return self.config.collection_id_rules(workflow, definition.collection_id_max_length)

    # Storage helpers

    def _locate(self, definition: WorkflowDefinition, collection_id: str) -> List[Tuple[str, Path]]:
        return [
            (stage, path)
            for stage in definition.stage_names
            for path in [self.collection_path(definition.name, stage, collection_id)]
            if self.storage.is_dir(path)
        ]

    def _find(self, definition: WorkflowDefinition, collection_id: str) -> Optional[Tuple[str, Path]]:
        """
        Find the single stage holding a collection.

        Raises:
            ConsistencyError: The id exists in more than one stage
        """
        locations = self._locate(definition, collection_id)
        if len(locations) > 1:
            stages = ", ".join(stage for stage, _ in locations)
            raise ConsistencyError(
                f"Collection '{collection_id}' exists in multiple stages of '{definition.name}': {stages}"
            )
        return locations[0] if locations else None

    def _require(self, definition: WorkflowDefinition, collection_id: str) -> Tuple[str, Path]:
        located = self._find(definition, collection_id)
        if located is None:
            raise CollectionNotFoundError(definition.name, collection_id)
        return located

    def _read_metadata(self, definition: WorkflowDefinition, stage: str, path: Path) -> CollectionMetadata:
        """
        Load collection.yml and check it against the directory it lives in.

        Raises:
            NotFoundError: collection.yml is missing
            ValidationError: Unreadable metadata, or workflow, id or status
                disagreeing with the location
        """
        metadata_file = path / METADATA_FILENAME
        metadata = parse_metadata(self.storage.read_bytes(metadata_file), source=metadata_file)

        if metadata.workflow != definition.name:
            raise ValidationError(
                f"{metadata_file} names workflow '{metadata.workflow}', expected '{definition.name}'"
            )
        if metadata.collection_id != path.name:
            raise ValidationError(
                f"{metadata_file} names collection '{metadata.collection_id}', expected '{path.name}'"
            )
        if metadata.status not in definition.stage_names:
            raise ValidationError(f"{metadata_file} has unknown status '{metadata.status}'")
        if metadata.status != stage:
            raise ValidationError(
                f"{metadata_file} has status '{metadata.status}' but sits in stage '{stage}'"
            )
        return metadata

    def _write_metadata(self, path: Path, metadata: CollectionMetadata) -> None:
        self.storage.write_text(path / METADATA_FILENAME, serialize_metadata(metadata))

    def record_event(self, event_type: str, workflow: str, collection_id: str, **extra) -> None:
        log_collection_event(
            self.storage,
            self.events_file,
            event_type=event_type,
            workflow=workflow,
            collection_id=collection_id,
            source=EVENT_SOURCE,
            timestamp=self.context.now(),
            **extra,
        )

    def _render_output_name(self, pattern: str, context: Mapping[str, Any]) -> str:
        return _validate_filename(self.templates.render_string(pattern, context))

    def _render_templates(
        self,
        definition: WorkflowDefinition,
        template_names: List[str],
        context: Mapping[str, Any],
        path: Path,
        variant: Optional[str] = None,
    ) -> List[str]:
        written = []
        for name in template_names:
            template = definition.get_template(name)
            try:
                content = self.templates.render(definition.name, name, context, variant)
            except NotFoundError:
                _log_warning(f"Template '{name}' not found for workflow '{definition.name}', skipping")
                continue
            output_name = self._render_output_name(template.output, context)
            self.storage.write_text(path / output_name, content)
            written.append(output_name)
        return written

    def _resolve_variant(self, definition: WorkflowDefinition, variant: Optional[str]) -> Optional[str]:
        """Pick the template variant and check it against the create action's options."""
        create = definition.get_action("create")
        parameter = None
        if create:
            parameter = next((p for p in create.parameters if p.name == "template_variant"), None)

        if variant is None:
            settings = self.config.workflow_settings(definition.name).get("templates") or {}
            for template_settings in settings.values():
                if isinstance(template_settings, dict) and template_settings.get("default_template"):
                    variant = template_settings["default_template"]
                    break
        if variant is None and parameter is not None:
            variant = parameter.default

        if variant and parameter is not None and parameter.options and variant not in parameter.options:
            raise ValidationError(
                f"Unknown template variant '{variant}'. Available: {', '.join(parameter.options)}"
            )
        return variant

    # Lifecycle operations

    def create(
        self,
        workflow: str,
        fields: Mapping[str, Any],
        *,
        template_variant: Optional[str] = None,
        url: Optional[str] = None,
        force: bool = False,
    ) -> Collection:
        """
        Create a collection in the workflow's first stage.

        Args:
            workflow: Workflow name
            fields: Identifying and optional fields (e.g. company, role)
            template_variant: Template variant (falls back to default.md)
            url: Page to archive into the collection
            force: Replace an existing collection with the same id

        Raises:
            ValidationError: Unknown workflow, missing fields, or id already exists
        """
        definition = self.get_workflow(workflow)
        fields = {key: value for key, value in fields.items() if value is not None}
        if url:
            fields["url"] = url
        reserved = [key for key in fields if key in REQUIRED_FIELDS]
        if reserved:
            raise ValidationError(f"Reserved field names: {', '.join(reserved)}")

        variant = self._resolve_variant(definition, template_variant)
        now = self.context.now()
        collection_id = build_collection_id(
            definition.collection_id_fields, fields, now, self.collection_id_rules(definition.name)
        )

        existing = self._locate(definition, collection_id)
        if existing and not force:
            raise ValidationError(
                f"Collection '{collection_id}' already exists in stage '{existing[0][0]}'. "
                "Use --force to recreate it."
            )
        for stage, old_path in existing:
            _log_info(f"Removing existing collection {collection_id} from {stage} (--force)")
            self.storage.delete(old_path)

        stage = definition.initial_stage
        path = self.collection_path(workflow, stage, collection_id)
        metadata = CollectionMetadata.new(collection_id, workflow, stage, now, extra=fields)

        self.storage.mkdir(path)
        self._write_metadata(path, metadata)

        context = build_template_context(self.config.user, fields, now, collection_id, workflow)
        rendered = self._render_templates(definition, definition.create_templates, context, path, variant)

        if url:
            self._scrape(definition, url, path)

        log_collection_created(workflow, collection_id, path, rendered)
        self.record_event("created", workflow, collection_id, status=stage, files=rendered)
        self._auto_commit(workflow, collection_id, path)

        return Collection(metadata=metadata, path=path, stage=stage)

    def _scrape(self, definition: WorkflowDefinition, url: str, path: Path) -> None:
        output_file = DEFAULT_SCRAPE_FILENAME
        scrape_action = definition.get_action("scrape")
        if scrape_action:
            parameter = next((p for p in scrape_action.parameters if p.name == "output_file"), None)
            if parameter is not None and parameter.default:
                output_file = parameter.default

        settings = self.config.get("system", {})
        timeout = int((settings.get("web_download") or {}).get("timeout") or 30) + 10
        process_id = self.context.next_id("scrape")
        try:
            with self.limiter.slot(
                process_id, caller=EVENT_SOURCE, timeout=timeout, kind="scrape"
            ) as deadline:
                scrape_url(
                    url, path, self.storage, settings, output_file=output_file, deadline=deadline
                )
        except (ResourceLimitError, OperationTimeoutError) as e:
            _log_warning(f"Skipped archiving {url}: {e.message}")

    def _auto_commit(self, workflow: str, collection_id: str, path: Path) -> None:
        if not self.config.get("system.git.auto_commit", False):
            return
        if not isinstance(self.storage, LocalStorage):
            _log_debug("Auto-commit skipped: project is not on the local filesystem")
            return

        template = self.config.get("system.git.commit_message_template") or DEFAULT_COMMIT_MESSAGE
        message = self.templates.render_string(
            template, {"workflow": workflow, "collection_id": collection_id}
        )
        result = git_commit(self.project_root, [path], message)
        if result.success:
            _log_info(f"Committed: {message}")
        else:
            _log_warning(f"Auto-commit failed: {result.error}")

    def advance(
        self, workflow: str, collection_id: str, target: str, *, force: bool = False
    ) -> Collection:
        """
        Move a collection to another stage.

        Moving to an earlier stage requires force. Re-entering the current
        stage appends a history entry without moving the directory.

        Raises:
            ValidationError: Unknown stage, or backwards move without force
            CollectionNotFoundError: No such collection
            ConsistencyError: The id exists in more than one stage
        """
        definition = self.get_workflow(workflow)
        target_index = definition.stage_index(target)
        current_stage, path = self._require(definition, collection_id)
        current_index = definition.stage_index(current_stage)

        if target_index < current_index and not force:
            raise ValidationError(
                f"Cannot move '{collection_id}' back from '{current_stage}' to '{target}'. "
                "Use --force to override."
            )

        metadata = self._read_metadata(definition, current_stage, path)
        old_status = metadata.status
        metadata.append_status(target, self.context.now())

        moved = target != current_stage
        if moved:
            new_path = self.collection_path(workflow, target, collection_id)
            self.storage.rename(path, new_path)
            path = new_path

        self._write_metadata(path, metadata)
        log_status_transition(collection_id, old_status, target, moved)
        log_status_change(
            self.storage,
            self.events_file,
            workflow=workflow,
            collection_id=collection_id,
            old_status=old_status,
            new_status=target,
            source=EVENT_SOURCE,
            timestamp=self.context.now(),
            forced=force,
        )
        return Collection(metadata=metadata, path=path, stage=target)

    def update_collection(
        self, workflow: str, collection_id: str, updates: Mapping[str, Any]
    ) -> Collection:
        """
        Update workflow-specific fields (status and dates are engine-managed).

        Raises:
            ValidationError: An update targets a required field
        """
        definition = self.get_workflow(workflow)
        protected = [key for key in updates if key in REQUIRED_FIELDS]
        if protected:
            raise ValidationError(f"Cannot update managed fields: {', '.join(protected)}")

        stage, path = self._require(definition, collection_id)
        metadata = self._read_metadata(definition, stage, path)
        metadata.extra.update(updates)
        metadata.touch(self.context.now())
        self._write_metadata(path, metadata)
        self.record_event("updated", workflow, collection_id, fields=sorted(updates))
        return Collection(metadata=metadata, path=path, stage=stage)

    def write_content(
        self, workflow: str, collection_id: str, filename: str, content: str
    ) -> Path:
        """Write a document into a collection and bump its modification date."""
        definition = self.get_workflow(workflow)
        name = _validate_filename(filename)
        if name == METADATA_FILENAME:
            raise ValidationError(f"Use update_collection to change {METADATA_FILENAME}")

        stage, path = self._require(definition, collection_id)
        metadata = self._read_metadata(definition, stage, path)
        self.storage.write_text(path / name, content)
        metadata.touch(self.context.now())
        self._write_metadata(path, metadata)
        self.record_event("content_updated", workflow, collection_id, file=name)
        return path / name

    def add_item(
        self,
        workflow: str,
        collection_id: str,
        template: str,
        prefix: Optional[str] = None,
    ) -> Path:
        """
        Render an extra template (e.g. interview notes) into a collection.

        Raises:
            ValidationError: Template not defined or target file already exists
        """
        definition = self.get_workflow(workflow)
        template_def = definition.get_template(template)
        stage, path = self._require(definition, collection_id)
        metadata = self._read_metadata(definition, stage, path)
        now = self.context.now()

        context = build_template_context(
            self.config.user, {**metadata.extra, "prefix": prefix}, now, collection_id, workflow
        )
        output_name = self._render_output_name(template_def.output, context)
        target = path / output_name
        if self.storage.exists(target):
            raise ValidationError(f"File already exists in collection: {output_name}")

        try:
            content = self.templates.render(workflow, template, context)
        except NotFoundError as e:
            raise ValidationError(f"Template file for '{template}' is missing") from e

        self.storage.write_text(target, content)
        metadata.touch(now)
        self._write_metadata(path, metadata)
        self.record_event("item_added", workflow, collection_id, template=template, file=output_name)
        _log_info(f"Added {output_name} to {collection_id}")
        return target

    def delete_collection(self, workflow: str, collection_id: str) -> None:
        """Remove a collection and everything in it."""
        definition = self.get_workflow(workflow)
        stage, path = self._require(definition, collection_id)
        self.storage.delete(path)
        self.record_event("deleted", workflow, collection_id, status=stage)
        _log_info(f"Deleted {workflow} collection {collection_id} from {stage}")

    # Queries

    def scan_collections(self, workflow: str) -> CollectionScan:
        """
        Read every collection of a workflow, stage by stage.

        Unreadable collection.yml files are reported in failures, not raised.

        Raises:
            ConsistencyError: The same id exists in two stages
        """
        definition = self.get_workflow(workflow)
        scan = CollectionScan()
        seen: Dict[str, str] = {}

        for stage in definition.stage_names:
            stage_dir = self.project_root / workflow / stage
            if not self.storage.is_dir(stage_dir):
                continue
            for entry in self.storage.list(stage_dir):
                if not entry.is_directory:
                    continue
                collection_id = entry.name
                if collection_id in seen:
                    raise ConsistencyError(
                        f"Collection '{collection_id}' exists in both "
                        f"'{seen[collection_id]}' and '{stage}'"
                    )
                seen[collection_id] = stage

                path = stage_dir / collection_id
                try:
                    metadata = self._read_metadata(definition, stage, path)
                except (NotFoundError, ValidationError) as e:
                    scan.failures.append(ScanFailure(path=path, stage=stage, error=e.message))
                    continue
                scan.collections.append(Collection(metadata=metadata, path=path, stage=stage))

        log_scan_failures(workflow, scan.failures)
        return scan

    def get_collections(self, workflow: str) -> List[Collection]:
        return self.scan_collections(workflow).collections

    def get_collection(self, workflow: str, collection_id: str) -> Collection:
        """
        Raises:
            CollectionNotFoundError: No such collection
            ConsistencyError: The id exists in more than one stage
        """
        definition = self.get_workflow(workflow)
        stage, path = self._require(definition, collection_id)
        return Collection(metadata=self._read_metadata(definition, stage, path), path=path, stage=stage)

    def get_recent_events(
        self,
        n: int = 10,
        workflow: Optional[str] = None,
        collection_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[dict]:
        return get_recent_events(
            self.storage,
            self.events_file,
            n=n,
            workflow=workflow,
            collection_id=collection_id,
            event_type=event_type,
        )
