"""
Resource environments.

An environment is a root directory that provides workflow definitions,
templates, static files, configuration and tool definitions:

    config.yml
    workflows/<name>/workflow.yml
    workflows/<name>/templates/<template>/<variant>.md
    workflows/<name>/templates/static/<file>
    converters/<name>.yml
    processors/<name>.yml

Three variants share this interface:
- FilesystemEnvironment: a root on any storage adapter
- MemoryEnvironment: seeded from a dict, never touches real storage
- MergedEnvironment: project (local) layer over the system (global) layer
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from omegaconf import OmegaConf
from omegaconf.errors import OmegaConfBaseException

from markflow.contexts.environment.logger import (
    _log_debug,
    log_resource_resolved,
    log_skipped_definition,
)
from markflow.contexts.environment.schemas import EnvironmentManifest, WorkflowDefinition
from markflow.contexts.environment.storage import LocalStorage, MemoryStorage, StorageAdapter
from markflow.utils.exceptions import NotFoundError, ValidationError, WorkflowNotFoundError

CONFIG_FILENAME = "config.yml"
WORKFLOW_FILENAME = "workflow.yml"
DEFAULT_VARIANT = "default"
STATIC_DIRNAME = "static"


def _stringify_dates(value: Any) -> Any:
    """YAML timestamps become ISO strings (OmegaConf has no date node type)."""
    if isinstance(value, dict):
        return {key: _stringify_dates(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_stringify_dates(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def load_yaml_text(text: str, source: Any = "<string>") -> Dict[str, Any]:
    """
    Parse YAML text and validate it as an OmegaConf config, returning a plain dict.

    Raises:
        ValidationError: Invalid YAML or a non-mapping document
    """
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {source}: {e}") from e
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValidationError(f"Expected a mapping in {source}")

    try:
        return OmegaConf.to_container(OmegaConf.create(_stringify_dates(parsed)), resolve=True)
    except OmegaConfBaseException as e:
        raise ValidationError(f"Invalid configuration in {source}: {e}") from e


def merge_config_layers(*layers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge config dicts, later layers winning.

    Mappings merge key-by-key, scalars and lists are replaced wholesale.
    """
    present = [OmegaConf.create(layer) for layer in layers if layer]
    if not present:
        return {}
    return OmegaConf.to_container(OmegaConf.merge(*present), resolve=True)


class Environment(ABC):
    """Capability set shared by all environment variants."""

    @abstractmethod
    def get_manifest(self) -> EnvironmentManifest: ...

    @abstractmethod
    def list_workflows(self) -> List[str]: ...

    @abstractmethod
    def get_workflow(self, name: str) -> WorkflowDefinition: ...

    @abstractmethod
    def get_config(self) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def get_template(
        self, workflow: str, template: str, variant: Optional[str] = None, fallback: bool = True
    ) -> str: ...

    @abstractmethod
    def get_static(self, workflow: str, name: str) -> bytes: ...

    @abstractmethod
    def static_path(self, workflow: str, name: str) -> Optional[Path]: ...

    @abstractmethod
    def get_converter_definitions(self) -> Dict[str, Dict[str, Any]]: ...

    @abstractmethod
    def get_processor_definitions(self) -> Dict[str, Dict[str, Any]]: ...

    @abstractmethod
    def read_file(self, relative_path: str) -> bytes: ...

    @abstractmethod
    def write_file(self, relative_path: str, content: Union[str, bytes]) -> None: ...

    @abstractmethod
    def has_file(self, relative_path: str) -> bool: ...

    def has_workflow(self, name: str) -> bool:
        return name in self.list_workflows()


class FilesystemEnvironment(Environment):
    """Environment rooted at a directory on a storage adapter."""

    def __init__(self, root: Path, storage: Optional[StorageAdapter] = None):
        self.root = Path(root)
        self.storage = storage or LocalStorage()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.root})"

    def _workflow_dir(self, workflow: str) -> Path:
        return self.root / "workflows" / workflow

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        return load_yaml_text(self.storage.read_text(path), source=path)

    def list_workflows(self) -> List[str]:
        workflows_dir = self.root / "workflows"
        if not self.storage.is_dir(workflows_dir):
            return []
        return [
            entry.name
            for entry in self.storage.list(workflows_dir)
            if entry.is_directory and self.storage.is_file(workflows_dir / entry.name / WORKFLOW_FILENAME)
        ]

    def get_workflow(self, name: str) -> WorkflowDefinition:
        path = self._workflow_dir(name) / WORKFLOW_FILENAME
        if not self.storage.is_file(path):
            raise WorkflowNotFoundError(name)

        definition = WorkflowDefinition.from_dict(self._load_yaml(path), expected_name=name)
        if definition.name != name:
            raise ValidationError(
                f"Workflow directory '{name}' contains definition named '{definition.name}'"
            )
        return definition

    def get_config(self) -> Optional[Dict[str, Any]]:
        path = self.root / CONFIG_FILENAME
        if not self.storage.is_file(path):
            return None
        return self._load_yaml(path)

    def get_template(
        self, workflow: str, template: str, variant: Optional[str] = None, fallback: bool = True
    ) -> str:
        """
        Read a template, preferring the requested variant over default.md.

        Args:
            fallback: Fall back to default.md when the variant is missing

        Raises:
            NotFoundError: Neither the variant nor (if allowed) the default exists here
        """
        template_dir = self._workflow_dir(workflow) / "templates" / template
        candidates = []
        if variant and variant != DEFAULT_VARIANT:
            candidates.append(template_dir / f"{variant}.md")
        if fallback or not candidates:
            candidates.append(template_dir / f"{DEFAULT_VARIANT}.md")

        for candidate in candidates:
            if self.storage.is_file(candidate):
                return self.storage.read_text(candidate)
        raise NotFoundError(
            f"Template '{template}' not found for workflow '{workflow}'", path=template_dir
        )

    def list_templates(self, workflow: str) -> List[str]:
        templates_dir = self._workflow_dir(workflow) / "templates"
        if not self.storage.is_dir(templates_dir):
            return []
        return [
            entry.name
            for entry in self.storage.list(templates_dir)
            if entry.is_directory and entry.name != STATIC_DIRNAME
        ]

    def _static_file(self, workflow: str, name: str) -> Path:
        return self._workflow_dir(workflow) / "templates" / STATIC_DIRNAME / name

    def list_statics(self, workflow: str) -> List[str]:
        static_dir = self._workflow_dir(workflow) / "templates" / STATIC_DIRNAME
        if not self.storage.is_dir(static_dir):
            return []
        return [entry.name for entry in self.storage.list(static_dir) if entry.is_file]

    def get_static(self, workflow: str, name: str) -> bytes:
        return self.storage.read_bytes(self._static_file(workflow, name))

    def static_path(self, workflow: str, name: str) -> Optional[Path]:
        """Real filesystem path of a static file (for external tools), or None."""
        path = self._static_file(workflow, name)
        if isinstance(self.storage, LocalStorage) and self.storage.is_file(path):
            return path
        return None

    def _load_definitions(self, kind: str) -> Dict[str, Dict[str, Any]]:
        definitions_dir = self.root / f"{kind}s"
        if not self.storage.is_dir(definitions_dir):
            return {}

        definitions = {}
        for entry in self.storage.list(definitions_dir):
            if not entry.is_file or not entry.name.endswith((".yml", ".yaml")):
                continue
            path = definitions_dir / entry.name
            try:
                data = self._load_yaml(path)
            except ValidationError as e:
                log_skipped_definition(kind, path, e)
                continue
            name = data.get("name") or Path(entry.name).stem
            definitions[name] = {**data, "name": name}
        return definitions

    def get_converter_definitions(self) -> Dict[str, Dict[str, Any]]:
        return self._load_definitions("converter")

    def get_processor_definitions(self) -> Dict[str, Dict[str, Any]]:
        return self._load_definitions("processor")

    def read_file(self, relative_path: str) -> bytes:
        return self.storage.read_bytes(self.root / relative_path)

    def write_file(self, relative_path: str, content: Union[str, bytes]) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        self.storage.write_bytes(self.root / relative_path, content)

    def has_file(self, relative_path: str) -> bool:
        return self.storage.is_file(self.root / relative_path)

    def get_manifest(self) -> EnvironmentManifest:
        workflows = self.list_workflows()
        return EnvironmentManifest(
            workflows=workflows,
            converters=sorted(self.get_converter_definitions()),
            processors=sorted(self.get_processor_definitions()),
            templates={wf: self.list_templates(wf) for wf in workflows},
            statics={wf: self.list_statics(wf) for wf in workflows},
            has_config=self.storage.is_file(self.root / CONFIG_FILENAME),
        )


class MemoryEnvironment(FilesystemEnvironment):
    """
    Environment held entirely in memory.

    Example:
        env = MemoryEnvironment({
            "workflows/blog/workflow.yml": "workflow: {name: blog, stages: [draft]}",
            "workflows/blog/templates/post/default.md": "# {{ title }}",
        })
    """

    ROOT = Path("/memory")

    def __init__(self, files: Optional[Dict[str, Union[str, bytes]]] = None):
        storage = MemoryStorage({str(self.ROOT / path): content for path, content in (files or {}).items()})
        storage.mkdir(self.ROOT)
        super().__init__(self.ROOT, storage)


class MergedEnvironment(Environment):
    """
    Local environment layered over a global one.

    Reads try local first and fall through to global only when local reports
    the entity absent. Writes always go to local; global is never mutated.
    """

    def __init__(self, local: Environment, global_: Environment):
        self.local = local
        self.global_ = global_

    def __repr__(self) -> str:
        return f"MergedEnvironment(local={self.local!r}, global={self.global_!r})"

    def _first(self, kind: str, name: str, read):
        try:
            value = read(self.local)
        except NotFoundError:
            value = read(self.global_)
            log_resource_resolved(kind, name, "global")
            return value
        log_resource_resolved(kind, name, "local")
        return value

    def list_workflows(self) -> List[str]:
        return sorted(set(self.local.list_workflows()) | set(self.global_.list_workflows()))

    def get_workflow(self, name: str) -> WorkflowDefinition:
        return self._first("workflow", name, lambda env: env.get_workflow(name))

    def get_config(self) -> Optional[Dict[str, Any]]:
        local_config = self.local.get_config()
        global_config = self.global_.get_config()
        if local_config is None and global_config is None:
            return None
        return merge_config_layers(global_config, local_config)

    def get_template(
        self, workflow: str, template: str, variant: Optional[str] = None, fallback: bool = True
    ) -> str:
        # A variant in either layer beats a default in either layer
        if variant and variant != DEFAULT_VARIANT:
            try:
                return self._first(
                    "template",
                    f"{workflow}/{template}/{variant}",
                    lambda env: env.get_template(workflow, template, variant, fallback=False),
                )
            except NotFoundError:
                if not fallback:
                    raise
        return self._first(
            "template",
            f"{workflow}/{template}",
            lambda env: env.get_template(workflow, template, DEFAULT_VARIANT),
        )

    def get_static(self, workflow: str, name: str) -> bytes:
        return self._first("static", f"{workflow}/{name}", lambda env: env.get_static(workflow, name))

    def static_path(self, workflow: str, name: str) -> Optional[Path]:
        return self.local.static_path(workflow, name) or self.global_.static_path(workflow, name)

    def get_converter_definitions(self) -> Dict[str, Dict[str, Any]]:
        return {**self.global_.get_converter_definitions(), **self.local.get_converter_definitions()}

    def get_processor_definitions(self) -> Dict[str, Dict[str, Any]]:
        return {**self.global_.get_processor_definitions(), **self.local.get_processor_definitions()}

    def read_file(self, relative_path: str) -> bytes:
        return self._first("file", relative_path, lambda env: env.read_file(relative_path))

    def write_file(self, relative_path: str, content: Union[str, bytes]) -> None:
        self.local.write_file(relative_path, content)

    def has_file(self, relative_path: str) -> bool:
        return self.local.has_file(relative_path) or self.global_.has_file(relative_path)

    def get_resource_source(self, kind: str, name: str) -> str:
        """
        Report which layer serves a resource: "local", "global" or "none".

        Kinds: workflow, template ("<workflow>/<template>"), static
        ("<workflow>/<file>"), converter, processor, config, file.
        """
        for layer, source in ((self.local, "local"), (self.global_, "global")):
            if _layer_has(layer, kind, name):
                return source
        return "none"

    def get_manifest(self) -> EnvironmentManifest:
        local = self.local.get_manifest()
        global_ = self.global_.get_manifest()

        def union(a: Dict[str, List[str]], b: Dict[str, List[str]]) -> Dict[str, List[str]]:
            keys = set(a) | set(b)
            return {key: sorted(set(a.get(key, [])) | set(b.get(key, []))) for key in sorted(keys)}

        return EnvironmentManifest(
            workflows=sorted(set(local.workflows) | set(global_.workflows)),
            converters=sorted(set(local.converters) | set(global_.converters)),
            processors=sorted(set(local.processors) | set(global_.processors)),
            templates=union(local.templates, global_.templates),
            statics=union(local.statics, global_.statics),
            has_config=local.has_config or global_.has_config,
        )


def _layer_has(layer: Environment, kind: str, name: str) -> bool:
    try:
        if kind == "workflow":
            layer.get_workflow(name)
        elif kind == "template":
            workflow, template = name.split("/", 1)
            layer.get_template(workflow, template)
        elif kind == "static":
            workflow, filename = name.split("/", 1)
            layer.get_static(workflow, filename)
        elif kind == "converter":
            return name in layer.get_converter_definitions()
        elif kind == "processor":
            return name in layer.get_processor_definitions()
        elif kind == "config":
            return layer.get_config() is not None
        elif kind == "file":
            return layer.has_file(name)
        else:
            raise ValidationError(f"Unknown resource kind: {kind}")
    except NotFoundError:
        return False
    return True


def create_environment(
    project_root: Optional[Path],
    system_root: Path,
    storage: Optional[StorageAdapter] = None,
) -> Environment:
    """
    Build the standard environment: project `.markflow` over the system root.

    Outside a project the system environment is returned on its own.
    """
    storage = storage or LocalStorage()
    global_env = FilesystemEnvironment(system_root, storage)
    if project_root is None:
        _log_debug(f"No project root; using system environment at {system_root}")
        return global_env

    local_env = FilesystemEnvironment(Path(project_root) / ".markflow", storage)
    _log_debug(f"Merged environment: {local_env.root} over {system_root}")
    return MergedEnvironment(local=local_env, global_=global_env)
