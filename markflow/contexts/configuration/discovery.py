"""
Project and system discovery plus layered configuration.

Discovery walks upward from a start directory:
- project root: nearest ancestor containing the `.markflow` directory
- system root: nearest ancestor containing a `package.yml` named `markflow`
  and a `workflows/` directory

Configuration layers, lowest to highest:
    built-in defaults < system config.yml < project .markflow/config.yml < overrides

Merging follows OmegaConf semantics: mappings merge key-by-key, scalars and
lists are replaced wholesale by the highest layer that sets them. The merged
settings are read-only; callers re-resolve instead of mutating.

Examples:
    >>> discovery = ConfigDiscovery()
    >>> config = discovery.resolve_configuration(Path.cwd())
    >>> config.get("system.collection_id.max_length")
    50
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from omegaconf.errors import OmegaConfBaseException

from markflow.contexts.configuration.defaults import get_default_config
from markflow.contexts.configuration.logger import _log_debug, log_layers_loaded
from markflow.contexts.environment.environment import Environment, create_environment, load_yaml_text
from markflow.contexts.environment.storage import LocalStorage, StorageAdapter
from markflow.utils.exceptions import (
    NotFoundError,
    ProjectNotFoundError,
    SystemNotFoundError,
    ValidationError,
)

load_dotenv()

PROJECT_MARKER = ".markflow"
CONFIG_FILENAME = "config.yml"
PACKAGE_FILENAME = "package.yml"
SYSTEM_PACKAGE_NAME = "markflow"

# Bundled system installation shipped inside the package
BUNDLED_SYSTEM_ROOT = Path(__file__).resolve().parents[2] / "system"

Overrides = Union[Mapping[str, Any], Sequence[str], None]


@dataclass(frozen=True)
class ConfigPaths:
    system_root: Path
    project_root: Path
    project_config: Path


@dataclass(frozen=True)
class ProjectPaths:
    """
    Standard locations inside a project.

    Collections live directly under the project root:
    <project_root>/<workflow>/<stage>/<collection_id>/
    """

    project_dir: Path
    config_file: Path
    workflows_dir: Path
    collections_dir: Path
    logs_dir: Path


@dataclass
class ResolvedConfig:
    """
    Fully resolved configuration for one project.

    Attributes:
        paths: Discovered system/project locations
        settings: Read-only merged settings (user, system, workflows)
        available_workflows: Workflows the environment provides (local and system)
        environment: Project environment layered over the system environment
    """

    paths: ConfigPaths
    settings: DictConfig
    available_workflows: List[str]
    environment: Environment

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Look up a dotted key (e.g. 'system.git.auto_commit'), returning plain containers."""
        value = OmegaConf.select(self.settings, dotted_key, default=default)
        if OmegaConf.is_config(value):
            return OmegaConf.to_container(value, resolve=True)
        return value

    @property
    def user(self) -> Dict[str, Any]:
        return self.get("user", {})

    @property
    def project_paths(self) -> ProjectPaths:
        return get_project_paths(self.paths.project_root)

    def workflow_settings(self, workflow: str) -> Dict[str, Any]:
        return self.get(f"workflows.{workflow}", {}) or {}

    def collection_id_rules(self, workflow: str, definition_max_length: Optional[int] = None) -> Dict[str, Any]:
        """
        Collection-id rules for a workflow.

        Precedence: system rules < max_length from workflow.yml < project
        `workflows.<name>.collection_id` settings.
        """
        rules = dict(self.get("system.collection_id", {}) or {})
        if definition_max_length:
            rules["max_length"] = definition_max_length
        rules.update(self.get(f"workflows.{workflow}.collection_id", {}) or {})
        return rules

    def as_dict(self) -> Dict[str, Any]:
        return OmegaConf.to_container(self.settings, resolve=True)


def get_project_paths(project_root: Path) -> ProjectPaths:
    """Build standard paths within a project directory."""
    project_dir = Path(project_root) / PROJECT_MARKER
    return ProjectPaths(
        project_dir=project_dir,
        config_file=project_dir / CONFIG_FILENAME,
        workflows_dir=project_dir / "workflows",
        collections_dir=Path(project_root),
        logs_dir=project_dir / "logs",
    )


def _overrides_to_config(overrides: Overrides) -> Optional[DictConfig]:
    if not overrides:
        return None
    try:
        if isinstance(overrides, Mapping):
            return OmegaConf.create(dict(overrides))
        return OmegaConf.from_dotlist(list(overrides))
    except OmegaConfBaseException as e:
        raise ValidationError(f"Invalid configuration override: {e}") from e


class ConfigDiscovery:
    """Finds project/system roots and resolves layered configuration."""

    def __init__(self, storage: Optional[StorageAdapter] = None):
        self.storage = storage or LocalStorage()

    def _search_upward(self, start: Path, matcher: Callable[[Path], bool]) -> Optional[Path]:
        """Return the nearest ancestor of start (inclusive) accepted by matcher."""
        current = Path(os.path.abspath(start))
        for candidate in (current, *current.parents):
            if matcher(candidate):
                return candidate
        return None

    def _is_project_root(self, path: Path) -> bool:
        return self.storage.is_dir(path / PROJECT_MARKER)

    def _is_system_root(self, path: Path) -> bool:
        package_file = path / PACKAGE_FILENAME
        if not self.storage.is_file(package_file) or not self.storage.is_dir(path / "workflows"):
            return False
        try:
            package = load_yaml_text(self.storage.read_text(package_file), source=package_file)
        except ValidationError:
            return False
        return package.get("name") == SYSTEM_PACKAGE_NAME

    def find_project_root(self, start: Optional[Path] = None) -> Optional[Path]:
        return self._search_upward(start or Path.cwd(), self._is_project_root)

    def find_system_root(self, start: Optional[Path] = None) -> Optional[Path]:
        """
        Locate the system installation.

        The search starts at `start`, else MARKFLOW_SYSTEM_ROOT, else the
        bundled system directory.
        """
        if start is None:
            start = Path(os.getenv("MARKFLOW_SYSTEM_ROOT") or BUNDLED_SYSTEM_ROOT)
        return self._search_upward(start, self._is_system_root)

    def is_in_project(self, cwd: Optional[Path] = None) -> bool:
        return self.find_project_root(cwd) is not None

    def require_project_root(self, cwd: Optional[Path] = None) -> Path:
        project_root = self.find_project_root(cwd)
        if project_root is None:
            raise ProjectNotFoundError(
                "Not in a markflow project. Run 'wf init' to initialize a project.",
                path=cwd,
            )
        return project_root

    def require_system_root(self, start: Optional[Path] = None) -> Path:
        system_root = self.find_system_root(start)
        if system_root is None:
            raise SystemNotFoundError("System root not found. Ensure markflow is installed.")
        return system_root

    def get_available_workflows(self, system_root: Path) -> List[str]:
        """Workflow directories of a system installation."""
        workflows_dir = Path(system_root) / "workflows"
        try:
            entries = self.storage.list(workflows_dir)
        except NotFoundError:
            return []
        return [entry.name for entry in entries if entry.is_directory]

    def discover_configuration(self, cwd: Optional[Path] = None) -> ConfigPaths:
        """
        Discover system and project locations for the current context.

        Raises:
            SystemNotFoundError: No system installation found
            ProjectNotFoundError: cwd is not inside a project
        """
        system_root = self.require_system_root()
        project_root = self.require_project_root(cwd)
        return ConfigPaths(
            system_root=system_root,
            project_root=project_root,
            project_config=get_project_paths(project_root).config_file,
        )

    def discover_system_configuration(self) -> Tuple[Path, List[str]]:
        """System root and its workflows, without requiring a project (used by init)."""
        system_root = self.require_system_root()
        return system_root, self.get_available_workflows(system_root)

    def get_project_paths(self, project_root: Path) -> ProjectPaths:
        return get_project_paths(project_root)

    def _load_config_file(self, path: Path) -> Optional[Dict[str, Any]]:
        if not self.storage.is_file(path):
            return None
        return load_yaml_text(self.storage.read_text(path), source=path)

    def resolve_configuration(
        self, cwd: Optional[Path] = None, overrides: Overrides = None
    ) -> ResolvedConfig:
        """
        Resolve the complete configuration for a project.

        Args:
            cwd: Directory inside the project (defaults to the process cwd)
            overrides: Highest-priority layer, a mapping or 'a.b=c' dotlist

        Raises:
            ProjectNotFoundError / SystemNotFoundError: Discovery failed
            ValidationError: A config file is malformed
        """
        paths = self.discover_configuration(cwd)

        layers = [OmegaConf.create(get_default_config())]
        names = ["defaults"]

        system_config = self._load_config_file(paths.system_root / CONFIG_FILENAME)
        if system_config:
            layers.append(OmegaConf.create(system_config))
            names.append("system")

        project_config = self._load_config_file(paths.project_config)
        if project_config:
            layers.append(OmegaConf.create(project_config))
            names.append("project")

        override_config = _overrides_to_config(overrides)
        if override_config is not None:
            layers.append(override_config)
            names.append("overrides")

        try:
            settings = OmegaConf.merge(*layers)
        except OmegaConfBaseException as e:
            raise ValidationError(f"Configuration layers could not be merged: {e}") from e
        OmegaConf.set_readonly(settings, True)
        log_layers_loaded(names)

        environment = create_environment(paths.project_root, paths.system_root, self.storage)
        available = environment.list_workflows()
        _log_debug(f"Available workflows: {', '.join(available) or '(none)'}")

        return ResolvedConfig(
            paths=paths,
            settings=settings,
            available_workflows=available,
            environment=environment,
        )
