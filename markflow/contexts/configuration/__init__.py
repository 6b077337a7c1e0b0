"""
Configuration Context

Responsibilities:
- Locates the project root and the system installation
- Merges built-in, system, project and override configuration layers
- Initializes new projects

Owns: ConfigDiscovery, ResolvedConfig, project layout
Never: Reads or writes collections
"""

from markflow.contexts.configuration.defaults import get_default_config
from markflow.contexts.configuration.discovery import (
    ConfigDiscovery,
    ConfigPaths,
    ProjectPaths,
    ResolvedConfig,
    get_project_paths,
)
from markflow.contexts.configuration.project_init import InitResult, initialize_project

__all__ = [
    "ConfigDiscovery",
    "ConfigPaths",
    "ProjectPaths",
    "ResolvedConfig",
    "get_default_config",
    "get_project_paths",
    "InitResult",
    "initialize_project",
]
