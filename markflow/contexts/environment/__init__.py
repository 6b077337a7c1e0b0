"""
Environment Context

Responsibilities:
- Abstracts persistent storage (real filesystem or in-memory)
- Provides workflow definitions, templates, static files and tool definitions
- Layers a project environment over the system environment

Owns: Storage adapters, environment lookups, workflow definition schema
Never: Decides collection lifecycle or runs external tools
"""

from markflow.contexts.environment.environment import (
    Environment,
    FilesystemEnvironment,
    MemoryEnvironment,
    MergedEnvironment,
    create_environment,
    load_yaml_text,
    merge_config_layers,
)
from markflow.contexts.environment.schemas import (
    EnvironmentManifest,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowStage,
    WorkflowTemplate,
)
from markflow.contexts.environment.storage import (
    LocalStorage,
    MemoryStorage,
    StorageAdapter,
    StorageEntry,
    StorageStat,
)

__all__ = [
    # Storage adapters
    "StorageAdapter",
    "LocalStorage",
    "MemoryStorage",
    "StorageEntry",
    "StorageStat",
    # Environments
    "Environment",
    "FilesystemEnvironment",
    "MemoryEnvironment",
    "MergedEnvironment",
    "create_environment",
    "load_yaml_text",
    "merge_config_layers",
    # Workflow definitions
    "EnvironmentManifest",
    "WorkflowAction",
    "WorkflowDefinition",
    "WorkflowStage",
    "WorkflowTemplate",
]
