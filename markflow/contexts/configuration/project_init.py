"""
Project initialization.

Creates the `.markflow` directory of a new project:

    .markflow/
        config.yml                  # user details and system overrides
        workflows/<workflow>/       # per-workflow template overrides
            README.md
            templates/
        logs/
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import yaml

from markflow.contexts.configuration.defaults import DEFAULT_SYSTEM, DEFAULT_USER
from markflow.contexts.configuration.discovery import ConfigDiscovery, get_project_paths
from markflow.contexts.configuration.logger import _log_info, _log_success
from markflow.utils.exceptions import ValidationError

CONFIG_HEADER = """\
# markflow configuration
#
# Values here override the system configuration. Mappings merge key by key;
# lists and scalars replace the system value entirely.
"""

WORKFLOW_README = """\
# {title} Workflow Customization

This directory can contain customizations for the {workflow} workflow.

## Structure
- `workflow.yml` - Override the workflow definition
- `templates/<template>/<variant>.md` - Custom templates (override system templates)
- `templates/static/` - Reference documents (e.g. DOCX styles) used when formatting

## Template Resolution
Templates are resolved in this order:
1. `templates/` in this directory (highest priority)
2. System templates from the markflow installation

A missing variant falls back to `default.md`.
"""


@dataclass
class InitResult:
    project_root: Path
    config_file: Path
    workflows: List[str]


def default_project_config(workflows: List[str]) -> dict:
    """Skeleton written to a new project's config.yml."""
    return {
        "user": dict(DEFAULT_USER),
        "system": {
            "scraper": DEFAULT_SYSTEM["scraper"],
            "output_formats": list(DEFAULT_SYSTEM["output_formats"]),
            "git": dict(DEFAULT_SYSTEM["git"]),
            "collection_id": dict(DEFAULT_SYSTEM["collection_id"]),
        },
        "workflows": {workflow: {"custom_fields": []} for workflow in workflows},
    }


def initialize_project(
    cwd: Path,
    workflows: Optional[List[str]] = None,
    force: bool = False,
    discovery: Optional[ConfigDiscovery] = None,
) -> InitResult:
    """
    Initialize a markflow project in cwd.

    Args:
        cwd: Directory that becomes the project root
        workflows: Workflows to set up (defaults to all system workflows)
        force: Re-initialize even when cwd is already inside a project
        discovery: Discovery instance (its storage receives all writes)

    Raises:
        ValidationError: Already in a project without force, or unknown workflow names
        SystemNotFoundError: No system installation found
    """
    discovery = discovery or ConfigDiscovery()
    storage = discovery.storage
    cwd = Path(cwd)

    existing = discovery.find_project_root(cwd)
    if existing is not None and not force:
        raise ValidationError(
            f"Already in a markflow project ({existing}). Use --force to reinitialize."
        )

    _, available = discovery.discover_system_configuration()
    selected = list(workflows) if workflows else available
    unknown = [w for w in selected if w not in available]
    if unknown:
        raise ValidationError(
            f"Unknown workflows: {', '.join(unknown)}. Available: {', '.join(available)}"
        )

    _log_info(f"Initializing markflow project at {cwd}")
    _log_info(f"Workflows: {', '.join(selected)}")

    paths = get_project_paths(cwd)
    storage.mkdir(paths.project_dir)
    storage.mkdir(paths.workflows_dir)
    storage.mkdir(paths.logs_dir)

    config_text = CONFIG_HEADER + "\n" + yaml.safe_dump(
        default_project_config(selected), sort_keys=False, default_flow_style=False
    )
    storage.write_text(paths.config_file, config_text)

    for workflow in selected:
        workflow_dir = paths.workflows_dir / workflow
        storage.mkdir(workflow_dir / "templates")
        storage.write_text(
            workflow_dir / "README.md",
            WORKFLOW_README.format(title=workflow.capitalize(), workflow=workflow),
        )

    _log_success(f"Project initialized in {paths.project_dir}")
    return InitResult(project_root=cwd, config_file=paths.config_file, workflows=selected)
