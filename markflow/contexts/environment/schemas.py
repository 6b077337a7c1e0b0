"""
Workflow definition data structures.

Parsed from workflows/<name>/workflow.yml (loaded with OmegaConf and converted
to plain containers before reaching from_dict). All structural problems are
reported as ValidationError with the offending workflow named.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from markflow.utils.exceptions import ValidationError


@dataclass
class WorkflowStage:
    name: str
    description: str = ""
    color: str = ""
    next: List[str] = field(default_factory=list)
    terminal: bool = False


@dataclass
class WorkflowTemplate:
    """A template file rendered into a collection (output name is itself a template)."""

    name: str
    output: str
    file: str = ""
    description: str = ""


@dataclass
class WorkflowStatic:
    """A file copied verbatim or used as a reference document (e.g. DOCX styles)."""

    name: str
    file: str
    description: str = ""


@dataclass
class ActionParameter:
    name: str
    type: str = "string"
    required: bool = False
    default: Any = None
    options: List[str] = field(default_factory=list)
    description: str = ""


@dataclass
class WorkflowAction:
    name: str
    description: str = ""
    usage: str = ""
    templates: List[str] = field(default_factory=list)
    converter: Optional[str] = None
    formats: List[str] = field(default_factory=list)
    parameters: List[ActionParameter] = field(default_factory=list)
    metadata_file: str = "collection.yml"


@dataclass
class WorkflowDefinition:
    """
    A workflow: ordered stages plus the templates, statics and actions that
    operate on its collections.

    Attributes:
        name: Workflow identifier (matches its directory name)
        stages: Ordered lifecycle stages; the first is the initial stage
        collection_id_fields: Identifying fields, in order, used to build ids
        collection_id_max_length: Per-workflow id length override (None = system rule)
        processors: Processors enabled by default when formatting
    """

    name: str
    stages: List[WorkflowStage]
    description: str = ""
    version: str = "1.0.0"
    templates: List[WorkflowTemplate] = field(default_factory=list)
    statics: List[WorkflowStatic] = field(default_factory=list)
    actions: List[WorkflowAction] = field(default_factory=list)
    processors: List[str] = field(default_factory=list)
    collection_id_fields: List[str] = field(default_factory=list)
    collection_id_max_length: Optional[int] = None

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    @property
    def initial_stage(self) -> str:
        return self.stages[0].name

    def has_stage(self, name: str) -> bool:
        return name in self.stage_names

    def stage_index(self, name: str) -> int:
        """Position of a stage in lifecycle order."""
        if not self.has_stage(name):
            raise ValidationError(
                f"Invalid stage '{name}' for workflow '{self.name}'. "
                f"Valid stages: {', '.join(self.stage_names)}"
            )
        return self.stage_names.index(name)

    def get_action(self, name: str) -> Optional[WorkflowAction]:
        return next((action for action in self.actions if action.name == name), None)

    def get_template(self, name: str) -> WorkflowTemplate:
        for template in self.templates:
            if template.name == name:
                return template
        raise ValidationError(
            f"Template '{name}' not defined in workflow '{self.name}'. "
            f"Available: {', '.join(t.name for t in self.templates)}"
        )

    def get_static(self, name: str) -> Optional[WorkflowStatic]:
        return next((static for static in self.statics if static.name == name), None)

    @property
    def create_templates(self) -> List[str]:
        action = self.get_action("create")
        return list(action.templates) if action else []

    @property
    def format_converter(self) -> Optional[str]:
        action = self.get_action("format")
        return action.converter if action else None

    @property
    def formats(self) -> List[str]:
        action = self.get_action("format")
        return list(action.formats) if action else []

    @classmethod
    def from_dict(cls, data: Dict[str, Any], expected_name: Optional[str] = None) -> "WorkflowDefinition":
        """
        Build a definition from parsed workflow.yml content.

        Accepts either a document with a top-level `workflow:` key or the
        workflow mapping itself.

        Raises:
            ValidationError: Missing name/stages or malformed entries
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Workflow definition must be a mapping: {expected_name}")
        body = data.get("workflow", data)
        if not isinstance(body, dict):
            raise ValidationError(f"Workflow definition must be a mapping: {expected_name}")

        name = body.get("name") or expected_name
        if not name:
            raise ValidationError("Workflow definition is missing 'name'")

        raw_stages = body.get("stages") or []
        if not raw_stages:
            raise ValidationError(f"Workflow '{name}' defines no stages")

        try:
            stages = [
                WorkflowStage(name=s, description="") if isinstance(s, str) else WorkflowStage(**s)
                for s in raw_stages
            ]
            templates = [WorkflowTemplate(**t) for t in body.get("templates") or []]
            statics = [WorkflowStatic(**s) for s in body.get("statics") or []]
            actions = [
                WorkflowAction(
                    **{
                        **a,
                        "parameters": [ActionParameter(**p) for p in a.get("parameters") or []],
                    }
                )
                for a in body.get("actions") or []
            ]
        except TypeError as e:
            raise ValidationError(f"Malformed workflow definition '{name}': {e}") from e

        stage_names = [stage.name for stage in stages]
        if len(set(stage_names)) != len(stage_names):
            raise ValidationError(f"Workflow '{name}' has duplicate stage names")

        collection_id = body.get("collection_id") or {}
        fields = collection_id.get("fields")
        if fields is None:
            # Fall back to the required string parameters of the create action
            create = next((a for a in actions if a.name == "create"), None)
            fields = [
                p.name for p in (create.parameters if create else []) if p.required and p.type == "string"
            ]

        return cls(
            name=name,
            description=body.get("description", ""),
            version=str(body.get("version", "1.0.0")),
            stages=stages,
            templates=templates,
            statics=statics,
            actions=actions,
            processors=_enabled_processors(body.get("processors") or []),
            collection_id_fields=list(fields),
            collection_id_max_length=collection_id.get("max_length"),
        )


def _enabled_processors(raw: List[Any]) -> List[str]:
    """Accept `[mermaid]` or `[{name: mermaid, enabled: true}]` forms."""
    names = []
    for entry in raw:
        if isinstance(entry, str):
            names.append(entry)
        elif isinstance(entry, dict) and entry.get("enabled", True) and entry.get("name"):
            names.append(entry["name"])
    return names


@dataclass
class EnvironmentManifest:
    """Inventory of what an environment provides."""

    workflows: List[str] = field(default_factory=list)
    converters: List[str] = field(default_factory=list)
    processors: List[str] = field(default_factory=list)
    templates: Dict[str, List[str]] = field(default_factory=dict)
    statics: Dict[str, List[str]] = field(default_factory=dict)
    has_config: bool = False
