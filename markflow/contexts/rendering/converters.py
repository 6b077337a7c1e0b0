"""
Converter and processor registry.

Converters are records (ConverterSpec), not a class hierarchy: a built-in
converter and one declared in converters/<name>.yml differ only in whether
they carry the optional prepare/before_cleanup hooks.

Built-ins:
- pandoc: markdown to docx/html/pdf/... with an optional reference document
- presentation: pandoc plus mermaid diagrams, pptx reference deck, keeps
  its processed markdown for inspection
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from markflow.contexts.environment.environment import Environment
from markflow.contexts.rendering.logger import _log_debug, _log_warning
from markflow.contexts.rendering.processors import BUILTIN_PROCESSORS, ProcessorSpec
from markflow.utils.exceptions import ValidationError

if TYPE_CHECKING:
    from markflow.contexts.rendering.pipeline import ConversionContext, ConversionResult

CONVERSION_MODES = ("output", "in_place")


@dataclass
class ConverterSpec:
    """
    Declarative description of a document converter.

    Attributes:
        name: Converter identifier (referenced by a workflow's format action)
        supported_formats: Output formats this converter accepts
        detection: Probe command; conversion fails fast if it does not succeed
        command_template: argv with {input} {output} {format} {reference_doc} {resource_path}
        mode: "output" writes a new file; "in_place" rewrites a copy of the input
        backup: Keep the previous output as <output>.bak before converting
        timeout: Seconds allowed for the conversion (processors included)
        default_processors: Processors enabled when neither caller nor workflow chooses
        keep_intermediates: Keep the processed markdown after conversion
        reference_docs: Format -> static file used as the reference document
        prepare: Hook run before processing, may adjust the context
        before_cleanup: Hook run after conversion, before intermediates are removed
    """

    name: str
    supported_formats: List[str]
    command_template: List[str]
    description: str = ""
    detection: List[str] = field(default_factory=list)
    mode: str = "output"
    backup: bool = False
    timeout: float = 120
    default_processors: List[str] = field(default_factory=list)
    keep_intermediates: bool = False
    reference_docs: Dict[str, str] = field(default_factory=dict)
    prepare: Optional[Callable[["ConversionContext"], None]] = None
    before_cleanup: Optional[Callable[["ConversionContext", "ConversionResult"], None]] = None

    def __post_init__(self):
        if self.mode not in CONVERSION_MODES:
            raise ValidationError(f"Converter '{self.name}' has invalid mode '{self.mode}'")

    def supports(self, output_format: str) -> bool:
        return output_format in self.supported_formats

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConverterSpec":
        """
        Build a converter from a converters/<name>.yml definition.

        Raises:
            ValidationError: Missing name, formats or command
        """
        name = data.get("name")
        command = data.get("command") or data.get("command_template")
        formats = data.get("supported_formats") or data.get("formats")
        if not name or not command or not formats:
            raise ValidationError(
                f"Converter definition needs 'name', 'supported_formats' and 'command': {data}"
            )
        return cls(
            name=name,
            description=data.get("description", ""),
            supported_formats=[str(f) for f in formats],
            command_template=[str(token) for token in command],
            detection=[str(token) for token in data.get("detection") or []],
            mode=data.get("mode", "output"),
            backup=bool(data.get("backup", False)),
            timeout=float(data.get("timeout", 120)),
            default_processors=list(data.get("default_processors") or []),
            keep_intermediates=bool(data.get("keep_intermediates", False)),
            reference_docs=dict(data.get("reference_docs") or {}),
        )


PANDOC_COMMAND = [
    "pandoc",
    "{input}",
    "--standalone",
    "-o",
    "{output}",
    "--reference-doc={reference_doc}",
    "--resource-path={resource_path}",
]

PANDOC = ConverterSpec(
    name="pandoc",
    description="Convert markdown with pandoc",
    supported_formats=["docx", "html", "pdf", "odt", "pptx", "epub"],
    detection=["pandoc", "--version"],
    command_template=PANDOC_COMMAND,
    timeout=120,
)


def _presentation_prepare(context: "ConversionContext") -> None:
    """Let pandoc find rendered diagrams next to the processed slides."""
    if context.assets_dir is not None:
        extra = str(context.assets_dir)
        context.resource_path = (
            f"{context.resource_path}{os.pathsep}{extra}" if context.resource_path else extra
        )


def _presentation_before_cleanup(context: "ConversionContext", result: "ConversionResult") -> None:
    if result.success and result.artifacts:
        _log_debug(f"Presentation embeds {len(result.artifacts)} diagram(s)")


PRESENTATION = ConverterSpec(
    name="presentation",
    description="Slides with mermaid diagrams via pandoc",
    supported_formats=["pptx", "html", "pdf"],
    detection=["pandoc", "--version"],
    command_template=PANDOC_COMMAND,
    timeout=180,
    default_processors=["mermaid"],
    keep_intermediates=True,
    reference_docs={"pptx": "reference.pptx"},
    prepare=_presentation_prepare,
    before_cleanup=_presentation_before_cleanup,
)

BUILTIN_CONVERTERS = {spec.name: spec for spec in (PANDOC, PRESENTATION)}


class ConverterRegistry:
    """
    Registry of converters and processors available to a project.

    Example:
        registry = ConverterRegistry.from_environment(env, config.get("system"))
        pandoc = registry.get_converter("pandoc")
    """

    def __init__(
        self,
        converters: Optional[Dict[str, ConverterSpec]] = None,
        processors: Optional[Dict[str, ProcessorSpec]] = None,
    ):
        self._converters: Dict[str, ConverterSpec] = dict(BUILTIN_CONVERTERS)
        self._processors: Dict[str, ProcessorSpec] = dict(BUILTIN_PROCESSORS)
        self._converters.update(converters or {})
        self._processors.update(processors or {})

    @classmethod
    def from_environment(
        cls, environment: Environment, system_settings: Optional[Mapping[str, Any]] = None
    ) -> "ConverterRegistry":
        """
        Built-ins, tuned by system settings, plus YAML definitions from the environment.

        Invalid definitions are logged and skipped.
        """
        registry = cls()
        mermaid = (system_settings or {}).get("mermaid") or {}
        if mermaid:
            registry.register_processor(
                replace(
                    registry.get_processor("mermaid"),
                    output_format=mermaid.get("output_format", "png"),
                    timeout=float(mermaid.get("timeout", 30)),
                    options={"theme": mermaid.get("theme", "default")},
                )
            )

        for name, data in environment.get_processor_definitions().items():
            try:
                registry.register_processor(ProcessorSpec.from_dict(data))
            except ValidationError as e:
                _log_warning(f"Skipping processor '{name}': {e.message}")

        for name, data in environment.get_converter_definitions().items():
            try:
                registry.register_converter(ConverterSpec.from_dict(data))
            except ValidationError as e:
                _log_warning(f"Skipping converter '{name}': {e.message}")

        return registry

    def register_converter(self, spec: ConverterSpec) -> None:
        self._converters[spec.name] = spec

    def register_processor(self, spec: ProcessorSpec) -> None:
        self._processors[spec.name] = spec

    def get_converter(self, name: str) -> ConverterSpec:
        if name not in self._converters:
            raise ValidationError(
                f"Unknown converter '{name}'. Available: {', '.join(sorted(self._converters))}"
            )
        return self._converters[name]

    def get_processor(self, name: str) -> ProcessorSpec:
        if name not in self._processors:
            raise ValidationError(
                f"Unknown processor '{name}'. Available: {', '.join(sorted(self._processors))}"
            )
        return self._processors[name]

    def list_converters(self) -> List[str]:
        return sorted(self._converters)

    def list_processors(self) -> List[str]:
        return sorted(self._processors)


def find_reference_doc(
    environment: Environment,
    workflow: str,
    converter: ConverterSpec,
    output_format: str,
    document_stem: str,
    statics: Optional[List[Any]] = None,
) -> Optional[Path]:
    """
    Resolve the reference document for one conversion, local layer first.

    A workflow static named '<prefix>_reference' whose file matches the output
    format applies to documents whose name starts with <prefix> (so
    resume_reference.docx styles resume_jane.md). Otherwise the converter's
    reference_docs entry for the format is used.
    """
    candidates = []
    for static in statics or []:
        prefix = static.name[: -len("_reference")] if static.name.endswith("_reference") else ""
        if prefix and document_stem.startswith(prefix) and static.file.endswith(f".{output_format}"):
            candidates.append(Path(static.file).name)
    if output_format in converter.reference_docs:
        candidates.append(converter.reference_docs[output_format])

    for filename in candidates:
        path = environment.static_path(workflow, filename)
        if path is not None:
            return path
    return None
