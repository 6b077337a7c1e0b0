"""
Diagram pre-processors.

A processor turns fenced diagram blocks into images before conversion:

    ```mermaid:flow {width=80%}
    graph TD; A-->B
    ```

becomes

    ![flow](assets/flow.png){width=80%}

A block that fails to render stays in place, preceded by an HTML comment
describing the failure, so the document still converts.
"""

import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from markflow.contexts.environment.storage import StorageAdapter
from markflow.contexts.rendering.commands import resolve_command
from markflow.contexts.rendering.logger import _log_debug, log_diagram_result
from markflow.utils.exceptions import ExternalToolError, OperationTimeoutError, ValidationError
from markflow.utils.execution import Deadline, run_command, tool_available


@dataclass
class ProcessorSpec:
    """
    Declarative description of a diagram processor.

    Attributes:
        name: Processor identifier
        language: Fence tag that marks its blocks (```<language>:<name>)
        detection: Probe command; the tool is unavailable if it fails
        command_template: Render command with {input} {output} {format} and option placeholders
        output_format: Image format written to the assets directory
        source_extension: Extension of the diagram source file handed to the tool
        timeout: Seconds allowed per diagram
        options: Extra placeholder values (e.g. theme)
    """

    name: str
    language: str
    command_template: List[str]
    detection: List[str] = field(default_factory=list)
    output_format: str = "png"
    source_extension: str = ".txt"
    timeout: float = 30
    options: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessorSpec":
        """
        Build a processor from a processors/<name>.yml definition.

        Raises:
            ValidationError: Missing name or command
        """
        name = data.get("name")
        command = data.get("command") or data.get("command_template")
        if not name or not command:
            raise ValidationError(f"Processor definition needs 'name' and 'command': {data}")
        return cls(
            name=name,
            language=data.get("language") or name,
            command_template=[str(token) for token in command],
            detection=[str(token) for token in data.get("detection") or []],
            output_format=data.get("output_format", "png"),
            source_extension=data.get("source_extension", ".txt"),
            timeout=float(data.get("timeout", 30)),
            options=dict(data.get("options") or {}),
            description=data.get("description", ""),
        )


MERMAID = ProcessorSpec(
    name="mermaid",
    language="mermaid",
    description="Render ```mermaid:name blocks with the Mermaid CLI",
    detection=["mmdc", "--version"],
    command_template=[
        "mmdc",
        "--input={input}",
        "--output={output}",
        "--theme={theme}",
        "--width={width}",
        "--height={height}",
    ],
    output_format="png",
    source_extension=".mmd",
    timeout=30,
    options={"theme": "default"},
)

GRAPHVIZ = ProcessorSpec(
    name="graphviz",
    language="graphviz",
    description="Render ```graphviz:name blocks with Graphviz",
    detection=["dot", "-V"],
    command_template=["dot", "-T{format}", "-K{layout}", "-o{output}", "{input}"],
    output_format="png",
    source_extension=".dot",
    timeout=30,
    options={"layout": "dot"},
)

BUILTIN_PROCESSORS = {spec.name: spec for spec in (MERMAID, GRAPHVIZ)}

# Block attributes that may feed command placeholders
BLOCK_OPTIONS = ("width", "height", "layout", "theme")


@dataclass
class DiagramBlock:
    name: str
    attributes: str
    code: str
    start: int
    end: int


@dataclass
class ProcessingResult:
    """Outcome of running one processor over a document."""

    content: str
    artifacts: List[Path] = field(default_factory=list)
    source_files: List[Path] = field(default_factory=list)
    rendered: int = 0
    failed: int = 0


def extract_blocks(markdown: str, language: str) -> List[DiagramBlock]:
    """Find ```<language>:<name> {attrs} fenced blocks, in document order."""
    pattern = re.compile(
        rf"```{re.escape(language)}:([\w-]+)(\s*\{{[^}}]*\}})?[ \t]*\n(.*?)\n```",
        re.DOTALL,
    )
    return [
        DiagramBlock(
            name=match.group(1),
            attributes=(match.group(2) or "").strip(),
            code=match.group(3),
            start=match.start(),
            end=match.end(),
        )
        for match in pattern.finditer(markdown)
    ]


def parse_attributes(attributes: str) -> Dict[str, str]:
    """Parse '{width=80%, layout=neato}' into a dict."""
    body = attributes.strip().lstrip("{").rstrip("}")
    parsed = {}
    for item in re.split(r"[,\s]+", body):
        key, sep, value = item.partition("=")
        if sep and key:
            parsed[key.strip()] = value.strip().strip("'\"")
    return parsed


def _relative_reference(target: Path, start: Path) -> str:
    try:
        return target.relative_to(start).as_posix()
    except ValueError:
        return target.as_posix()


def process_markdown(
    spec: ProcessorSpec,
    markdown: str,
    assets_dir: Path,
    document_dir: Path,
    storage: StorageAdapter,
    deadline: Optional[Deadline] = None,
    keep_sources_in: Optional[Path] = None,
) -> ProcessingResult:
    """
    Replace every block of this processor's language with an image reference.

    Args:
        spec: Processor to run
        markdown: Document text
        assets_dir: Where rendered images go
        document_dir: Directory of the processed document (image links are relative to it)
        storage: Storage used to verify outputs and save kept sources
        deadline: Enclosing conversion deadline
        keep_sources_in: Also save each diagram source here (for debugging)
    """
    blocks = extract_blocks(markdown, spec.language)
    if not blocks:
        return ProcessingResult(content=markdown)

    _log_debug(f"{spec.name}: {len(blocks)} block(s) found")
    available = not spec.detection or tool_available(spec.detection)
    result = ProcessingResult(content=markdown)
    storage.mkdir(assets_dir)

    # Blocks reusing an earlier name are left unrendered
    seen = set()
    duplicates = set()
    for index, block in enumerate(blocks):
        if block.name in seen:
            duplicates.add(index)
        seen.add(block.name)

    # Replace from the end so earlier offsets stay valid
    for index in reversed(range(len(blocks))):
        block = blocks[index]
        output_file = assets_dir / f"{block.name}.{spec.output_format}"
        if index in duplicates:
            error = f"duplicate diagram name '{block.name}'"
        elif not available:
            error = f"{spec.name} CLI not available"
        else:
            error = _render_block(spec, block, output_file, storage, deadline)

        if keep_sources_in is not None and index not in duplicates:
            source_copy = keep_sources_in / f"{block.name}{spec.source_extension}"
            storage.write_text(source_copy, block.code)
            result.source_files.append(source_copy)

        content = result.content
        if error is None:
            reference = _relative_reference(output_file, document_dir)
            image = f"![{block.name}]({reference}){block.attributes}"
            result.content = content[: block.start] + image + content[block.end :]
            result.artifacts.insert(0, output_file)
            result.rendered += 1
        else:
            comment = f"<!-- {spec.name.capitalize()} Error: {error} -->\n"
            result.content = content[: block.start] + comment + content[block.start :]
            result.failed += 1
        log_diagram_result(spec.name, block.name, error is None, error or "")

    return result


def _render_block(
    spec: ProcessorSpec,
    block: DiagramBlock,
    output_file: Path,
    storage: StorageAdapter,
    deadline: Optional[Deadline],
) -> Optional[str]:
    """Render one diagram; returns an error message or None on success."""
    attributes = parse_attributes(block.attributes)
    with tempfile.TemporaryDirectory(prefix=f"markflow-{spec.name}-") as tmp:
        source_file = Path(tmp) / f"{block.name}{spec.source_extension}"
        source_file.write_text(block.code, encoding="utf-8")

        values = {
            "width": "",
            "height": "",
            **{key: str(value) for key, value in spec.options.items()},
            **{key: value for key, value in attributes.items() if key in BLOCK_OPTIONS},
            "input": str(source_file),
            "output": str(output_file),
            "format": spec.output_format,
        }
        # Percent widths are layout hints for the document, not pixel sizes
        for key in ("width", "height"):
            if not str(values.get(key, "")).isdigit():
                values[key] = ""

        try:
            argv = resolve_command(spec.command_template, values, tool=spec.name)
            command = run_command(argv, timeout=spec.timeout, deadline=deadline)
        except ExternalToolError as e:
            return e.message
        except OperationTimeoutError as e:
            # Only the whole conversion running out of time is fatal
            if deadline is not None and deadline.expired():
                raise
            return e.message

    if not command.success:
        stderr = command.stderr.strip()
        return stderr.splitlines()[-1] if stderr else f"exit status {command.returncode}"
    if not storage.exists(output_file):
        return f"output file not created: {output_file.name}"
    return None
