"""Unit tests for command templates, diagram blocks and the converter registry."""

from pathlib import Path

import pytest

from markflow.contexts.environment import FilesystemEnvironment, MemoryEnvironment
from markflow.contexts.environment.schemas import WorkflowStatic
from markflow.contexts.environment.storage import MemoryStorage
from markflow.contexts.rendering import (
    ConverterRegistry,
    ConverterSpec,
    ProcessorSpec,
    extract_blocks,
    find_reference_doc,
    process_markdown,
    resolve_command,
)
from markflow.contexts.rendering.processors import parse_attributes
from markflow.utils.exceptions import ExternalToolError, ValidationError

SLIDES = """\
# Architecture

```mermaid:architecture {width=80%}
graph TD
    A --> B
```

Some text.

```mermaid:flow
sequenceDiagram
    A->>B: hi
```
"""


@pytest.mark.unit
def test_resolve_command_substitutes_and_drops_empty_tokens():
    argv = resolve_command(
        ["pandoc", "{input}", "-o", "{output}", "--reference-doc={reference_doc}"],
        {"input": "in.md", "output": "out.docx", "reference_doc": None},
    )

    assert argv == ["pandoc", "in.md", "-o", "out.docx"]


@pytest.mark.unit
def test_resolve_command_rejects_unknown_placeholder():
    with pytest.raises(ExternalToolError, match="unknown placeholder"):
        resolve_command(["tool", "{nope}"], {"input": "x"}, tool="tool")
    with pytest.raises(ExternalToolError):
        resolve_command(["{input}"], {"input": ""})


@pytest.mark.unit
def test_extract_blocks_in_document_order():
    blocks = extract_blocks(SLIDES, "mermaid")

    assert [b.name for b in blocks] == ["architecture", "flow"]
    assert blocks[0].attributes == "{width=80%}"
    assert blocks[0].code == "graph TD\n    A --> B"
    assert blocks[1].attributes == ""
    assert extract_blocks(SLIDES, "graphviz") == []


@pytest.mark.unit
def test_parse_attributes():
    assert parse_attributes("{width=80%, layout='neato' height=300}") == {
        "width": "80%",
        "layout": "neato",
        "height": "300",
    }
    assert parse_attributes("") == {}


@pytest.mark.unit
def test_unavailable_processor_leaves_blocks_with_error_comment():
    spec = ProcessorSpec(
        name="mermaid",
        language="mermaid",
        detection=["markflow-missing-tool", "--version"],
        command_template=["markflow-missing-tool", "{input}", "{output}"],
    )
    storage = MemoryStorage()

    result = process_markdown(
        spec, SLIDES, Path("/out/assets"), Path("/out"), storage, keep_sources_in=Path("/out")
    )

    assert result.failed == 2
    assert result.rendered == 0
    assert result.artifacts == []
    assert result.content.count("<!-- Mermaid Error: mermaid CLI not available -->") == 2
    assert "```mermaid:architecture {width=80%}" in result.content
    assert storage.read_text("/out/flow.txt").startswith("sequenceDiagram")


@pytest.mark.unit
def test_missing_executable_is_reported_per_block():
    spec = ProcessorSpec(
        name="graphviz",
        language="graphviz",
        command_template=["markflow-missing-dot", "-o{output}", "{input}"],
    )

    result = process_markdown(
        spec, "```graphviz:g\ndigraph { a -> b }\n```\n", Path("/out/assets"), Path("/out"), MemoryStorage()
    )

    assert result.failed == 1
    assert "Executable not available: markflow-missing-dot" in result.content


@pytest.mark.unit
def test_spec_from_dict():
    processor = ProcessorSpec.from_dict(
        {"name": "plantuml", "command": ["plantuml", "-o", "{output}", "{input}"], "timeout": 5}
    )
    converter = ConverterSpec.from_dict(
        {"name": "typst", "formats": ["pdf"], "command": ["typst", "compile", "{input}", "{output}"]}
    )

    assert processor.language == "plantuml"
    assert processor.timeout == 5.0
    assert converter.supports("pdf") and not converter.supports("docx")
    assert converter.mode == "output"

    with pytest.raises(ValidationError):
        ProcessorSpec.from_dict({"name": "x"})
    with pytest.raises(ValidationError):
        ConverterSpec.from_dict({"name": "x", "command": ["x"]})
    with pytest.raises(ValidationError, match="invalid mode"):
        ConverterSpec.from_dict({"name": "x", "formats": ["pdf"], "command": ["x"], "mode": "sideways"})


@pytest.mark.unit
def test_registry_from_environment():
    env = MemoryEnvironment(
        {
            "converters/typst.yml": "name: typst\nsupported_formats: [pdf]\ncommand: [typst, '{input}']\n",
            "converters/broken.yml": "name: broken\n",
            "processors/plantuml.yml": "name: plantuml\ncommand: [plantuml, '{input}']\n",
        }
    )

    registry = ConverterRegistry.from_environment(env, {"mermaid": {"theme": "dark", "timeout": 10}})

    assert registry.list_converters() == ["pandoc", "presentation", "typst"]
    assert registry.list_processors() == ["graphviz", "mermaid", "plantuml"]
    mermaid = registry.get_processor("mermaid")
    assert mermaid.options == {"theme": "dark"}
    assert mermaid.timeout == 10.0
    assert registry.get_converter("presentation").default_processors == ["mermaid"]
    with pytest.raises(ValidationError, match="Unknown converter"):
        registry.get_converter("broken")


@pytest.mark.unit
def test_find_reference_doc_prefers_document_specific_static(tmp_path):
    static_dir = tmp_path / "workflows" / "job" / "templates" / "static"
    static_dir.mkdir(parents=True)
    (static_dir / "resume_reference.docx").write_bytes(b"PK")
    (static_dir / "reference.pptx").write_bytes(b"PK")
    env = FilesystemEnvironment(tmp_path)
    registry = ConverterRegistry()
    statics = [
        WorkflowStatic(name="resume_reference", file="templates/static/resume_reference.docx"),
        WorkflowStatic(name="cover_letter_reference", file="templates/static/cover_letter_reference.docx"),
    ]
    pandoc = registry.get_converter("pandoc")

    assert find_reference_doc(env, "job", pandoc, "docx", "resume_test_user", statics) == (
        static_dir / "resume_reference.docx"
    )
    # Declared but not shipped
    assert find_reference_doc(env, "job", pandoc, "docx", "cover_letter_test_user", statics) is None
    assert find_reference_doc(env, "job", pandoc, "html", "resume_test_user", statics) is None
    assert find_reference_doc(
        env, "job", registry.get_converter("presentation"), "pptx", "content"
    ) == (static_dir / "reference.pptx")
