"""
Rendering Context

Responsibilities:
- Describes converters and diagram processors as records
- Runs processors over a document, then the converter under the execution limiter
- Formats whole collections into <collection>/formatted/

Owns: ConverterRegistry, ConversionPipeline, command templates
Never: Changes collection metadata or stages (see collections context)
"""

from markflow.contexts.rendering.commands import resolve_command
from markflow.contexts.rendering.converters import (
    BUILTIN_CONVERTERS,
    ConverterRegistry,
    ConverterSpec,
    find_reference_doc,
)
from markflow.contexts.rendering.pipeline import (
    ConversionContext,
    ConversionPipeline,
    ConversionResult,
    format_collection,
)
from markflow.contexts.rendering.processors import (
    BUILTIN_PROCESSORS,
    ProcessorSpec,
    extract_blocks,
    process_markdown,
)

__all__ = [
    # Registry
    "ConverterSpec",
    "ConverterRegistry",
    "BUILTIN_CONVERTERS",
    "find_reference_doc",
    # Processors
    "ProcessorSpec",
    "BUILTIN_PROCESSORS",
    "extract_blocks",
    "process_markdown",
    # Pipeline
    "ConversionContext",
    "ConversionResult",
    "ConversionPipeline",
    "format_collection",
    "resolve_command",
]
