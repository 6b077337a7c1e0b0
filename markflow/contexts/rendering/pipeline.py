"""
Conversion pipeline.

Turns a markdown document into an output format:

1. check the format is supported and pick processors
   (caller selection > workflow defaults > converter defaults)
2. probe the converter tool
3. run each processor, writing <stem>_processed.md to the intermediate dir
4. run the converter command under the execution limiter
5. collect outputs and artifacts, then remove the pipeline's own
   intermediate file unless the converter keeps intermediates

Failures never delete produced artifacts and partial output is never
reported as success.
"""

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence, Union

from markflow.contexts.environment.storage import LocalStorage, StorageAdapter
from markflow.contexts.rendering.commands import resolve_command
from markflow.contexts.rendering.converters import (
    ConverterRegistry,
    ConverterSpec,
    find_reference_doc,
)
from markflow.contexts.rendering.logger import (
    _log_debug,
    _log_info,
    log_conversion_result,
    log_conversion_start,
)
from markflow.contexts.rendering.processors import process_markdown
from markflow.utils.exceptions import ExternalToolError, OperationTimeoutError, ValidationError
from markflow.utils.execution import CommandResult, Deadline, ExecutionLimiter, run_command, tool_available
from markflow.utils.run_context import RunContext

if TYPE_CHECKING:
    from markflow.contexts.collections.engine import WorkflowEngine

FORMATTED_DIRNAME = "formatted"
ASSETS_DIRNAME = "assets"
PROCESSED_SUFFIX = "_processed"


@dataclass
class ConversionContext:
    """
    Everything one conversion needs.

    Attributes:
        collection_path: Collection directory
        input_file: Markdown document to convert
        output_file: Target file
        format: Output format
        enabled_processors: Processors to run (None = converter defaults)
        reference_doc: Reference document passed to the converter, if any
        assets_dir: Where processors write images (default: <output dir>/assets)
        intermediate_dir: Where the processed markdown goes (default: output dir)
        resource_path: Search path for images referenced by the document
        caller: Identity used for per-caller execution limits
    """

    collection_path: Path
    input_file: Path
    output_file: Path
    format: str
    enabled_processors: Optional[List[str]] = None
    reference_doc: Optional[Path] = None
    assets_dir: Optional[Path] = None
    intermediate_dir: Optional[Path] = None
    resource_path: Optional[str] = None
    caller: str = "default"


@dataclass
class ConversionResult:
    """
    Result of one conversion.

    Attributes:
        success: Converter exited 0 and the output exists
        output_files: Produced output paths
        artifacts: Side files (diagram images); never removed by cleanup
        intermediate_files: Intermediate files left on storage
        error: Failure description
        timed_out: The conversion ran out of time (child was killed)
        elapsed: Wall-clock seconds
    """

    success: bool
    output_files: List[Path] = field(default_factory=list)
    artifacts: List[Path] = field(default_factory=list)
    intermediate_files: List[Path] = field(default_factory=list)
    error: Optional[str] = None
    timed_out: bool = False
    elapsed: float = 0.0


class ConversionPipeline:
    """
    Runs converters and processors for a project.

    Args:
        registry: Available converters and processors
        storage: Storage used for intermediate files and output checks
        limiter: Execution limiter (shared with other operations of the process)
        context: Id source for operation ids
    """

    def __init__(
        self,
        registry: Optional[ConverterRegistry] = None,
        storage: Optional[StorageAdapter] = None,
        limiter: Optional[ExecutionLimiter] = None,
        context: Optional[RunContext] = None,
    ):
        self.registry = registry or ConverterRegistry()
        self.storage = storage or LocalStorage()
        self.limiter = limiter or ExecutionLimiter()
        self.context = context or RunContext()

    def convert(
        self, context: ConversionContext, converter: Union[str, ConverterSpec]
    ) -> ConversionResult:
        """
        Convert one document.

        Returns a failed ConversionResult for unsupported formats, tool
        failures and timeouts.

        Raises:
            ExternalToolError: Converter tool not available
            ResourceLimitError: Too many conversions running
            ValidationError: Unknown converter or processor
        """
        spec = converter if isinstance(converter, ConverterSpec) else self.registry.get_converter(converter)
        started = time.monotonic()

        if not spec.supports(context.format):
            return ConversionResult(
                success=False,
                error=f"Format '{context.format}' not supported by {spec.name}. "
                f"Supported: {', '.join(spec.supported_formats)}",
            )

        processors = (
            list(context.enabled_processors)
            if context.enabled_processors is not None
            else list(spec.default_processors)
        )
        processor_specs = [self.registry.get_processor(name) for name in processors]

        if spec.detection and not tool_available(spec.detection):
            raise ExternalToolError(
                f"{spec.name} is not available (probe: {' '.join(spec.detection)})", tool=spec.name
            )

        output_dir = context.output_file.parent
        if context.assets_dir is None:
            context.assets_dir = output_dir / ASSETS_DIRNAME
        if context.intermediate_dir is None:
            context.intermediate_dir = output_dir
        if context.resource_path is None:
            context.resource_path = os.pathsep.join(
                [str(context.intermediate_dir), str(context.collection_path)]
            )

        log_conversion_start(spec.name, context.input_file, context.output_file, processors)
        process_id = self.context.next_id(f"convert-{spec.name}")
        result: Optional[ConversionResult] = None
        command: Optional[CommandResult] = None
        try:
            with self.limiter.slot(
                process_id, caller=context.caller, timeout=spec.timeout, kind="conversion"
            ) as deadline:
                result, command = self._run(spec, context, processor_specs, deadline)
        except OperationTimeoutError as e:
            # A converter that finished in time keeps its result
            if result is None or not result.success:
                result = result or ConversionResult(success=False)
                result.error = result.error or e.message
                result.timed_out = True

        result.elapsed = time.monotonic() - started
        log_conversion_result(
            spec.name,
            result,
            stdout=command.stdout if command else "",
            stderr=command.stderr if command else "",
        )
        return result

    def _run(self, spec: ConverterSpec, context: ConversionContext, processor_specs, deadline: Deadline):
        if spec.prepare is not None:
            spec.prepare(context)

        result = ConversionResult(success=False)
        source = context.input_file
        own_intermediate: Optional[Path] = None

        if processor_specs:
            text = self.storage.read_text(source)
            for processor in processor_specs:
                processed = process_markdown(
                    processor,
                    text,
                    assets_dir=context.assets_dir,
                    document_dir=context.intermediate_dir,
                    storage=self.storage,
                    deadline=deadline,
                    keep_sources_in=context.intermediate_dir if spec.keep_intermediates else None,
                )
                text = processed.content
                result.artifacts.extend(processed.artifacts)
                result.intermediate_files.extend(processed.source_files)
            own_intermediate = context.intermediate_dir / f"{source.stem}{PROCESSED_SUFFIX}.md"
            self.storage.write_text(own_intermediate, text)
            source = own_intermediate

        command = None
        try:
            command = self._invoke(spec, context, source, deadline)
        except OperationTimeoutError as e:
            result.error = e.message
            result.timed_out = True
        else:
            if not command.success:
                result.error = f"{spec.name} exited with status {command.returncode}"
            elif not self.storage.exists(context.output_file):
                result.error = f"{spec.name} produced no output file"
            else:
                result.success = True
                result.output_files.append(context.output_file)

        if spec.before_cleanup is not None:
            spec.before_cleanup(context, result)

        if own_intermediate is not None:
            if spec.keep_intermediates:
                result.intermediate_files.append(own_intermediate)
            elif self.storage.exists(own_intermediate):
                self.storage.delete(own_intermediate)
                _log_debug(f"Removed intermediate {own_intermediate.name}")

        return result, command

    def _invoke(
        self, spec: ConverterSpec, context: ConversionContext, source: Path, deadline: Deadline
    ) -> CommandResult:
        output_file = context.output_file
        self.storage.mkdir(output_file.parent)

        if spec.backup and self.storage.exists(output_file):
            backup = output_file.with_name(output_file.name + ".bak")
            if self.storage.exists(backup):
                self.storage.delete(backup)
            self.storage.copy(output_file, backup)
            _log_debug(f"Backed up {output_file.name}")

        if spec.mode == "in_place":
            # The tool rewrites its input, so it works on a copy at the output path
            if self.storage.exists(output_file):
                self.storage.delete(output_file)
            self.storage.copy(source, output_file)
            source = output_file
        elif self.storage.exists(output_file):
            # Only a file written by this run counts as output
            self.storage.delete(output_file)

        values = {
            "input": str(source),
            "output": str(output_file),
            "format": context.format,
            "reference_doc": str(context.reference_doc) if context.reference_doc else "",
            "resource_path": context.resource_path or "",
        }
        argv = resolve_command(spec.command_template, values, tool=spec.name)
        return run_command(argv, timeout=spec.timeout, cwd=source.parent, deadline=deadline)


def _expand_formats(
    requested: Optional[Sequence[str]], allowed: List[str]
) -> List[str]:
    if not requested:
        return allowed[:1]
    formats: List[str] = []
    for output_format in requested:
        for expanded in allowed if output_format == "all" else [output_format]:
            if expanded not in allowed:
                raise ValidationError(
                    f"Unsupported format '{expanded}'. Available: {', '.join(allowed)}"
                )
            if expanded not in formats:
                formats.append(expanded)
    return formats


def format_collection(
    engine: "WorkflowEngine",
    workflow: str,
    collection_id: str,
    formats: Optional[Sequence[str]] = None,
    processors: Optional[Sequence[str]] = None,
    caller: str = "cli",
    pipeline: Optional[ConversionPipeline] = None,
) -> List[ConversionResult]:
    """
    Convert every markdown document of a collection into <collection>/formatted/.

    Args:
        engine: Engine for the project
        workflow: Workflow name
        collection_id: Collection to format
        formats: Output formats ('all' expands to the workflow's formats);
                 defaults to the workflow's first format
        processors: Explicit processor selection (None = workflow/converter defaults)
        caller: Identity for per-caller execution limits
        pipeline: Pipeline to use (built from the engine's environment if omitted)

    Raises:
        ValidationError: Unknown format/processor or no markdown documents
        CollectionNotFoundError: No such collection
    """
    definition = engine.get_workflow(workflow)
    collection = engine.get_collection(workflow, collection_id)

    if pipeline is None:
        registry = ConverterRegistry.from_environment(engine.environment, engine.config.get("system", {}))
        pipeline = ConversionPipeline(registry, engine.storage, engine.limiter, engine.context)

    converter = pipeline.registry.get_converter(definition.format_converter or "pandoc")
    allowed = definition.formats or list(converter.supported_formats)
    selected_formats = _expand_formats(formats, allowed)

    if processors is not None:
        enabled: Optional[List[str]] = list(processors)
    elif definition.processors:
        enabled = list(definition.processors)
    else:
        enabled = None
    for name in enabled or []:
        pipeline.registry.get_processor(name)

    documents = [
        entry.name
        for entry in engine.storage.list(collection.path)
        if entry.is_file and entry.name.endswith(".md")
    ]
    if not documents:
        raise ValidationError(f"No markdown documents in collection '{collection_id}'")

    output_dir = collection.path / FORMATTED_DIRNAME
    _log_info(f"Formatting {collection_id}: {', '.join(documents)} -> {', '.join(selected_formats)}")

    results = []
    for document in documents:
        stem = Path(document).stem
        for output_format in selected_formats:
            context = ConversionContext(
                collection_path=collection.path,
                input_file=collection.path / document,
                output_file=output_dir / f"{stem}.{output_format}",
                format=output_format,
                enabled_processors=enabled,
                reference_doc=find_reference_doc(
                    engine.environment, workflow, converter, output_format, stem, definition.statics
                ),
                assets_dir=output_dir / ASSETS_DIRNAME,
                intermediate_dir=output_dir,
                caller=caller,
            )
            results.append(pipeline.convert(context, converter))

    engine.record_event(
        "formatted",
        workflow,
        collection_id,
        formats=selected_formats,
        succeeded=sum(1 for r in results if r.success),
        failed=sum(1 for r in results if not r.success),
    )
    return results
