#!/usr/bin/env python3
"""
markflow command-line interface.

Manages document collections that move through workflow stages and formats
them into output documents.

Commands:
    init      - Initialize a project in the current directory
    create    - Create a collection from the workflow's templates
    status    - Move a collection to another stage
    update    - Set workflow-specific metadata fields
    list      - List a workflow's collections by stage
    add       - Add an item (e.g. interview notes) to a collection
    format    - Convert a collection's documents (docx, html, pdf, pptx)
    events    - Show recent collection events
    available - Show workflows, converters and processors

Examples:\n

    wf.py init --workflows job,blog

    wf.py create job "Google Inc" "Software Engineer" --url https://example.com/job

    wf.py status job google_inc_software_engineer_20250730 submitted

    wf.py format presentation quarterly_review_20250730 --format pptx
"""

import os
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from typing_extensions import Annotated

from markflow.contexts.collections import WorkflowEngine
from markflow.contexts.collections.logger import setup_engine_logger
from markflow.contexts.configuration import ConfigDiscovery, initialize_project
from markflow.contexts.rendering import ConverterRegistry, format_collection
from markflow.contexts.rendering.logger import setup_rendering_logger
from markflow.utils import format_timestamp, public_error_message
from markflow.utils.exceptions import MarkflowError

load_dotenv()

app = typer.Typer(
    help="Manage document collections through workflow stages",
    add_completion=False,
    invoke_without_command=True,
)


@app.callback()
def main(ctx: typer.Context):
    """Show help by default when no command is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _fail(error: BaseException) -> None:
    typer.secho(f"Error: {public_error_message(error)}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _logs_dir(project_root: Path) -> Path:
    override = os.getenv("MARKFLOW_LOGS_PATH")
    return Path(override) if override else ConfigDiscovery().get_project_paths(project_root).logs_dir


def _load_engine() -> WorkflowEngine:
    engine = WorkflowEngine.from_cwd()
    setup_engine_logger(_logs_dir(engine.project_root), engine.project_root)
    return engine


def _split(values: Optional[List[str]]) -> Optional[List[str]]:
    """Accept both repeated options and comma-separated lists."""
    if not values:
        return None
    return [item.strip() for value in values for item in value.split(",") if item.strip()]


@app.command("init")
def init_command(
    workflows: Annotated[
        Optional[str],
        typer.Option("--workflows", "-w", help="Comma-separated workflows to set up (default: all)"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Reinitialize even inside an existing project"),
    ] = False,
):
    """
    Initialize a markflow project in the current directory.

    Examples:\n

        $ wf.py init

        $ wf.py init --workflows job,blog
    """
    try:
        result = initialize_project(Path.cwd(), workflows=_split([workflows] if workflows else None), force=force)
    except MarkflowError as e:
        _fail(e)

    typer.secho(f"✓ Initialized project in {result.project_root}", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  Config:    {result.config_file}")
    typer.echo(f"  Workflows: {', '.join(result.workflows)}")


@app.command("create")
def create_command(
    workflow: Annotated[str, typer.Argument(help="Workflow name (e.g. job, blog, presentation)")],
    primary: Annotated[str, typer.Argument(help="First identifying field (company, title)")],
    secondary: Annotated[
        Optional[str], typer.Argument(help="Second identifying field (role)")
    ] = None,
    url: Annotated[
        Optional[str], typer.Option("--url", "-u", help="Page to archive into the collection")
    ] = None,
    template_variant: Annotated[
        Optional[str], typer.Option("--template-variant", "-t", help="Template variant to use")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Recreate an existing collection")
    ] = False,
):
    """
    Create a collection in the workflow's first stage.

    Examples:\n

        $ wf.py create job "Google Inc" "Software Engineer"

        $ wf.py create blog "Why Markdown" --template-variant technical
    """
    try:
        engine = _load_engine()
        definition = engine.get_workflow(workflow)
        values = [value for value in (primary, secondary) if value is not None]
        field_names = definition.collection_id_fields
        if len(values) > len(field_names):
            typer.secho(
                f"Workflow '{workflow}' takes {len(field_names)} identifying field(s): "
                f"{', '.join(field_names)}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=2)
        fields = dict(zip(field_names, values))
        collection = engine.create(
            workflow, fields, template_variant=template_variant, url=url, force=force
        )
    except MarkflowError as e:
        _fail(e)

    typer.secho(f"✓ Created {collection.collection_id}", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  Stage: {collection.stage}")
    typer.echo(f"  Path:  {collection.path}")


@app.command("status")
def status_command(
    workflow: Annotated[str, typer.Argument(help="Workflow name")],
    collection_id: Annotated[str, typer.Argument(help="Collection id")],
    stage: Annotated[str, typer.Argument(help="Target stage")],
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Allow moving back to an earlier stage")
    ] = False,
):
    """
    Move a collection to another stage.

    Examples:\n

        $ wf.py status job google_inc_software_engineer_20250730 submitted
    """
    try:
        engine = _load_engine()
        collection = engine.advance(workflow, collection_id, stage, force=force)
    except MarkflowError as e:
        _fail(e)

    typer.secho(f"✓ {collection.collection_id} → {collection.stage}", fg=typer.colors.GREEN)


@app.command("update")
def update_command(
    workflow: Annotated[str, typer.Argument(help="Workflow name")],
    collection_id: Annotated[str, typer.Argument(help="Collection id")],
    assignments: Annotated[List[str], typer.Argument(help="Fields to set, as key=value")],
):
    """
    Set workflow-specific fields in a collection's metadata.

    Examples:\n

        $ wf.py update job google_inc_software_engineer_20250730 salary=TBD recruiter="Jane Doe"
    """
    updates = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep or not key.strip():
            typer.secho(f"Expected key=value, got '{assignment}'", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2)
        updates[key.strip()] = value

    try:
        engine = _load_engine()
        collection = engine.update_collection(workflow, collection_id, updates)
    except MarkflowError as e:
        _fail(e)

    typer.secho(f"✓ Updated {collection.collection_id}: {', '.join(sorted(updates))}", fg=typer.colors.GREEN)


@app.command("list")
def list_command(
    workflow: Annotated[str, typer.Argument(help="Workflow name")],
    stage: Annotated[
        Optional[str], typer.Option("--stage", "-s", help="Only show this stage")
    ] = None,
):
    """
    List a workflow's collections, grouped by stage.

    Examples:\n

        $ wf.py list job

        $ wf.py list job --stage submitted
    """
    try:
        engine = _load_engine()
        definition = engine.get_workflow(workflow)
        if stage is not None:
            definition.stage_index(stage)
        scan = engine.scan_collections(workflow)
    except MarkflowError as e:
        _fail(e)

    if not scan.collections and not scan.failures:
        typer.echo(f"No {workflow} collections")
        return

    for stage_name in definition.stage_names:
        if stage is not None and stage_name != stage:
            continue
        in_stage = [c for c in scan.collections if c.stage == stage_name]
        if not in_stage:
            continue
        typer.secho(f"\n{stage_name.upper()} ({len(in_stage)})", fg=typer.colors.BLUE, bold=True)
        for collection in sorted(in_stage, key=lambda c: c.collection_id):
            modified = format_timestamp(collection.metadata.date_modified, relative=True)
            typer.echo(f"  {collection.collection_id:<50} {modified}")

    for failure in scan.failures:
        typer.secho(f"⚠ {failure.path}: unreadable metadata", fg=typer.colors.YELLOW, err=True)


@app.command("add")
def add_command(
    workflow: Annotated[str, typer.Argument(help="Workflow name")],
    collection_id: Annotated[str, typer.Argument(help="Collection id")],
    template: Annotated[str, typer.Argument(help="Template to render (e.g. notes)")],
    prefix: Annotated[
        Optional[str], typer.Argument(help="Prefix for the output file name")
    ] = None,
):
    """
    Add an item from a template to a collection.

    Examples:\n

        $ wf.py add job google_inc_software_engineer_20250730 notes recruiter
    """
    try:
        engine = _load_engine()
        path = engine.add_item(workflow, collection_id, template, prefix=prefix)
    except MarkflowError as e:
        _fail(e)

    typer.secho(f"✓ Added {path.name}", fg=typer.colors.GREEN)


@app.command("format")
def format_command(
    workflow: Annotated[str, typer.Argument(help="Workflow name")],
    collection_id: Annotated[str, typer.Argument(help="Collection id")],
    formats: Annotated[
        Optional[List[str]],
        typer.Option("--format", "-F", help="Output format, repeatable or comma-separated ('all' for every format)"),
    ] = None,
    processors: Annotated[
        Optional[List[str]],
        typer.Option("--processor", "-p", help="Processor to enable (overrides workflow defaults)"),
    ] = None,
):
    """
    Convert a collection's markdown documents into <collection>/formatted/.

    Examples:\n

        $ wf.py format job google_inc_software_engineer_20250730

        $ wf.py format job google_inc_software_engineer_20250730 --format all

        $ wf.py format presentation quarterly_review_20250730 --format pptx
    """
    try:
        engine = _load_engine()
        definition = engine.get_workflow(workflow)
        setup_rendering_logger(_logs_dir(engine.project_root), definition.format_converter or "pandoc")
        results = format_collection(
            engine,
            workflow,
            collection_id,
            formats=_split(formats),
            processors=_split(processors),
        )
    except MarkflowError as e:
        _fail(e)

    failed = 0
    for result in results:
        if result.success:
            for path in result.output_files:
                typer.secho(f"✓ {path}", fg=typer.colors.GREEN)
        else:
            failed += 1
            typer.secho(f"✗ {result.error}", fg=typer.colors.RED, err=True)

    if failed:
        raise typer.Exit(code=1)


@app.command("events")
def events_command(
    workflow: Annotated[
        Optional[str], typer.Option("--workflow", "-w", help="Only this workflow")
    ] = None,
    collection_id: Annotated[
        Optional[str], typer.Option("--collection", "-c", help="Only this collection")
    ] = None,
    count: Annotated[int, typer.Option("--count", "-n", help="Number of events", min=1)] = 10,
):
    """Show recent collection events, newest last."""
    try:
        engine = _load_engine()
        events = engine.get_recent_events(n=count, workflow=workflow, collection_id=collection_id)
    except MarkflowError as e:
        _fail(e)

    if not events:
        typer.echo("No events recorded")
        return

    for event in events:
        when = format_timestamp(event["timestamp"])
        detail = ""
        if event["event_type"] == "status_change":
            detail = f" {event.get('old_status')} → {event.get('new_status')}"
        typer.echo(f"{when}  {event['event_type']:<15} {event['workflow']}/{event['collection_id']}{detail}")


@app.command("available")
def available_command():
    """Show workflows, converters and processors visible from here."""
    discovery = ConfigDiscovery()
    try:
        if discovery.is_in_project():
            config = discovery.resolve_configuration()
            environment = config.environment
            workflows = config.available_workflows
            system_settings = config.get("system", {})
        else:
            system_root, workflows = discovery.discover_system_configuration()
            environment = None
            system_settings = {}
    except MarkflowError as e:
        _fail(e)

    typer.secho("Workflows:", fg=typer.colors.BLUE, bold=True)
    for name in workflows:
        typer.echo(f"  {name}")

    if environment is None:
        typer.echo(f"\nSystem installation: {system_root}")
        typer.echo("Run 'wf.py init' to start a project.")
        return

    registry = ConverterRegistry.from_environment(environment, system_settings)
    typer.secho("\nConverters:", fg=typer.colors.BLUE, bold=True)
    for name in registry.list_converters():
        converter = registry.get_converter(name)
        typer.echo(f"  {name:<14} {', '.join(converter.supported_formats)}")
    typer.secho("\nProcessors:", fg=typer.colors.BLUE, bold=True)
    for name in registry.list_processors():
        typer.echo(f"  {name}")


if __name__ == "__main__":
    app()
