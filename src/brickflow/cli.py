"""CLI entry point for the brickflow runtime.

Provides ``run``, ``validate``, and ``bricks`` sub-commands using
Click and Rich for output formatting.

Usage::

    brickflow run pipeline.yaml --input '{"name": "World"}' --verbose
    brickflow validate pipeline.yaml --strict
    brickflow bricks
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from brickflow.bricks.registry import create_default_registry
from brickflow.config import RuntimeSettings
from brickflow.errors import BrickflowError, get_error_message, get_root_cause
from brickflow.runtime.loader import LoadedPipeline, load_pipeline_file
from brickflow.runtime.models import ApiVersion, InitialValues
from brickflow.runtime.reducer import PipelineReducer
from brickflow.runtime.trace import TraceRecorder
from brickflow.runtime.validator import LintLevel, has_errors, lint_pipeline

console = Console()

_LEVEL_STYLES = {
    LintLevel.ERROR: "red",
    LintLevel.WARNING: "yellow",
    LintLevel.INFO: "blue",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_settings() -> RuntimeSettings:
    # .env.local takes precedence; load_dotenv never overrides set variables
    load_dotenv(".env.local")
    load_dotenv(".env")
    try:
        return RuntimeSettings.from_env()
    except ValueError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise SystemExit(1) from exc


def _load(path: str) -> LoadedPipeline:
    try:
        return load_pipeline_file(path)
    except Exception as exc:
        console.print(f"[red]Failed to parse pipeline:[/red] {exc}")
        raise SystemExit(1) from exc


def _json_object(value: str | None, option: str) -> dict[str, Any]:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"invalid JSON: {exc}", param_hint=option) from exc
    if not isinstance(data, dict):
        raise click.BadParameter("expected a JSON object", param_hint=option)
    return data


@click.group()
@click.version_option(package_name="brickflow")
def main() -> None:
    """Brickflow - run brick pipelines from the command line."""


@main.command()
@click.argument("pipeline_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--input", "input_json", default=None, help="Pipeline input as a JSON object.")
@click.option("--options", "options_json", default=None, help="Mod options as a JSON object.")
@click.option(
    "--api-version",
    type=click.Choice([v.value for v in ApiVersion]),
    default=None,
    help="API version (overrides the file and BRICKFLOW_API_VERSION).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option("--trace", "show_trace", is_flag=True, help="Print a table of brick runs.")
def run(
    pipeline_file: str,
    input_json: str | None,
    options_json: str | None,
    api_version: str | None,
    verbose: bool,
    show_trace: bool,
) -> None:
    """Execute a pipeline from a JSON or YAML file."""
    _setup_logging(verbose)
    settings = _load_settings()
    loaded = _load(pipeline_file)

    initial_values = InitialValues(
        input=_json_object(input_json, "--input"),
        options_args=_json_object(options_json, "--options"),
    )
    version = api_version or loaded.api_version or settings.api_version

    trace = TraceRecorder()
    reducer = PipelineReducer(trace=trace, settings=settings)

    console.print(
        f"[bold green]Running pipeline:[/bold green] {pipeline_file} "
        f"({len(loaded.pipeline)} step(s), {ApiVersion(version).value})"
    )
    try:
        result = asyncio.run(reducer.reduce(loaded.pipeline, initial_values, version))
    except BrickflowError as exc:
        if show_trace:
            _print_trace(trace)
        root = get_root_cause(exc)
        console.print(f"[red]Pipeline failed:[/red] {get_error_message(exc)}")
        if root is not exc:
            console.print(f"  [red]{type(root).__name__}:[/red] {get_error_message(root)}")
        raise SystemExit(1) from exc

    if show_trace:
        _print_trace(trace)
    console.print("[bold green]Pipeline completed.[/bold green]")
    console.print_json(json.dumps(result, default=str))


@main.command()
@click.argument("pipeline_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--strict", is_flag=True, help="Treat warnings as errors.")
@click.option(
    "--api-version",
    type=click.Choice([v.value for v in ApiVersion]),
    default=None,
    help="API version to lint against.",
)
def validate(pipeline_file: str, strict: bool, api_version: str | None) -> None:
    """Lint a pipeline file without executing it."""
    settings = _load_settings()
    loaded = _load(pipeline_file)
    version = api_version or loaded.api_version or settings.api_version

    findings = lint_pipeline(loaded.pipeline, create_default_registry(settings), version)

    if not findings:
        console.print("[green]Pipeline is valid.[/green]")
        return

    table = Table(title="Validation Results")
    table.add_column("Level", style="bold")
    table.add_column("Location")
    table.add_column("Rule")
    table.add_column("Message")

    for f in findings:
        style = _LEVEL_STYLES[f.level]
        table.add_row(f"[{style}]{f.level.value}[/{style}]", f.path, f.rule, f.message)

    console.print(table)

    blocking = [f for f in findings if f.level != LintLevel.INFO]
    if has_errors(findings) or (strict and blocking):
        raise SystemExit(1)


@main.command()
def bricks() -> None:
    """List the built-in bricks."""
    registry = create_default_registry(_load_settings())

    table = Table(title="Bricks")
    table.add_column("Id", style="cyan")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Description")

    for brick in registry.all():
        table.add_row(brick.id, brick.kind.value, brick.name, brick.description)

    console.print(table)


def _print_trace(trace: TraceRecorder) -> None:
    """Print the trace records of the last run in a table."""
    if not trace.records:
        return

    table = Table(title="Trace")
    table.add_column("Brick", style="cyan")
    table.add_column("Branches")
    table.add_column("Status")
    table.add_column("Output")

    for record in trace.records:
        if record.skipped_run:
            status = "[yellow]skipped[/yellow]"
        elif record.error or record.render_error:
            status = "[red]error[/red]"
        elif record.is_final:
            status = "[green]ok[/green]"
        else:
            status = "running"
        error = record.error or record.render_error
        detail = error["message"] if error else json.dumps(record.output, default=str)
        table.add_row(record.brick_id, " > ".join(record.branches), status, detail[:200])

    console.print(table)


if __name__ == "__main__":
    main()
