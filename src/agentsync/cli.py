"""agentsync CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

import click

from agentsync import __version__

if TYPE_CHECKING:
    from agentsync.sync import SyncResult

_LOG_HANDLER_NAME = "agentsync-cli"


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    """Route package logs to stderr through rich."""
    from rich.console import Console
    from rich.logging import RichHandler

    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    package_logger = logging.getLogger("agentsync")
    for handler in list(package_logger.handlers):
        if handler.get_name() == _LOG_HANDLER_NAME:
            package_logger.removeHandler(handler)
    handler = RichHandler(console=Console(stderr=True), show_path=False, show_time=False)
    handler.set_name(_LOG_HANDLER_NAME)
    handler.setLevel(level)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)


@click.group()
@click.version_option(version=__version__, prog_name="agentsync")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """agentsync - keep agent project source files in sync with the project model."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


def _read_project(stream: IO[str]) -> dict[str, Any]:
    """Parse the full-project JSON, unwrapping a ``{"data": {...}}`` envelope."""
    try:
        data = json.load(stream)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Invalid project JSON: {exc}") from exc
    if isinstance(data, dict) and "id" not in data and isinstance(data.get("data"), dict):
        data = data["data"]
    if not isinstance(data, dict):
        raise click.ClickException("Project JSON must be an object")
    return data


def _print_summary(result: SyncResult, *, show_diff: bool) -> None:
    from rich.console import Console
    from rich.table import Table

    from agentsync.codegen.emitter import FileStatus

    console = Console()
    table = Table(title="Entities", show_header=False, box=None, padding=(0, 1))
    table.add_column("outcome", style="cyan")
    table.add_column("count", justify="right")
    for outcome, count in result.counts().items():
        table.add_row(outcome, str(count))
    console.print(table)

    changed = result.changed_files
    if changed:
        console.print()
        for item in changed:
            marker = "+" if item.created else "~"
            if item.status in (FileStatus.DELETED, FileStatus.WOULD_DELETE):
                marker = "-"
            console.print(f"  {marker} {item.path} [dim]({item.status.value})[/]", highlight=False)
    else:
        console.print("\nNo files changed.")

    if result.failed:
        console.print()
        console.print("[bold red]Failures:[/]")
        for entity in result.failed:
            console.print(f"  {entity.ref}: {entity.message}", highlight=False, markup=False)

    warnings = [w for entity in result.entities for w in entity.warnings] + result.warnings
    if warnings:
        console.print()
        console.print("[yellow]Warnings:[/]")
        for warning in warnings:
            console.print(f"  {warning}", highlight=False, markup=False)

    if show_diff:
        for item in changed:
            if item.diff:
                click.echo(item.diff, nl=False)


@main.command()
@click.argument("project_file", type=click.File("r", encoding="utf-8"))
@click.option(
    "--target-dir",
    "-t",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the project sources (default: current directory).",
)
@click.option(
    "--mode",
    type=click.Choice(["merge", "overwrite", "dry-run"]),
    default="merge",
    show_default=True,
    help="How existing files are treated.",
)
@click.option(
    "--removed",
    type=click.Choice(["keep", "report", "delete"]),
    default=None,
    help="Policy for declarations no longer in the project (default: from config).",
)
@click.option("--json", "output_json", is_flag=True, help="Structured JSON output.")
@click.option("--diff", "show_diff", is_flag=True, help="Print unified diffs of changed files.")
def pull(
    project_file: IO[str],
    *,
    target_dir: Path | None,
    mode: str,
    removed: str | None,
    output_json: bool,
    show_diff: bool,
) -> None:
    """Synchronize source files with PROJECT_FILE (full-project JSON, '-' for stdin).

    Exit codes: 0 = ok, 1 = fatal error, 2 = at least one entity failed.
    """
    from agentsync.errors import FatalSyncError, GraphValidationError
    from agentsync.sync import synchronize

    data = _read_project(project_file)
    try:
        result = synchronize(data, target_dir or Path.cwd(), mode=mode, removal=removed)
    except GraphValidationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except FatalSyncError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if output_json:
        payload = result.to_dict()
        if show_diff:
            payload["diffs"] = {f.path: f.diff for f in result.files if f.diff}
        click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        _print_summary(result, show_diff=show_diff)

    if result.failed:
        sys.exit(2)


@main.command("index")
@click.option(
    "--target-dir",
    "-t",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the project sources (default: current directory).",
)
@click.option("--json", "output_json", is_flag=True, help="Structured JSON output.")
def index_cmd(*, target_dir: Path | None, output_json: bool) -> None:
    """List the builder declarations found in the source tree."""
    from agentsync.config import load_config
    from agentsync.source.indexer import index_directory

    root = target_dir or Path.cwd()
    config = load_config(root)
    index = index_directory(
        root, config.factory_kinds(), style=config.style, exclude=config.exclude
    )
    bound = sorted(index.bindings.bound(), key=lambda item: item[1].location)

    if output_json:
        data = {
            "declarations": [
                {
                    "kind": ref.kind.value,
                    "id": ref.id,
                    "name": decl.name,
                    "location": decl.location,
                    "exported": decl.exported,
                    "leading_comments": decl.leading_comments,
                    "blank_lines_before": decl.blank_lines_before,
                }
                for ref, decl in bound
            ],
            "manual": [
                {"kind": d.kind.value, "name": d.name, "location": d.location}
                for d in index.bindings.manual
            ],
            "ambiguous": [
                {"kind": ref.kind.value, "id": ref.id, "locations": [d.location for d in decls]}
                for ref, decls in index.bindings.ambiguous.items()
            ],
            "parse_errors": [{"path": e.path, "detail": e.detail} for e in index.errors.values()],
        }
        click.echo(json.dumps(data, ensure_ascii=False, indent=2))
        return

    if not bound and not index.bindings.manual:
        click.echo("No declarations found.")
    for ref, decl in bound:
        click.echo(f"  {ref.kind.value:<18} {ref.id:<30} {decl.name} ({decl.location})")
    for decl in index.bindings.manual:
        click.echo(f"  {decl.kind.value:<18} {'<manual>':<30} {decl.name} ({decl.location})")
    for ref, decls in index.bindings.ambiguous.items():
        locations = ", ".join(d.location for d in decls)
        click.echo(f"  [ambiguous] {ref}: {locations}")
    for error in index.errors.values():
        click.echo(f"  [parse error] {error}")
