"""Typer-based CLI for the local module index."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__, config, config_manager
from .context import IngestContext
from .errors import IngestError, ManifestSyntaxError, ValidationRejected
from .fetch import DirectoryFetcher
from .ingest import IngestionOrchestrator
from .lifecycle import analyze_lifecycle
from .modfile import parse_modfile
from .models import IngestSummary, LifecycleStatus
from .store import VersionStore

console = Console()

app = typer.Typer(
    help="📦 modindex — ingest module versions and their lifecycle metadata.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="⚙️  Configuration — show and change settings.", no_args_is_help=True)
app.add_typer(config_app, name="config")

# Exit code reserved for "declined to overwrite good data"
EXIT_REJECTED = 2


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"modindex v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database file (default from config)."),
    log_level: str = typer.Option(config.LOG_LEVEL, "--log-level", help="Logging level."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """modindex: versioned module metadata with safe re-ingestion."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"db_path": db or config.DB_PATH}


def _open_store(ctx: typer.Context) -> VersionStore:
    db_path = (ctx.obj or {}).get("db_path") or config.DB_PATH
    return VersionStore(Path(db_path))


def _lifecycle_text(status: LifecycleStatus) -> str:
    parts = []
    if status.deprecated:
        parts.append(f"[yellow]deprecated[/yellow]: {escape(status.deprecation_reason) or '(no reason)'}")
    if status.retracted:
        parts.append(f"[red]retracted[/red]: {escape(status.retraction_reason) or '(no rationale)'}")
    return "\n".join(parts) or "[green]active[/green]"


def _print_summary(summary: IngestSummary) -> None:
    verb = "Replaced" if summary.replaced else "Stored"
    console.print(f"{verb} {escape(summary.module_path)}@{escape(summary.version)} ({summary.unit_count} units)")
    for path in summary.unit_paths:
        console.print(f"  {escape(path)}")
    console.print(_lifecycle_text(summary.lifecycle))


@app.command("ingest")
def ingest(
    ctx: typer.Context,
    module_path: str = typer.Argument(..., help="Module path, e.g. github.com/acme/lib."),
    versions: List[str] = typer.Argument(..., help="One or more versions, e.g. v1.2.3."),
    source: Path = typer.Option(..., "--source", "-s", exists=True, file_okay=False, help="Proxy-shaped module tree."),
    timeout: float = typer.Option(config.INGEST_TIMEOUT, help="Seconds allowed per version."),
    workers: int = typer.Option(config.INGEST_WORKERS, min=1, max=64, help="Parallel ingestions."),
):
    """Fetch, analyze and store module versions from a local tree."""
    orchestrator = IngestionOrchestrator(_open_store(ctx), DirectoryFetcher(source))

    if len(versions) == 1:
        try:
            results = {versions[0]: orchestrator.ingest(module_path, versions[0], IngestContext(timeout))}
        except IngestError as exc:
            results = {versions[0]: exc}
    else:
        batch = orchestrator.ingest_many(((module_path, v) for v in versions), workers=workers, timeout=timeout)
        results = {key.version: outcome for key, outcome in batch.items()}

    exit_code = 0
    for version, outcome in results.items():
        if isinstance(outcome, ValidationRejected):
            console.print(f"[red]Rejected[/red] {escape(module_path)}@{escape(version)}: kept the stored data. {escape(str(outcome))}")
            exit_code = max(exit_code, EXIT_REJECTED)
        elif isinstance(outcome, IngestError):
            console.print(f"[red]Failed[/red] ({outcome.kind.value}) {escape(str(outcome))}")
            exit_code = max(exit_code, 1)
        else:
            _print_summary(outcome)
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command("show")
def show(
    ctx: typer.Context,
    module_path: str = typer.Argument(..., help="Module path."),
    version: str = typer.Argument(..., help="Module version."),
):
    """Show a stored module version with its units."""
    store = _open_store(ctx)
    record = store.get_module(module_path, version)
    state = store.get_version_state(module_path, version)
    if record is None:
        console.print(f"{escape(module_path)}@{escape(version)} is not stored.")
        if state is not None:
            console.print(f"Last attempt: {state.status} {escape(state.error)}")
        raise typer.Exit(code=1)

    console.print(Panel(
        f"Commit time: {record.commit_time.isoformat()}\n"
        f"go.mod: {'yes' if record.has_go_mod else 'no'}\n"
        f"{_lifecycle_text(record.lifecycle)}",
        title=escape(f"{record.module_path}@{record.version}"),
    ))
    table = Table(title="Units")
    table.add_column("Path")
    table.add_column("Name")
    table.add_column("Licenses")
    table.add_column("Synopsis")
    for unit in record.units:
        licenses = ", ".join(t for lic in unit.licenses for t in lic.types) or "-"
        synopsis = unit.documentation.synopsis if unit.documentation else "-"
        table.add_row(escape(unit.path), escape(unit.name), licenses, synopsis)
    console.print(table)
    if state is not None:
        console.print(f"Last attempt: {state.status} at {state.attempted_at.isoformat()}")


@app.command("unit")
def unit(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Package import path."),
    version: str = typer.Argument(..., help="Module version."),
    module_path: Optional[str] = typer.Option(None, "--module", "-m", help="Module path, if ambiguous."),
    readme: bool = typer.Option(False, "--readme", help="Print the readme."),
):
    """Show one stored unit."""
    found = _open_store(ctx).get_unit(path, version, module_path)
    if found is None:
        console.print(f"Unit {escape(path)}@{escape(version)} not found.")
        raise typer.Exit(code=1)

    console.print(f"{escape(found.path)} (package {escape(found.name)})")
    console.print(f"Redistributable: {'yes' if found.is_redistributable else 'no'}")
    for lic in found.licenses:
        console.print(f"License: {', '.join(lic.types)} ({lic.file_path})")
    if found.source_info is not None:
        console.print(f"Source: {found.source_info.repo_url}")
    if found.documentation is not None:
        console.print(f"Synopsis: {found.documentation.synopsis}")
    if readme and found.readme is not None:
        console.print(Panel(escape(found.readme.contents), title=escape(found.readme.file_path)))


@app.command("lifecycle")
def lifecycle(
    gomod: Path = typer.Argument(..., exists=True, dir_okay=False, help="Path to a go.mod file."),
    version: str = typer.Argument(..., help="Resolved version to check."),
):
    """Report deprecation and retraction of VERSION according to a go.mod."""
    try:
        mod_file = parse_modfile(gomod.read_bytes(), filename=str(gomod))
        status = analyze_lifecycle(mod_file, version)
    except ManifestSyntaxError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)
    console.print(f"Deprecated: {status.deprecated}" + (f" ({escape(status.deprecation_reason)})" if status.deprecated else ""))
    console.print(f"Retracted: {status.retracted}" + (f" ({escape(status.retraction_reason)})" if status.retracted else ""))


@app.command("list")
def list_modules(ctx: typer.Context):
    """List stored module versions."""
    rows = _open_store(ctx).list_modules()
    if not rows:
        console.print("No modules stored yet.")
        raise typer.Exit(code=0)

    table = Table()
    table.add_column("Module")
    table.add_column("Version")
    table.add_column("Units", justify="right")
    table.add_column("Status")
    for row in rows:
        status = "retracted" if row["retracted"] else "deprecated" if row["deprecated"] else ""
        table.add_row(escape(row["module_path"]), escape(row["version"]), str(row["unit_count"]), status)
    console.print(table)


@app.command("delete")
def delete(
    ctx: typer.Context,
    module_path: str = typer.Argument(..., help="Module path."),
    version: str = typer.Argument(..., help="Module version."),
):
    """Delete a stored module version and all its units."""
    if not _open_store(ctx).delete_module(module_path, version):
        raise typer.BadParameter(f"{module_path}@{version} is not stored.")
    console.print(f"Deleted {escape(module_path)}@{escape(version)}.")


@config_app.command("show")
def config_show():
    """Print the effective configuration."""
    console.print(f"Config file: {config_manager.CONFIG_FILE}")
    for section, values in config_manager.effective_config().items():
        console.print(f"[bold]\\[{section}][/bold]")
        for key, value in values.items():
            console.print(f"  {key} = {value}")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Setting as section.key, e.g. docs.goos."),
    value: str = typer.Argument(..., help="New value."),
):
    """Change one setting in the config file."""
    try:
        saved = config_manager.set_value(key, value)
    except KeyError:
        raise typer.BadParameter(f"Unknown setting '{key}'.")
    except ValueError:
        raise typer.BadParameter(f"Invalid value '{value}' for '{key}'.")
    if not saved:
        console.print("[red]Could not write the config file.[/red]")
        raise typer.Exit(code=1)
    console.print(f"Set {key} = {value}")


if __name__ == "__main__":
    app()
