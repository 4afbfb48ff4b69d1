"""EasyPaper CLI — Typer application with history, build and maintenance commands."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from easypaper import __version__

app = typer.Typer(
    name="easypaper",
    help="Local snapshot history and supervised LaTeX builds for a paper project.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console(stderr=True)

_USAGE_CODES = ("config_error", "invalid_argument")


@contextmanager
def _service(config: Optional[str] = None) -> Iterator:
    """Open a ProjectService and stop its workers on the way out."""
    from easypaper.service import ProjectService

    service = ProjectService(config_override=config)
    try:
        yield service
    finally:
        service.close_all()


def _check_format(format: str) -> None:
    if format not in ("terminal", "json"):
        console.print(f"[bold red]Invalid format:[/bold red] {format}")
        raise typer.Exit(code=2)


def _unwrap(response):
    """Return the response data, or report the failure and exit."""
    if response.ok:
        return response.data
    if response.unavailable:
        console.print(
            "[yellow]⚠[/yellow]  Versioning is not set up here. Run [bold]easypaper init[/bold] first."
        )
        raise typer.Exit(code=1)
    label = "Config error" if response.code == "config_error" else "Error"
    console.print(f"[bold red]{label}:[/bold red] {response.error}")
    raise typer.Exit(code=2 if response.code in _USAGE_CODES else 1)


# ── init ──────────────────────────────────────────────────────────────────────


@app.command()
def init(
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
    with_config: bool = typer.Option(False, "--config", help="Also write a starter .easypaper/project.yml"),
) -> None:
    """Set up snapshot history for the project (safe to re-run)."""
    from easypaper.config.defaults import DEFAULT_YAML
    from easypaper.config.loader import config_path

    if with_config:
        path = config_path(Path(project))
        if path.exists():
            console.print(f"[yellow]⚠[/yellow]  {path} already exists")
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(DEFAULT_YAML, encoding="utf-8")
            console.print(f"[green]✓[/green] Created {path}")

    with _service() as service:
        state = _unwrap(service.version_init(project))
    console.print(f"[green]✓[/green] Versioning ready (created {state['created']})")


# ── save / commit ─────────────────────────────────────────────────────────────


@app.command()
def save(
    file: str = typer.Argument(..., help="File to snapshot, relative to the project"),
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
    stdin: bool = typer.Option(False, "--stdin", help="Read the content from stdin instead of the file"),
) -> None:
    """Snapshot one file and record a save commit."""
    if stdin:
        content = sys.stdin.buffer.read()
    else:
        path = Path(file) if Path(file).is_absolute() else Path(project) / file
        try:
            content = path.read_bytes()
        except OSError as exc:
            console.print(f"[bold red]Error:[/bold red] cannot read {path}: {exc}")
            raise typer.Exit(code=2) from exc

    with _service() as service:
        commit_id = _unwrap(service.version_save(project, file, content))
    print(commit_id)


@app.command()
def commit(
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Commit message"),
    success: Optional[bool] = typer.Option(None, "--success/--failure", help="Record a build outcome"),
) -> None:
    """Record every tracked file that changed since it was last snapshotted."""
    with _service() as service:
        commit_id = _unwrap(service.version_commit(project, message, success))
    print(commit_id)


# ── history / restore / diff ──────────────────────────────────────────────────


@app.command()
def history(
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
    format: str = typer.Option("terminal", "--format", "-f", help="Output format: terminal | json"),
) -> None:
    """List commits (JSON oldest first, terminal newest first)."""
    from easypaper.output import json_report, terminal

    _check_format(format)
    with _service() as service:
        view = _unwrap(service.version_history(project))

    if format == "json":
        print(json_report.render(view))
    else:
        terminal.render_history(view, console)


@app.command()
def restore(
    commit_ref: str = typer.Argument(..., metavar="COMMIT", help="Commit id or unique prefix"),
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
) -> None:
    """Overwrite working files with their content as of COMMIT."""
    with _service() as service:
        commit_id = _unwrap(service.version_resolve(project, commit_ref))
        restored = _unwrap(service.version_restore(project, commit_id))

    if not restored:
        console.print("[dim]Working files already match that commit.[/dim]")
    for path in restored:
        console.print(f"[green]✓[/green] restored {path}")


@app.command()
def diff(
    commit_ref: str = typer.Argument(..., metavar="COMMIT", help="Commit id or unique prefix"),
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
    format: str = typer.Option("terminal", "--format", "-f", help="Output format: terminal | json"),
) -> None:
    """Show how the working files differ from COMMIT."""
    from easypaper.output import json_report, terminal

    _check_format(format)
    with _service() as service:
        commit_id = _unwrap(service.version_resolve(project, commit_ref))
        delta = _unwrap(service.version_compare(project, commit_id))

    if format == "json":
        print(json_report.render(delta))
    else:
        terminal.render_diff(delta.render())


# ── compile / clean ───────────────────────────────────────────────────────────


@app.command(name="compile")
def compile_(
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to a project.yml"),
    format: str = typer.Option("terminal", "--format", "-f", help="Output format: terminal | json"),
) -> None:
    """Compile the main file and record the outcome in history."""
    from easypaper.output import json_report, terminal

    _check_format(format)
    with _service(config) as service:
        result = _unwrap(service.build_compile(project))

    if format == "json":
        print(json_report.render(result))
    else:
        terminal.render_build(result, console)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def clean(
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
) -> None:
    """Delete generated build artifacts (never sources or history)."""
    with _service() as service:
        removed = _unwrap(service.build_clean(project))
    console.print(f"[green]✓[/green] Removed {len(removed)} artifact(s)")


# ── gc ────────────────────────────────────────────────────────────────────────


@app.command()
def gc(
    project: str = typer.Option(".", "--project", "-p", help="Project directory"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report without deleting"),
    force: bool = typer.Option(False, "--force", help="Run even if some commit records are unreadable"),
    format: str = typer.Option("terminal", "--format", "-f", help="Output format: terminal | json"),
) -> None:
    """Delete snapshot blobs that no commit references."""
    from easypaper.output import json_report, terminal

    _check_format(format)
    with _service() as service:
        report = _unwrap(service.version_gc(project, dry_run=dry_run, force=force))

    if format == "json":
        print(json_report.render(report))
    else:
        terminal.render_gc(report, console)


# ── version ───────────────────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        print(f"easypaper {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V", callback=_version_callback,
        is_eager=True, help="Show version and exit",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Debug output"),
) -> None:
    """EasyPaper — local history and builds for LaTeX projects."""
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=debug)],
        force=True,
    )
