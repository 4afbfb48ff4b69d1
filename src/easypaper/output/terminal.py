"""Rich terminal reporter — build diagnostics, history, diffs."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table
from rich.text import Text

from easypaper.build.models import BuildResult, Diagnostic
from easypaper.versioning.models import CommitKind, GcReport, HistoryView

_KIND_STYLE = {
    "error": "bold white on red",
    "warning": "bold black on yellow",
}


def _kind_pill(diag: Diagnostic) -> Text:
    return Text(f" {diag.kind.value.upper()} ", style=_KIND_STYLE.get(diag.kind.value, ""))


def _location(diag: Diagnostic) -> str:
    if diag.file and diag.line:
        return f"{diag.file}:{diag.line}"
    if diag.file:
        return diag.file
    if diag.line:
        return f"line {diag.line}"
    return "-"


def render_build(result: BuildResult, console: Console | None = None) -> None:
    """Print a build result using Rich."""
    console = console or Console(stderr=True)
    diagnostics = [*result.errors, *result.warnings]

    if diagnostics:
        console.print()
        table = Table(
            title="Build Diagnostics",
            show_lines=True,
            title_style="bold",
            border_style="dim",
        )
        table.add_column("Kind", justify="center", width=11)
        table.add_column("Location", style="magenta")
        table.add_column("Message", min_width=30)
        for diag in diagnostics:
            table.add_row(_kind_pill(diag), _location(diag), diag.message)
        console.print(table)

    console.print()
    if result.success:
        console.print(f"[bold green]✅ Build succeeded[/bold green] → {result.pdf_path}")
    else:
        console.print("[bold red]❌ Build failed[/bold red]")
    console.print(f"[dim]Engine:[/dim]    {result.engine or '-'}")
    console.print(f"[dim]Errors:[/dim]    {len(result.errors)}")
    console.print(f"[dim]Warnings:[/dim]  {len(result.warnings)}")
    console.print(f"[dim]Duration:[/dim]  {result.duration_ms}ms")


def render_history(view: HistoryView, console: Console | None = None) -> None:
    """Print the commit log, newest first, marking the head."""
    console = console or Console(stderr=True)
    if not view.commits:
        console.print("[dim]No history yet.[/dim]")
    else:
        table = Table(title="History", title_style="bold", border_style="dim")
        table.add_column("", width=1)
        table.add_column("Commit", style="cyan")
        table.add_column("When", style="green")
        table.add_column("Kind")
        table.add_column("Files", justify="right")
        table.add_column("Message")
        for commit in reversed(view.commits):
            if commit.kind is CommitKind.COMPILE:
                mark = "✓" if commit.build_success else ("✗" if commit.build_success is False else "")
                kind = f"compile {mark}".strip()
            else:
                kind = "save"
            table.add_row(
                "*" if commit.id == view.head else "",
                commit.id[:8],
                commit.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                kind,
                str(len(commit.files)),
                commit.message or ", ".join(ref.path for ref in commit.files),
            )
        console.print(table)
    if view.corrupted:
        console.print(f"[yellow]⚠[/yellow]  {view.corrupted} corrupted commit record(s) skipped")


def render_diff(text: str, console: Console | None = None) -> None:
    console = console or Console()
    for line in text.splitlines():
        if line.startswith(("+++", "---")):
            console.print(Text(line, style="bold"))
        elif line.startswith("+"):
            console.print(Text(line, style="green"))
        elif line.startswith("-"):
            console.print(Text(line, style="red"))
        elif line.startswith("@@"):
            console.print(Text(line, style="cyan"))
        else:
            console.print(Text(line))


def render_gc(report: GcReport, console: Console | None = None) -> None:
    console = console or Console(stderr=True)
    verb = "Would delete" if report.dry_run else "Deleted"
    console.print(
        f"{verb} {len(report.deleted)} of {report.examined} blob(s), "
        f"{report.bytes_freed} bytes; {report.remaining} remain."
    )
