"""CLI interface for jitwatch.

Typer-based command-line interface with Rich output formatting.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from jitwatch import __version__
from jitwatch.candidates import resolve_candidates
from jitwatch.config import DEFAULT_CONFIG_FILES, ConfigLoader, default_config, save_config
from jitwatch.env import Environment
from jitwatch.exceptions import JitwatchError
from jitwatch.session import BuildSession, DependencyKind, SourceEvent
from jitwatch.source import find_directives, find_imports
from jitwatch.touch import TouchFileController

if TYPE_CHECKING:
    from jitwatch.context import ChangedContent, Context

__all__ = ["app"]

app = typer.Typer(
    name="jitwatch",
    help="Build-context tracking and change detection for utility-class CSS compilers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

DEFAULT_CONTENT = ["./src/**/*.{html,js}"]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(code=1)


def _read_source(source: Path) -> tuple[set[str], tuple[str, ...]]:
    if not source.is_file():
        _fail(f"Source not found: {source}")
    text = source.read_text(encoding="utf-8")
    return find_directives(text), tuple(find_imports(text, source.parent))


def _content_table(records: list[ChangedContent]) -> Table:
    table = Table(show_header=True, box=None, padding=(0, 2))
    table.add_column("ext", style="dim")
    table.add_column("chars", justify="right")
    table.add_column("preview")
    for record in records:
        preview = record.content.strip().splitlines()[0][:60] if record.content.strip() else ""
        table.add_row(record.extension, str(len(record.content)), preview)
    return table


@app.command()
def version() -> None:
    """Show jitwatch version."""
    console.print(f"jitwatch {__version__}")


@app.command()
def init(
    content: Annotated[
        list[str] | None,
        typer.Option("--content", "-c", help="Content path or glob (repeatable)"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing config"),
    ] = False,
) -> None:
    """Write a starter jitwatch.config.toml in the current directory."""
    path = Path.cwd() / DEFAULT_CONFIG_FILES[0]
    if path.exists() and not force:
        _fail(f"{path.name} already exists. Use --force to overwrite.")

    config = default_config()
    config["content"] = list(content or DEFAULT_CONTENT)
    try:
        save_config(config, path)
    except JitwatchError as e:
        _fail(str(e))

    console.print(f"[green]Created[/green] {path}")


@app.command(name="config")
def config_cmd(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Config file (default: search current directory)"),
    ] = None,
) -> None:
    """Show the resolved config hash, dependencies and candidates."""
    try:
        resolved = ConfigLoader().resolve(config_path)
    except JitwatchError as e:
        _fail(str(e))

    console.print(f"[bold]Config:[/bold] {resolved.source_path or '(inline defaults)'}")
    console.print(f"[bold]Hash:[/bold] {resolved.hash}")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("kind", style="dim")
    table.add_column("path")
    for dep in sorted(resolved.dependencies):
        table.add_row("dependency", str(dep))
    for candidate in resolve_candidates(resolved):
        table.add_row("candidate", candidate)
    console.print(table)


@app.command()
def build(
    source: Annotated[Path, typer.Argument(help="Stylesheet to build")],
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Config file (default: search current directory)"),
    ] = None,
) -> None:
    """Run one build-mode request and list the content it discovered."""
    source = source.resolve()
    directives, imports = _read_source(source)
    dependencies: list[tuple[str, DependencyKind]] = []

    session = BuildSession(Environment.from_environ())
    try:
        request = session.tracking_build(
            config_path, directives, lambda path, kind: dependencies.append((path, kind))
        )
        context = request(SourceEvent(str(source), imports))
    except JitwatchError as e:
        _fail(str(e))
    finally:
        session.shutdown()

    records = context.consume_changed_content()
    if not directives:
        console.print("[yellow]No @tailwind directives found; nothing to scan.[/yellow]")
    console.print(f"[bold]{len(records)}[/bold] changed content record(s)")
    if records:
        console.print(_content_table(records))

    for path, kind in dependencies:
        console.print(f"  [dim]{kind}[/dim] {path}")


def _stamp(path: str) -> int | None:
    try:
        return Path(path).stat().st_mtime_ns
    except OSError:
        return None


@app.command()
def watch(
    source: Annotated[Path, typer.Argument(help="Stylesheet to build")],
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Config file (default: search current directory)"),
    ] = None,
    interval: Annotated[
        float,
        typer.Option("--interval", "-i", help="Seconds between rebuild checks"),
    ] = 0.5,
) -> None:
    """Watch candidate files and report new content until interrupted."""
    source = source.resolve()
    directives, imports = _read_source(source)
    event = SourceEvent(str(source), imports)
    watched: dict[str, None] = {}

    session = BuildSession(Environment.from_environ())
    request = session.watching_build(
        config_path, directives, lambda path, _kind: watched.setdefault(path, None)
    )

    def rebuild() -> Context:
        context = request(event)
        records = context.consume_changed_content()
        if records:
            console.print(f"[green]{len(records)}[/green] new content record(s)")
            console.print(_content_table(records))
        return context

    try:
        session.init()
        context = rebuild()
        console.print("[bold]Watching for changes...[/bold] (Ctrl+C to stop)")
        stamps = {path: _stamp(path) for path in watched}
        while True:
            time.sleep(interval)
            current = {path: _stamp(path) for path in watched}
            if current != stamps or context.changed_content:
                context = rebuild()
                stamps = {path: _stamp(path) for path in watched}
    except JitwatchError as e:
        _fail(str(e))
    except KeyboardInterrupt:
        console.print("\nStopped.")
    finally:
        session.shutdown()


@app.command()
def clean() -> None:
    """Delete touch files left behind by earlier processes."""
    env = Environment.from_environ()
    directory = env.resolved_touch_dir
    existing = len(list(directory.iterdir())) if directory.is_dir() else 0
    try:
        TouchFileController(directory).init()
    except JitwatchError as e:
        _fail(str(e))
    console.print(f"Removed {existing} touch file(s) from {directory}")
