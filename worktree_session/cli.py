"""
worktree-session CLI

Command line front-end over the session document and the port monitor.

Usage:
    worktree-session list [--json]
    worktree-session show WORKSPACE_ID [--json]
    worktree-session open PATH
    worktree-session scan WORKSPACE_ID
    worktree-session delete WORKSPACE_ID [--remove-worktrees]
    worktree-session ports PID --worktree ID [--cwd DIR] [--duration SECONDS]
    worktree-session migrate

Exit codes:
    0 - Success
    1 - Operation failed (not found, validation, I/O, git)
    2 - Unexpected error
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
import psutil
from pydantic import ValidationError
from rich.console import Console

from . import __version__
from .app import SessionApp
from .config import SessionSettings
from .displays import session_display
from .errors import OperationResult
from .logging_config import setup_logging


def _app(ctx: click.Context) -> SessionApp:
    """Build the SessionApp once per invocation (collaborators may be injected via ctx.obj)."""
    if "app" not in ctx.obj:
        ctx.obj["app"] = SessionApp(
            ctx.obj["settings"],
            git=ctx.obj.get("git"),
            port_query=ctx.obj.get("port_query")
        )
    return ctx.obj["app"]


def _print_error(console: Console, error: dict) -> None:
    console.print(f"[red]Error: {error.get('message', 'unknown error')}[/red]")
    if error.get("suggestion"):
        console.print(f"[dim]Tip: {error['suggestion']}[/dim]")


def _fail(console: Console, result: OperationResult) -> None:
    _print_error(console, result.error.to_dict())
    sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name="worktree-session")
@click.option("--config-dir", type=click.Path(file_okay=False, path_type=Path), help="Directory holding config.json")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_dir: Optional[Path], verbose: bool, debug: bool):
    """Manage workspaces, worktrees and tab layouts of the session document."""
    ctx.ensure_object(dict)
    setup_logging(verbose=verbose, debug=debug)

    try:
        ctx.obj["settings"] = SessionSettings.from_env(config_dir=config_dir)
    except ValidationError as e:
        Console(stderr=True).print(f"[red]Invalid configuration: {e}[/red]")
        sys.exit(2)


@cli.command("list")
@click.option("--json", "output_json", is_flag=True, help="Output JSON instead of a table")
@click.pass_context
def list_workspaces(ctx: click.Context, output_json: bool):
    """List all workspaces (* marks the last opened one)."""
    console = Console()

    try:
        app = _app(ctx)

        async def fetch():
            return await app.manager.list_workspaces(), await app.manager.get_last_opened()

        workspaces, last_opened = asyncio.run(fetch())
        if not workspaces.success:
            _fail(console, workspaces)

        if output_json:
            click.echo(session_display.format_json(workspaces.to_dict()["value"]))
        else:
            last_opened_id = last_opened.value.id if last_opened.success and last_opened.value else None
            session_display.display_workspaces(workspaces.value, last_opened_id, console)

    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(2)


@cli.command()
@click.argument("workspace_id")
@click.option("--json", "output_json", is_flag=True, help="Output JSON instead of a tree")
@click.pass_context
def show(ctx: click.Context, workspace_id: str, output_json: bool):
    """
    Show a workspace's worktrees, tab groups and tabs.

    The active selection is highlighted.
    """
    console = Console()

    try:
        result = asyncio.run(_app(ctx).manager.get_workspace(workspace_id))
        if not result.success:
            _fail(console, result)

        if output_json:
            click.echo(session_display.format_json(result.to_dict()["value"]))
        else:
            session_display.display_workspace_tree(result.value, console)

    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(2)


@cli.command("open")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def open_repository(ctx: click.Context, path: str):
    """Open a git repository as a workspace (reusing an existing one)."""
    console = Console()

    try:
        response = asyncio.run(_app(ctx).router.handle("open-repository", {"path": path}))
        if not response["success"]:
            _print_error(console, response["error"])
            sys.exit(1)

        workspace = response["value"]
        console.print(
            f"[green]Opened workspace[/green] [bold]{workspace['name']}[/bold] "
            f"({workspace['branch']}) [dim]{workspace['id']}[/dim]"
        )

    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(2)


@cli.command()
@click.argument("workspace_id")
@click.pass_context
def scan(ctx: click.Context, workspace_id: str):
    """Import worktrees that exist on disk but not in the workspace."""
    console = Console()

    try:
        result = asyncio.run(_app(ctx).manager.scan_and_import_worktrees(workspace_id))
        if not result.success:
            _fail(console, result)

        if not result.value:
            console.print("[dim]No new worktrees found[/dim]")
        for worktree in result.value:
            console.print(f"[green]Imported[/green] {worktree.branch} [dim]{worktree.path}[/dim]")

    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(2)


@cli.command()
@click.argument("workspace_id")
@click.option("--remove-worktrees", is_flag=True, help="Also remove the worktrees from disk")
@click.confirmation_option(prompt="Delete this workspace?")
@click.pass_context
def delete(ctx: click.Context, workspace_id: str, remove_worktrees: bool):
    """Delete a workspace and its worktree records."""
    console = Console()

    try:
        result = asyncio.run(_app(ctx).manager.delete_workspace(workspace_id, remove_worktrees))
        if not result.success:
            _fail(console, result)

        console.print(f"[green]Deleted workspace {workspace_id}[/green]")

    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(2)


@cli.command()
@click.argument("pid", type=int)
@click.option("--worktree", "worktree_id", required=True, help="Worktree the process belongs to")
@click.option("--cwd", type=str, default=None, help="Working directory used to name the service")
@click.option("--duration", type=float, default=10.0, show_default=True, help="Seconds to watch")
@click.option("--terminal-id", type=str, default=None, help="Terminal id (default: pid-<PID>)")
@click.pass_context
def ports(
    ctx: click.Context,
    pid: int,
    worktree_id: str,
    cwd: Optional[str],
    duration: float,
    terminal_id: Optional[str]
):
    """
    Watch the listening TCP ports of a process tree.

    Prints detected/closed ports as they happen, then the service -> port
    map of the worktree. Use Ctrl+C to stop early.
    """
    console = Console()

    if duration <= 0:
        console.print("[red]Error: --duration must be positive[/red]")
        sys.exit(1)

    try:
        process = psutil.Process(pid)
    except psutil.NoSuchProcess:
        console.print(f"[red]Error: process {pid} not found[/red]")
        sys.exit(1)

    try:
        app = _app(ctx)
        terminal_id = terminal_id or f"pid-{pid}"

        async def watch():
            app.monitor.subscribe(lambda event: session_display.display_port_event(event, console))
            try:
                await app.monitor.start_monitoring(terminal_id, worktree_id, process, cwd=cwd)
                await asyncio.sleep(duration)
                return app.monitor.get_detected_ports_map(worktree_id)
            finally:
                await app.shutdown()

        console.print(f"[cyan]Watching ports of pid {pid} for {duration:g}s (Ctrl+C to stop)...[/cyan]")
        try:
            services = asyncio.run(watch())
        except KeyboardInterrupt:
            console.print("\n[dim]Stopped watching[/dim]")
            return

        session_display.display_ports_map(services, console)

    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(2)


@cli.command()
@click.pass_context
def migrate(ctx: click.Context):
    """Upgrade the session document to the current schema and rewrite it."""
    console = Console()

    try:
        store = _app(ctx).store
        document = store.load()
        if store.last_error is not None:
            _print_error(console, store.last_error.to_dict())
            console.print("[yellow]Document left untouched[/yellow]")
            sys.exit(1)

        if not store.save(document):
            _print_error(console, store.last_error.to_dict())
            sys.exit(1)

        console.print(
            f"[green]Session document at schema version {document.version}[/green] "
            f"[dim]({len(document.workspaces)} workspace(s), {store.config_file})[/dim]"
        )

    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(2)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
