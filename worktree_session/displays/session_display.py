"""
Session Display Module

Rich-formatted display for workspaces, their worktree trees and port events.
"""

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..models.ports import PortClosedEvent, PortDetectedEvent
from ..models.session import Workspace


def format_timestamp(value) -> str:
    """Format a datetime for tables (local time, minutes)."""
    if value is None:
        return "N/A"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def display_workspaces(
    workspaces: List[Workspace],
    last_opened_id: Optional[str] = None,
    console: Console = None
) -> None:
    """
    Display workspaces in a table.

    Args:
        workspaces: Workspaces to list
        last_opened_id: Id of the last opened workspace (marked with *)
        console: Rich console (optional, creates new if not provided)
    """
    if console is None:
        console = Console()

    if not workspaces:
        console.print("[dim]No workspaces. Open one with: worktree-session open PATH[/dim]")
        return

    table = Table(title="Workspaces")
    table.add_column("", width=1)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="bold cyan")
    table.add_column("Repository")
    table.add_column("Branch", style="green")
    table.add_column("Worktrees", justify="right")
    table.add_column("Updated", style="dim")

    for workspace in workspaces:
        marker = "[yellow]*[/yellow]" if workspace.id == last_opened_id else ""
        table.add_row(
            marker,
            workspace.id,
            workspace.name,
            workspace.repo_path,
            workspace.branch,
            str(len(workspace.worktrees)),
            format_timestamp(workspace.updated_at)
        )

    console.print(table)


def display_workspace_tree(workspace: Workspace, console: Console = None) -> None:
    """
    Display a workspace as a tree of worktrees, tab groups and tabs.

    The active worktree, tab group and tab are highlighted.
    """
    if console is None:
        console = Console()

    root = Tree(Text(f"{workspace.name}  ({workspace.repo_path} @ {workspace.branch})", style="bold cyan"))

    for worktree in workspace.worktrees:
        active = worktree.id == workspace.active_worktree_id
        worktree_node = root.add(_label(f"{worktree.branch}  [dim]{worktree.path}[/dim]", active))

        for group in worktree.tab_groups:
            group_active = active and group.id == workspace.active_tab_group_id
            group_node = worktree_node.add(
                _label(f"{group.name}  [dim]{group.rows}x{group.cols}[/dim]", group_active)
            )

            for tab in sorted(group.tabs, key=lambda t: t.order):
                tab_active = group_active and tab.id == workspace.active_tab_id
                details = f"[dim]{tab.type.value} ({tab.row},{tab.col})"
                if tab.cwd:
                    details += f" {tab.cwd}"
                details += "[/dim]"
                group_node.add(_label(f"{tab.name}  {details}", tab_active))

    if not workspace.worktrees:
        root.add(Text("no worktrees", style="dim"))

    console.print(root)


def _label(markup: str, active: bool) -> str:
    if active:
        return f"[bold green]> {markup}[/bold green]"
    return markup


def display_port_event(event, console: Console = None) -> None:
    """Print one detected/closed port event as a single line."""
    if console is None:
        console = Console()

    if isinstance(event, PortDetectedEvent):
        service = f" ({event.service})" if event.service else ""
        console.print(f"[green]+[/green] port [bold]{event.port}[/bold]{service} on terminal {event.terminal_id}")
    elif isinstance(event, PortClosedEvent):
        console.print(f"[red]-[/red] port [bold]{event.port}[/bold] closed on terminal {event.terminal_id}")


def display_ports_map(services: Dict[str, int], console: Console = None) -> None:
    """Display the service -> port map of a worktree."""
    if console is None:
        console = Console()

    if not services:
        console.print("[dim]No listening ports with a known service[/dim]")
        return

    table = Table(title="Detected Services")
    table.add_column("Service", style="cyan")
    table.add_column("Port", justify="right")

    for service, port in services.items():
        table.add_row(service, str(port))

    console.print(table)


def format_json(data: Any) -> str:
    """
    Format a response value as JSON string.

    Args:
        data: JSON-compatible data

    Returns:
        Formatted JSON string
    """
    return json.dumps(data, indent=2)
