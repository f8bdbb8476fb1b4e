"""
Pytest configuration and fixtures for worktree-session tests.

Provides in-memory collaborators (git provider, scripted port query)
and a store/manager pair backed by a temporary session document.
"""

import asyncio
import threading
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

import pytest
import pytest_asyncio

from worktree_session.errors import ExternalToolError
from worktree_session.hierarchy import WorkspaceManager
from worktree_session.services.port_monitor import PortMonitor
from worktree_session.store import PersistentStore


class FakeGit:
    """In-memory git worktree provider."""

    def __init__(self):
        self.repos: Dict[str, str] = {}
        self.worktrees: Dict[str, List[Tuple[str, str]]] = {}
        self.created: List[Tuple[str, str, str, bool]] = []
        self.removed: List[Tuple[str, str]] = []
        self.create_error: Optional[ExternalToolError] = None
        self.remove_result = True

    def add_repo(self, path, branch: Optional[str] = "main") -> str:
        path = str(path)
        self.repos[path] = branch
        self.worktrees.setdefault(path, [(branch, path)] if branch else [])
        return path

    def is_repo(self, path: str) -> bool:
        return str(path) in self.repos

    def current_branch(self, path: str) -> Optional[str]:
        return self.repos.get(str(path))

    def list_worktrees(self, repo_path: str) -> List[Tuple[str, str]]:
        if repo_path not in self.repos:
            raise ExternalToolError("git worktree list", f"not a git repository: {repo_path}")
        return list(self.worktrees.get(repo_path, []))

    def create_worktree(self, repo_path: str, branch: str, worktree_path: str, create_branch: bool = False) -> str:
        if self.create_error is not None:
            raise self.create_error
        self.created.append((repo_path, branch, worktree_path, create_branch))
        self.worktrees.setdefault(repo_path, []).append((branch, worktree_path))
        return worktree_path

    def remove_worktree(self, repo_path: str, worktree_path: str) -> bool:
        self.removed.append((repo_path, worktree_path))
        return self.remove_result


class FakePortQuery:
    """Scripted port query.

    Each pid has a list of results (port sets or exceptions) consumed one per
    call; the last result repeats once the script is exhausted.
    """

    def __init__(self):
        self.scripts: Dict[int, List[Union[Set[int], Exception]]] = {}
        self.calls: Dict[int, int] = {}
        self._lock = threading.Lock()

    def script(self, pid: int, *results: Union[Set[int], Exception]) -> None:
        self.scripts[pid] = list(results)

    def listening_ports(self, pid: int) -> Set[int]:
        with self._lock:
            self.calls[pid] = self.calls.get(pid, 0) + 1
            script = self.scripts.get(pid) or [set()]
            result = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(result, Exception):
            raise result
        return set(result)


async def wait_for(condition, timeout: float = 2.0, interval: float = 0.005):
    """Wait until condition() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            pytest.fail("Timed out waiting for condition")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    return wait_for


@pytest.fixture
def config_file(tmp_path) -> Path:
    return tmp_path / "config" / "config.json"


@pytest.fixture
def store(config_file) -> PersistentStore:
    return PersistentStore(config_file)


@pytest.fixture
def fake_git(tmp_path) -> FakeGit:
    git = FakeGit()
    git.add_repo(tmp_path / "repos" / "webapp", "main")
    return git


@pytest.fixture
def repo_path(tmp_path) -> str:
    return str(tmp_path / "repos" / "webapp")


@pytest.fixture
def manager(store, fake_git, tmp_path) -> WorkspaceManager:
    return WorkspaceManager(store, fake_git, tmp_path / "worktrees")


@pytest.fixture
def port_query() -> FakePortQuery:
    return FakePortQuery()


@pytest_asyncio.fixture
async def monitor(port_query):
    """Port monitor with a fast poll interval, cleaned up after the test."""
    port_monitor = PortMonitor(port_query=port_query, poll_interval=0.01)
    yield port_monitor
    await port_monitor.cleanup()


@pytest_asyncio.fixture
async def populated(manager, repo_path):
    """Workspace with one worktree, two tab groups (2 and 1 tabs) in a 1-column grid.

    Returns:
        Dict of ids: workspace, worktree, group_a, group_b, tab1, tab2, tab3
    """
    workspace = (await manager.create_workspace("webapp", repo_path, "main")).unwrap()
    worktree = (await manager.create_worktree(workspace.id, "feature/login")).unwrap()
    group_a = (await manager.create_tab_group(workspace.id, worktree.id, "dev")).unwrap()
    group_b = (await manager.create_tab_group(workspace.id, worktree.id, "logs")).unwrap()
    tab1 = (await manager.create_tab(workspace.id, worktree.id, group_a.id, "server", row=0, col=0)).unwrap()
    tab2 = (await manager.create_tab(workspace.id, worktree.id, group_a.id, "tests", row=1, col=0)).unwrap()
    tab3 = (await manager.create_tab(workspace.id, worktree.id, group_b.id, "tail", row=0, col=0)).unwrap()

    return {
        "workspace": workspace.id,
        "worktree": worktree.id,
        "group_a": group_a.id,
        "group_b": group_b.id,
        "tab1": tab1.id,
        "tab2": tab2.id,
        "tab3": tab3.id,
    }
