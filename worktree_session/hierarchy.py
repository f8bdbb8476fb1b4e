"""
Workspace hierarchy operations.

WorkspaceManager implements every create/update/delete/reorder/move and
selection operation over the session document as a read-modify-write cycle
against PersistentStore. Mutations are serialized through one asyncio.Lock so
two cycles never interleave; reads run lock-free against the last saved file.

No operation raises for an expected failure. Each returns an OperationResult
whose error is a NotFoundError, ValidationFailure, PersistenceError or
ExternalToolError.
"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Callable, List, Optional

from .errors import (
    ErrorCode,
    ExternalToolError,
    FailureKind,
    NotFoundError,
    OperationResult,
    PersistenceError,
    SessionError,
    ValidationFailure,
)
from .models.session import (
    ActiveSelection,
    SessionDocument,
    Tab,
    TabGroup,
    TabType,
    Workspace,
    Worktree,
)
from .services.worktree_service import GitWorktreeProvider
from .store import PersistentStore

logger = logging.getLogger(__name__)


def _workspace(document: SessionDocument, workspace_id: str) -> Workspace:
    workspace = document.find_workspace(workspace_id)
    if workspace is None:
        raise NotFoundError("workspace", workspace_id)
    return workspace


def _worktree(workspace: Workspace, worktree_id: str) -> Worktree:
    worktree = workspace.find_worktree(worktree_id)
    if worktree is None:
        raise NotFoundError("worktree", worktree_id)
    return worktree


def _tab_group(worktree: Worktree, tab_group_id: str) -> TabGroup:
    group = worktree.find_tab_group(tab_group_id)
    if group is None:
        raise NotFoundError("tab group", tab_group_id)
    return group


def _tab(group: TabGroup, tab_id: str) -> Tab:
    tab = group.find_tab(tab_id)
    if tab is None:
        raise NotFoundError("tab", tab_id)
    return tab


def _check_permutation(kind: str, requested: List[str], existing: List[str]) -> None:
    if len(requested) != len(existing) or set(requested) != set(existing):
        raise ValidationFailure(
            f"{kind} ids do not match the existing {kind}s",
            code=ErrorCode.PERMUTATION_MISMATCH,
            suggestion="Pass every existing id exactly once",
            context={"requested": list(requested), "existing": list(existing)}
        )


def _clear_selection_into(workspace: Workspace, removed_groups: List[TabGroup]) -> None:
    """Null the selection ids naming any removed group or one of its tabs.

    The selection is stored unvalidated, so its group and tab ids may belong
    to a different parent than the one the triple names.
    """
    group_ids = {group.id for group in removed_groups}
    tab_ids = {tab.id for group in removed_groups for tab in group.tabs}

    if workspace.active_tab_group_id in group_ids:
        workspace.active_tab_group_id = None
    if workspace.active_tab_id in tab_ids:
        workspace.active_tab_id = None


def worktree_dir_name(branch: str) -> str:
    """Directory name for a branch's worktree (feature/x -> feature-x)."""
    return branch.replace("/", "-")


class WorkspaceManager:
    """Hierarchy operations over the persisted session document."""

    def __init__(self, store: PersistentStore, git: GitWorktreeProvider, worktrees_dir: Path):
        """Initialize workspace manager.

        Args:
            store: Persistent store holding the session document
            git: Git worktree provider
            worktrees_dir: Root directory for worktrees created on disk
        """
        self.store = store
        self.git = git
        self.worktrees_dir = Path(worktrees_dir)
        self._lock = asyncio.Lock()

    # Plumbing

    async def _run(self, func: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _load(self) -> SessionDocument:
        return await self._run(self.store.load)

    async def _query(self, operation: str, read: Callable[[SessionDocument], object]) -> OperationResult:
        try:
            document = await self._load()
            return OperationResult.ok(read(document))
        except SessionError as e:
            self._log_failure(operation, e)
            return OperationResult.failure(e)

    async def _mutate(self, operation: str, mutation: Callable[[SessionDocument], object]) -> OperationResult:
        """Load, apply ``mutation`` and save, under the writer lock.

        ``mutation`` may be a plain or async function. If it raises a
        SessionError nothing is saved.
        """
        async with self._lock:
            try:
                document = await self._load()
                value = mutation(document)
                if inspect.isawaitable(value):
                    value = await value

                saved = await self._run(self.store.save, document)
                if not saved:
                    raise self.store.last_error or PersistenceError(
                        str(self.store.config_file), "write failed"
                    )
            except SessionError as e:
                self._log_failure(operation, e)
                return OperationResult.failure(e)

        logger.debug(f"{operation}: saved")
        return OperationResult.ok(value)

    @staticmethod
    def _log_failure(operation: str, error: SessionError) -> None:
        if error.kind in (FailureKind.NOT_FOUND, FailureKind.VALIDATION):
            logger.info(f"{operation} failed: {error.message}")
        else:
            logger.warning(f"{operation} failed: {error.message}")

    # Workspaces

    async def list_workspaces(self) -> OperationResult[List[Workspace]]:
        return await self._query("list workspaces", lambda document: list(document.workspaces))

    async def get_workspace(self, workspace_id: str) -> OperationResult[Workspace]:
        return await self._query("get workspace", lambda document: _workspace(document, workspace_id))

    async def get_last_opened(self) -> OperationResult[Optional[Workspace]]:
        return await self._query(
            "get last opened workspace",
            lambda document: document.find_workspace(document.last_opened_workspace_id)
        )

    async def create_workspace(self, name: str, repo_path: str, branch: str) -> OperationResult[Workspace]:
        """Create a workspace for a repository and mark it last opened.

        Fails with ValidationFailure if the repository already has one.
        """
        def mutation(document: SessionDocument) -> Workspace:
            existing = document.find_by_repo_path(repo_path)
            if existing is not None:
                raise ValidationFailure(
                    f"Repository already has a workspace: {repo_path}",
                    code=ErrorCode.DUPLICATE_REPOSITORY,
                    suggestion="Open the existing workspace instead",
                    context={"workspace_id": existing.id}
                )

            workspace = Workspace(name=name, repo_path=repo_path, branch=branch)
            document.workspaces.append(workspace)
            document.last_opened_workspace_id = workspace.id
            logger.info(f"Created workspace {workspace.id} ({name}) for {repo_path}")
            return workspace

        return await self._mutate("create workspace", mutation)

    async def update_workspace(self, workspace_id: str, name: Optional[str] = None) -> OperationResult[Workspace]:
        def mutation(document: SessionDocument) -> Workspace:
            workspace = _workspace(document, workspace_id)
            if name is not None:
                if not name.strip():
                    raise ValidationFailure("Workspace name must not be empty")
                workspace.name = name
            workspace.touch()
            return workspace

        return await self._mutate("update workspace", mutation)

    async def delete_workspace(self, workspace_id: str, remove_worktree: bool = False) -> OperationResult[bool]:
        """Delete a workspace and everything it owns.

        Args:
            workspace_id: Workspace to delete
            remove_worktree: Also remove each worktree from disk (the
                repository's own checkout is never removed). Removal
                failures are logged and do not stop the deletion.
        """
        async def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)

            if remove_worktree:
                for worktree in workspace.worktrees:
                    if Path(worktree.path) == Path(workspace.repo_path):
                        continue
                    removed = await self._run(self.git.remove_worktree, workspace.repo_path, worktree.path)
                    if not removed:
                        logger.warning(f"Could not remove worktree {worktree.path} from disk")

            document.workspaces.remove(workspace)
            if document.last_opened_workspace_id == workspace_id:
                document.last_opened_workspace_id = None
            if document.active_workspace_id == workspace_id:
                document.active_workspace_id = None

            logger.info(f"Deleted workspace {workspace_id} ({workspace.name})")
            return True

        return await self._mutate("delete workspace", mutation)

    # Worktrees

    async def create_worktree(
        self,
        workspace_id: str,
        branch: str,
        create_branch: bool = False
    ) -> OperationResult[Worktree]:
        """Create a git worktree on disk and record it in the workspace."""
        async def mutation(document: SessionDocument) -> Worktree:
            workspace = _workspace(document, workspace_id)
            if any(wt.branch == branch for wt in workspace.worktrees):
                raise ValidationFailure(
                    f"Workspace already has a worktree for branch {branch}",
                    code=ErrorCode.DUPLICATE_WORKTREE
                )

            path = self.worktrees_dir / workspace.name / worktree_dir_name(branch)
            created_path = await self._run(
                self.git.create_worktree, workspace.repo_path, branch, str(path), create_branch
            )

            worktree = Worktree(branch=branch, path=str(created_path))
            workspace.worktrees.append(worktree)
            workspace.touch()
            logger.info(f"Created worktree {worktree.id} ({branch}) in workspace {workspace_id}")
            return worktree

        return await self._mutate("create worktree", mutation)

    async def delete_worktree(
        self,
        workspace_id: str,
        worktree_id: str,
        remove_from_disk: bool = False
    ) -> OperationResult[bool]:
        async def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)
            worktree = _worktree(workspace, worktree_id)

            if remove_from_disk:
                removed = await self._run(self.git.remove_worktree, workspace.repo_path, worktree.path)
                if not removed:
                    raise ExternalToolError(
                        "git worktree remove",
                        f"could not remove {worktree.path}",
                        suggestion="Remove the directory manually, then delete the worktree without removal"
                    )

            workspace.worktrees.remove(worktree)
            if workspace.active_worktree_id == worktree_id:
                workspace.select(None, None, None)
            _clear_selection_into(workspace, worktree.tab_groups)
            workspace.touch()
            return True

        return await self._mutate("delete worktree", mutation)

    async def scan_and_import_worktrees(self, workspace_id: str) -> OperationResult[List[Worktree]]:
        """Import on-disk worktrees of the workspace's repository.

        Adds worktrees whose path and branch are both unknown; never removes
        records. Returns the imported worktrees.
        """
        async def mutation(document: SessionDocument) -> List[Worktree]:
            workspace = _workspace(document, workspace_id)
            on_disk = await self._run(self.git.list_worktrees, workspace.repo_path)

            known_paths = {Path(wt.path) for wt in workspace.worktrees}
            known_branches = {wt.branch for wt in workspace.worktrees}
            imported = []

            for branch, path in on_disk:
                if Path(path) in known_paths or branch in known_branches:
                    continue
                worktree = Worktree(branch=branch, path=path)
                workspace.worktrees.append(worktree)
                known_paths.add(Path(path))
                known_branches.add(branch)
                imported.append(worktree)

            if imported:
                workspace.touch()
            logger.info(f"Imported {len(imported)} worktree(s) into workspace {workspace_id}")
            return imported

        return await self._mutate("scan worktrees", mutation)

    # Tab groups

    async def create_tab_group(self, workspace_id: str, worktree_id: str, name: str) -> OperationResult[TabGroup]:
        def mutation(document: SessionDocument) -> TabGroup:
            workspace = _workspace(document, workspace_id)
            worktree = _worktree(workspace, worktree_id)
            group = TabGroup(name=name)
            worktree.tab_groups.append(group)
            workspace.touch()
            return group

        return await self._mutate("create tab group", mutation)

    async def delete_tab_group(self, workspace_id: str, worktree_id: str, tab_group_id: str) -> OperationResult[bool]:
        def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)
            worktree = _worktree(workspace, worktree_id)
            group = _tab_group(worktree, tab_group_id)

            worktree.tab_groups.remove(group)
            _clear_selection_into(workspace, [group])
            workspace.touch()
            return True

        return await self._mutate("delete tab group", mutation)

    async def reorder_tab_groups(
        self,
        workspace_id: str,
        worktree_id: str,
        tab_group_ids: List[str]
    ) -> OperationResult[bool]:
        def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)
            worktree = _worktree(workspace, worktree_id)
            _check_permutation("tab group", tab_group_ids, [g.id for g in worktree.tab_groups])

            by_id = {group.id: group for group in worktree.tab_groups}
            worktree.tab_groups = [by_id[group_id] for group_id in tab_group_ids]
            workspace.touch()
            return True

        return await self._mutate("reorder tab groups", mutation)

    # Tabs

    async def create_tab(
        self,
        workspace_id: str,
        worktree_id: str,
        tab_group_id: str,
        name: str,
        row: int,
        col: int,
        type: TabType = TabType.TERMINAL,
        command: Optional[str] = None,
        cwd: Optional[str] = None,
        row_span: Optional[int] = None,
        col_span: Optional[int] = None
    ) -> OperationResult[Tab]:
        """Add a tab at grid cell (row, col).

        A column beyond the grid widens it; existing tabs keep their cells.
        """
        def mutation(document: SessionDocument) -> Tab:
            workspace = _workspace(document, workspace_id)
            worktree = _worktree(workspace, worktree_id)
            group = _tab_group(worktree, tab_group_id)

            if row < 0 or col < 0:
                raise ValidationFailure(f"Grid position must not be negative: ({row}, {col})")

            group.widen(col + 1)
            order = group.order_for(row, col)
            occupant = group.tab_at(order)
            if occupant is not None:
                raise ValidationFailure(
                    f"Grid cell ({row}, {col}) is occupied by tab {occupant.id}",
                    code=ErrorCode.GRID_CELL_OCCUPIED,
                    context={"tab_id": occupant.id}
                )

            try:
                tab = Tab(
                    name=name,
                    type=TabType(type),
                    command=command,
                    cwd=cwd,
                    order=order,
                    row_span=row_span,
                    col_span=col_span
                )
            except ValueError as e:
                raise ValidationFailure(f"Invalid tab: {e}")
            group.tabs.append(tab)
            group.relayout()
            workspace.touch()
            return tab

        return await self._mutate("create tab", mutation)

    async def delete_tab(
        self,
        workspace_id: str,
        worktree_id: str,
        tab_group_id: str,
        tab_id: str
    ) -> OperationResult[bool]:
        def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)
            group = _tab_group(_worktree(workspace, worktree_id), tab_group_id)
            tab = _tab(group, tab_id)

            group.tabs.remove(tab)
            if workspace.active_tab_id == tab_id:
                workspace.active_tab_id = None
            workspace.touch()
            return True

        return await self._mutate("delete tab", mutation)

    async def reorder_tabs(
        self,
        workspace_id: str,
        worktree_id: str,
        tab_group_id: str,
        tab_ids: List[str]
    ) -> OperationResult[bool]:
        """Reassign tab orders 0..n-1 following ``tab_ids``."""
        def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)
            group = _tab_group(_worktree(workspace, worktree_id), tab_group_id)
            _check_permutation("tab", tab_ids, [tab.id for tab in group.tabs])

            by_id = {tab.id: tab for tab in group.tabs}
            group.tabs = [by_id[tab_id] for tab_id in tab_ids]
            group.renumber()
            workspace.touch()
            return True

        return await self._mutate("reorder tabs", mutation)

    async def move_tab_to_group(
        self,
        workspace_id: str,
        worktree_id: str,
        tab_id: str,
        source_tab_group_id: str,
        target_tab_group_id: str,
        target_index: int
    ) -> OperationResult[bool]:
        """Move a tab to position ``target_index`` of another (or the same) group.

        Both groups are renumbered densely. The index is clamped to the
        target's bounds. An active selection on the tab follows it.
        """
        def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)
            worktree = _worktree(workspace, worktree_id)
            source = _tab_group(worktree, source_tab_group_id)
            tab = _tab(source, tab_id)
            target = _tab_group(worktree, target_tab_group_id)

            source.tabs.remove(tab)
            index = max(0, min(target_index, len(target.tabs)))
            target.tabs.insert(index, tab)

            source.renumber()
            if target is not source:
                target.renumber()

            if workspace.active_tab_id == tab_id:
                workspace.active_tab_group_id = target.id
            workspace.touch()
            return True

        return await self._mutate("move tab", mutation)

    async def update_terminal_cwd(
        self,
        workspace_id: str,
        worktree_id: str,
        tab_group_id: str,
        tab_id: str,
        cwd: str
    ) -> OperationResult[bool]:
        def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)
            group = _tab_group(_worktree(workspace, worktree_id), tab_group_id)
            _tab(group, tab_id).cwd = cwd
            workspace.touch()
            return True

        return await self._mutate("update terminal cwd", mutation)

    # Selection

    async def get_active_selection(self, workspace_id: str) -> OperationResult[ActiveSelection]:
        return await self._query(
            "get active selection",
            lambda document: _workspace(document, workspace_id).selection
        )

    async def set_active_selection(
        self,
        workspace_id: str,
        worktree_id: Optional[str],
        tab_group_id: Optional[str],
        tab_id: Optional[str]
    ) -> OperationResult[bool]:
        """Store a workspace's selection triple.

        The ids are not checked against the tree; the UI may select an
        entity it is about to create.
        """
        def mutation(document: SessionDocument) -> bool:
            workspace = _workspace(document, workspace_id)
            workspace.select(worktree_id, tab_group_id, tab_id)
            workspace.touch()
            return True

        return await self._mutate("set active selection", mutation)

    async def get_active_workspace_id(self) -> OperationResult[Optional[str]]:
        return await self._query("get active workspace", lambda document: document.active_workspace_id)

    async def set_active_workspace_id(self, workspace_id: Optional[str]) -> OperationResult[bool]:
        def mutation(document: SessionDocument) -> bool:
            if workspace_id is not None:
                _workspace(document, workspace_id)
            document.active_workspace_id = workspace_id
            return True

        return await self._mutate("set active workspace", mutation)

    async def set_last_opened(self, workspace_id: Optional[str]) -> OperationResult[bool]:
        def mutation(document: SessionDocument) -> bool:
            if workspace_id is not None:
                _workspace(document, workspace_id)
            document.last_opened_workspace_id = workspace_id
            return True

        return await self._mutate("set last opened workspace", mutation)
