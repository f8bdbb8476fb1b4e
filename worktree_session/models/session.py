"""
Session document models: Workspace -> Worktree -> TabGroup -> Tab.

The persisted JSON uses camelCase keys; every field carries an alias and the
models accept either spelling. Grid coordinates (row/col) are derived from a
tab's order and its group's column count, recomputed whenever a group is
validated and before every save.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

CURRENT_SCHEMA_VERSION = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class TabType(str, Enum):
    """Kind of content shown in a tab."""
    TERMINAL = "terminal"
    EDITOR = "editor"
    BROWSER = "browser"
    PREVIEW = "preview"


class Tab(BaseModel):
    """One pane of a tab group grid."""

    id: str = Field(default_factory=new_id)
    name: str
    type: TabType = TabType.TERMINAL
    command: Optional[str] = None
    cwd: Optional[str] = None
    order: int = Field(default=0, ge=0, description="Position in the grid, row-major")
    row: int = Field(default=0, ge=0, description="Derived: order // cols")
    col: int = Field(default=0, ge=0, description="Derived: order % cols")
    row_span: Optional[int] = Field(default=None, alias="rowSpan", ge=1)
    col_span: Optional[int] = Field(default=None, alias="colSpan", ge=1)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    model_config = {"populate_by_name": True}


class TabGroup(BaseModel):
    """Named grid container of tabs within a worktree."""

    id: str = Field(default_factory=new_id)
    name: str
    tabs: List[Tab] = Field(default_factory=list)
    rows: int = Field(default=1, ge=1)
    cols: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def derive_grid(self) -> "TabGroup":
        self.relayout()
        return self

    def relayout(self) -> None:
        """Recompute every tab's row/col from its order and grow rows to fit."""
        for tab in self.tabs:
            tab.row, tab.col = divmod(tab.order, self.cols)
        if self.tabs:
            self.rows = max(self.rows, max(tab.row for tab in self.tabs) + 1)

    def renumber(self) -> None:
        """Make orders dense (0..n-1) following the tab sequence and fit rows to them."""
        for index, tab in enumerate(self.tabs):
            tab.order = index
        self.rows = max(1, -(-len(self.tabs) // self.cols))
        self.relayout()

    def widen(self, cols: int) -> None:
        """Grow the column count, keeping each tab in its current cell."""
        if cols <= self.cols:
            return
        for tab in self.tabs:
            tab.order = tab.row * cols + tab.col
        self.cols = cols
        self.relayout()

    def order_for(self, row: int, col: int) -> int:
        return row * self.cols + col

    def find_tab(self, tab_id: str) -> Optional[Tab]:
        return next((tab for tab in self.tabs if tab.id == tab_id), None)

    def tab_at(self, order: int) -> Optional[Tab]:
        return next((tab for tab in self.tabs if tab.order == order), None)


class Worktree(BaseModel):
    """One checked-out branch of a workspace's repository."""

    id: str = Field(default_factory=new_id)
    branch: str
    path: str
    tab_groups: List[TabGroup] = Field(default_factory=list, alias="tabGroups")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    model_config = {"populate_by_name": True}

    def find_tab_group(self, tab_group_id: str) -> Optional[TabGroup]:
        return next((group for group in self.tab_groups if group.id == tab_group_id), None)


class ActiveSelection(BaseModel):
    """Focused worktree / tab group / tab of one workspace."""

    worktree_id: Optional[str] = Field(default=None, alias="worktreeId")
    tab_group_id: Optional[str] = Field(default=None, alias="tabGroupId")
    tab_id: Optional[str] = Field(default=None, alias="tabId")

    model_config = {"populate_by_name": True}


class Workspace(BaseModel):
    """A tracked repository and the worktrees opened for it."""

    id: str = Field(default_factory=new_id)
    name: str
    repo_path: str = Field(..., alias="repoPath")
    branch: str
    worktrees: List[Worktree] = Field(default_factory=list)
    active_worktree_id: Optional[str] = Field(default=None, alias="activeWorktreeId")
    active_tab_group_id: Optional[str] = Field(default=None, alias="activeTabGroupId")
    active_tab_id: Optional[str] = Field(default=None, alias="activeTabId")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    model_config = {"populate_by_name": True}

    def find_worktree(self, worktree_id: str) -> Optional[Worktree]:
        return next((wt for wt in self.worktrees if wt.id == worktree_id), None)

    @property
    def selection(self) -> ActiveSelection:
        return ActiveSelection(
            worktree_id=self.active_worktree_id,
            tab_group_id=self.active_tab_group_id,
            tab_id=self.active_tab_id,
        )

    def select(self, worktree_id: Optional[str], tab_group_id: Optional[str], tab_id: Optional[str]) -> None:
        self.active_worktree_id = worktree_id
        self.active_tab_group_id = tab_group_id
        self.active_tab_id = tab_id

    def touch(self) -> None:
        self.updated_at = utcnow()


class SessionDocument(BaseModel):
    """Root of the persisted session file."""

    version: int = Field(default=CURRENT_SCHEMA_VERSION)
    workspaces: List[Workspace] = Field(default_factory=list)
    last_opened_workspace_id: Optional[str] = Field(default=None, alias="lastOpenedWorkspaceId")
    active_workspace_id: Optional[str] = Field(default=None, alias="activeWorkspaceId")

    model_config = {"populate_by_name": True}

    def find_workspace(self, workspace_id: Optional[str]) -> Optional[Workspace]:
        return next((ws for ws in self.workspaces if ws.id == workspace_id), None)

    def find_by_repo_path(self, repo_path: str) -> Optional[Workspace]:
        return next((ws for ws in self.workspaces if ws.repo_path == repo_path), None)

    def iter_tab_groups(self) -> Iterator[TabGroup]:
        for workspace in self.workspaces:
            for worktree in workspace.worktrees:
                yield from worktree.tab_groups

    def refresh_grid(self) -> None:
        """Recompute derived grid coordinates for every tab group."""
        for group in self.iter_tab_groups():
            group.relayout()

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
