"""
Command surface for UI collaborators.

CommandRouter maps request names (``workspace-list``, ``tab-create``, ...) to
WorkspaceManager and PortMonitor calls. Parameters use the camelCase names of
the persisted document. Every response is a dictionary:

    {"success": true, "value": ...}
    {"success": false, "error": {"code": 1000, "kind": "not_found", "message": "..."}}
"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .errors import (
    ErrorCode,
    OperationResult,
    SessionError,
    ValidationFailure,
    error_response,
    validate_params,
)
from .hierarchy import WorkspaceManager
from .services.port_monitor import PortMonitor
from .services.worktree_service import GitWorktreeProvider, not_a_repository, unknown_branch

logger = logging.getLogger(__name__)

DirectoryPicker = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class CommandRouter:
    """Dispatch named requests to the hierarchy model and the port monitor."""

    def __init__(
        self,
        manager: WorkspaceManager,
        git: GitWorktreeProvider,
        monitor: Optional[PortMonitor] = None,
        directory_picker: Optional[DirectoryPicker] = None
    ):
        """
        Initialize command router.

        Args:
            manager: Hierarchy operations
            git: Git worktree provider (repository checks for open-repository)
            monitor: Port monitor for the port queries
            directory_picker: Interactive chooser used by open-repository
                when no path is given; returns None when cancelled
        """
        self.manager = manager
        self.git = git
        self.monitor = monitor
        self.directory_picker = directory_picker

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[OperationResult]]] = {
            "open-repository": self._handle_open_repository,
            "workspace-list": self._handle_workspace_list,
            "workspace-get": self._handle_workspace_get,
            "workspace-create": self._handle_workspace_create,
            "workspace-update": self._handle_workspace_update,
            "workspace-delete": self._handle_workspace_delete,
            "workspace-get-last-opened": self._handle_workspace_get_last_opened,
            "workspace-scan-worktrees": self._handle_workspace_scan_worktrees,
            "workspace-get-active-selection": self._handle_get_active_selection,
            "workspace-set-active-selection": self._handle_set_active_selection,
            "workspace-get-active-workspace-id": self._handle_get_active_workspace_id,
            "workspace-set-active-workspace-id": self._handle_set_active_workspace_id,
            "workspace-update-terminal-cwd": self._handle_update_terminal_cwd,
            "worktree-create": self._handle_worktree_create,
            "worktree-delete": self._handle_worktree_delete,
            "tab-group-create": self._handle_tab_group_create,
            "tab-group-delete": self._handle_tab_group_delete,
            "tab-group-reorder": self._handle_tab_group_reorder,
            "tab-create": self._handle_tab_create,
            "tab-delete": self._handle_tab_delete,
            "tab-reorder": self._handle_tab_reorder,
            "tab-move-to-group": self._handle_tab_move_to_group,
            "ports-get-detected": self._handle_ports_get_detected,
            "ports-get-map": self._handle_ports_get_map,
        }

    @property
    def methods(self):
        return sorted(self._handlers)

    async def handle(self, method: Optional[str], params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Handle one request.

        Args:
            method: Request name
            params: Request parameters

        Returns:
            Response dictionary (never raises)
        """
        params = params or {}
        logger.debug(f"Received request: {method}")

        try:
            if not method:
                raise SessionError(
                    code=ErrorCode.INVALID_REQUEST,
                    message="Missing request name",
                    suggestion="Provide one of the available request names"
                )

            handler = self._handlers.get(method)
            if handler is None:
                raise SessionError(
                    code=ErrorCode.METHOD_NOT_FOUND,
                    message=f"Method not found: {method}",
                    suggestion="Check the available request names",
                    context={"available_methods": self.methods}
                )

            if not isinstance(params, dict):
                raise ValidationFailure(
                    "Request parameters must be an object",
                    code=ErrorCode.INVALID_PARAMS
                )

            result = await handler(params)
            return result.to_dict()

        except SessionError as e:
            logger.info(f"Request {method} failed: {e.message}")
            return error_response(e)

        except Exception as e:
            logger.error(f"Unexpected error handling {method}: {e}", exc_info=True)
            return error_response(e)

    # Repository

    async def _handle_open_repository(self, params: Dict[str, Any]) -> OperationResult:
        """Pick (or take) a directory, check it is a repository, then create or reuse its workspace.

        The value is None when the picker was cancelled.
        """
        validate_params(params, required=[], optional=["path"])

        repo_path = params.get("path")
        if repo_path is None:
            if self.directory_picker is None:
                raise ValidationFailure(
                    "No path given and no directory picker available",
                    code=ErrorCode.INVALID_PARAMS,
                    suggestion="Provide the 'path' parameter"
                )
            repo_path = self.directory_picker()
            if inspect.isawaitable(repo_path):
                repo_path = await repo_path
            if not repo_path:
                logger.debug("Repository selection cancelled")
                return OperationResult.ok(None)

        repo_path = str(Path(repo_path).expanduser().resolve())
        loop = asyncio.get_running_loop()

        if not await loop.run_in_executor(None, self.git.is_repo, repo_path):
            raise not_a_repository(repo_path)

        branch = await loop.run_in_executor(None, self.git.current_branch, repo_path)
        if not branch:
            raise unknown_branch(repo_path)

        listed = await self.manager.list_workspaces()
        existing = next((ws for ws in listed.unwrap() if ws.repo_path == repo_path), None)
        if existing is not None:
            logger.info(f"Repository {repo_path} already open as workspace {existing.id}")
            return OperationResult.ok(existing)

        name = Path(repo_path).name or "Repository"
        return await self.manager.create_workspace(name=name, repo_path=repo_path, branch=branch)

    # Workspaces

    async def _handle_workspace_list(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=[])
        return await self.manager.list_workspaces()

    async def _handle_workspace_get(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["id"])
        return await self.manager.get_workspace(params["id"])

    async def _handle_workspace_create(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["name", "repoPath", "branch"])
        return await self.manager.create_workspace(params["name"], params["repoPath"], params["branch"])

    async def _handle_workspace_update(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["id"], optional=["name"])
        return await self.manager.update_workspace(params["id"], name=params.get("name"))

    async def _handle_workspace_delete(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["id"], optional=["removeWorktree"])
        return await self.manager.delete_workspace(params["id"], bool(params.get("removeWorktree", False)))

    async def _handle_workspace_get_last_opened(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=[])
        return await self.manager.get_last_opened()

    async def _handle_workspace_scan_worktrees(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId"])
        return await self.manager.scan_and_import_worktrees(params["workspaceId"])

    # Selection

    async def _handle_get_active_selection(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId"])
        return await self.manager.get_active_selection(params["workspaceId"])

    async def _handle_set_active_selection(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "worktreeId", "tabGroupId", "tabId"])
        return await self.manager.set_active_selection(
            params["workspaceId"],
            params["worktreeId"],
            params["tabGroupId"],
            params["tabId"]
        )

    async def _handle_get_active_workspace_id(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=[])
        return await self.manager.get_active_workspace_id()

    async def _handle_set_active_workspace_id(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId"])
        return await self.manager.set_active_workspace_id(params["workspaceId"])

    # Worktrees, tab groups, tabs

    async def _handle_worktree_create(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "branch"], optional=["createBranch"])
        return await self.manager.create_worktree(
            params["workspaceId"],
            params["branch"],
            create_branch=bool(params.get("createBranch", False))
        )

    async def _handle_worktree_delete(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "worktreeId"], optional=["removeFromDisk"])
        return await self.manager.delete_worktree(
            params["workspaceId"],
            params["worktreeId"],
            remove_from_disk=bool(params.get("removeFromDisk", False))
        )

    async def _handle_tab_group_create(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "worktreeId", "name"])
        return await self.manager.create_tab_group(params["workspaceId"], params["worktreeId"], params["name"])

    async def _handle_tab_group_delete(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "worktreeId", "tabGroupId"])
        return await self.manager.delete_tab_group(
            params["workspaceId"], params["worktreeId"], params["tabGroupId"]
        )

    async def _handle_tab_group_reorder(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "worktreeId", "tabGroupIds"])
        _require_list(params, "tabGroupIds")
        return await self.manager.reorder_tab_groups(
            params["workspaceId"], params["worktreeId"], params["tabGroupIds"]
        )

    async def _handle_tab_create(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(
            params,
            required=["workspaceId", "worktreeId", "tabGroupId", "name", "row", "col"],
            optional=["type", "command", "cwd", "rowSpan", "colSpan"]
        )
        return await self.manager.create_tab(
            params["workspaceId"],
            params["worktreeId"],
            params["tabGroupId"],
            params["name"],
            row=_require_int(params, "row"),
            col=_require_int(params, "col"),
            type=params.get("type") or "terminal",
            command=params.get("command"),
            cwd=params.get("cwd"),
            row_span=params.get("rowSpan"),
            col_span=params.get("colSpan")
        )

    async def _handle_tab_delete(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "worktreeId", "tabGroupId", "tabId"])
        return await self.manager.delete_tab(
            params["workspaceId"], params["worktreeId"], params["tabGroupId"], params["tabId"]
        )

    async def _handle_tab_reorder(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "worktreeId", "tabGroupId", "tabIds"])
        _require_list(params, "tabIds")
        return await self.manager.reorder_tabs(
            params["workspaceId"], params["worktreeId"], params["tabGroupId"], params["tabIds"]
        )

    async def _handle_tab_move_to_group(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(
            params,
            required=["workspaceId", "worktreeId", "tabId", "sourceTabGroupId", "targetTabGroupId", "targetIndex"]
        )
        return await self.manager.move_tab_to_group(
            params["workspaceId"],
            params["worktreeId"],
            params["tabId"],
            params["sourceTabGroupId"],
            params["targetTabGroupId"],
            _require_int(params, "targetIndex")
        )

    async def _handle_update_terminal_cwd(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["workspaceId", "worktreeId", "tabGroupId", "tabId", "cwd"])
        return await self.manager.update_terminal_cwd(
            params["workspaceId"],
            params["worktreeId"],
            params["tabGroupId"],
            params["tabId"],
            params["cwd"]
        )

    # Ports

    async def _handle_ports_get_detected(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["worktreeId"])
        return OperationResult.ok(self._monitor().get_detected_ports(params["worktreeId"]))

    async def _handle_ports_get_map(self, params: Dict[str, Any]) -> OperationResult:
        validate_params(params, required=["worktreeId"])
        return OperationResult.ok(self._monitor().get_detected_ports_map(params["worktreeId"]))

    def _monitor(self) -> PortMonitor:
        if self.monitor is None:
            raise SessionError(
                code=ErrorCode.INTERNAL_ERROR,
                message="Port monitor not initialized"
            )
        return self.monitor


def _require_int(params: Dict[str, Any], name: str) -> int:
    value = params[name]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailure(
            f"'{name}' parameter must be an integer",
            code=ErrorCode.INVALID_PARAMS
        )
    return value


def _require_list(params: Dict[str, Any], name: str) -> None:
    if not isinstance(params[name], list):
        raise ValidationFailure(
            f"'{name}' parameter must be a list",
            code=ErrorCode.INVALID_PARAMS,
            suggestion=f"Provide {name} as an array of ids"
        )
