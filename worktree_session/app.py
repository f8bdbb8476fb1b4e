"""Process-scoped composition root.

Builds every component once, in dependency order:

    SessionSettings -> PersistentStore -> WorktreeService -> WorkspaceManager
                    -> PortMonitor -> CommandRouter

Teardown only needs PortMonitor.cleanup(), done by SessionApp.shutdown().
"""

import logging
from typing import Optional

from .commands import CommandRouter, DirectoryPicker
from .config import SessionSettings
from .hierarchy import WorkspaceManager
from .services.port_monitor import PortMonitor
from .services.port_query import PortQuery
from .services.worktree_service import GitWorktreeProvider, WorktreeService
from .store import PersistentStore

logger = logging.getLogger(__name__)


class SessionApp:
    """Holds the process-wide store, hierarchy model, port monitor and router."""

    def __init__(
        self,
        settings: SessionSettings,
        git: Optional[GitWorktreeProvider] = None,
        port_query: Optional[PortQuery] = None,
        directory_picker: Optional[DirectoryPicker] = None
    ):
        self.settings = settings
        self.store = PersistentStore(settings.config_file)
        self.git = git or WorktreeService(timeout=settings.git_timeout)
        self.manager = WorkspaceManager(self.store, self.git, settings.effective_worktrees_dir)
        self.monitor = PortMonitor(port_query=port_query, poll_interval=settings.poll_interval)
        self.router = CommandRouter(
            self.manager,
            self.git,
            monitor=self.monitor,
            directory_picker=directory_picker
        )

        logger.debug(f"SessionApp initialized (document={settings.config_file})")

    async def shutdown(self) -> None:
        await self.monitor.cleanup()
        logger.debug("SessionApp shut down")
