# External collaborators (git, OS port query) and the port monitor

from .port_monitor import PortMonitor, detect_service_name
from .port_query import PortQuery, PsutilPortQuery
from .worktree_service import GitWorktreeProvider, WorktreeService

__all__ = [
    "PortMonitor",
    "detect_service_name",
    "PortQuery",
    "PsutilPortQuery",
    "GitWorktreeProvider",
    "WorktreeService",
]
