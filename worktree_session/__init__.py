"""
Worktree Session

Persisted session document for a multi-worktree developer tool: workspaces,
their git worktrees and the tab grids opened in each, plus a live overlay of
the TCP ports opened inside monitored terminals.
"""

__version__ = "1.0.0"
__author__ = "NixOS Configuration Team"
