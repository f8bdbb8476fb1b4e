"""
Display modules for the worktree-session CLI.
"""

from . import session_display

__all__ = ['session_display']
