"""
Git utilities for workspace and worktree management.

Thin subprocess wrappers used by WorktreeService:
- is_git_repository(): Detect a repository (or linked worktree) directory
- get_current_branch(): Resolve the checked-out branch
- list_worktrees(): Enumerate worktrees using --porcelain output
- run_git(): Run a git command with logging and a timeout
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from ..logging_config import log_subprocess_call

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def run_git(args: List[str], cwd: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT) -> subprocess.CompletedProcess:
    """
    Run a git command, capturing text output.

    Args:
        args: Arguments after "git"
        cwd: Working directory for the command
        timeout: Seconds before the command is abandoned

    Returns:
        CompletedProcess (check the return code yourself)

    Raises:
        subprocess.TimeoutExpired: If git does not finish in time
        OSError: If git cannot be executed
    """
    cmd = ["git", *args]
    result = subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout
    )
    log_subprocess_call(cmd, result, logger)
    return result


def is_git_repository(directory: str) -> bool:
    """
    Check if a directory is a git repository (has .git file or directory).

    Uses a file system check instead of a git subprocess for speed. Linked
    worktrees have a .git file, main checkouts a .git directory.

    Args:
        directory: Path to check

    Returns:
        True if directory contains .git (file or directory)
    """
    git_path = Path(directory) / ".git"
    return git_path.exists()


def get_current_branch(directory: str, timeout: float = DEFAULT_TIMEOUT) -> Optional[str]:
    """
    Get the checked-out branch of a repository or worktree.

    Args:
        directory: Path to the repository

    Returns:
        Branch name, or None when HEAD is detached or git fails
    """
    try:
        result = run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=directory, timeout=timeout)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning(f"Could not determine branch of {directory}: {e}")
        return None

    if result.returncode != 0:
        return None

    branch = result.stdout.strip()
    if not branch or branch == "HEAD":
        return None
    return branch


def parse_worktree_porcelain(output: str) -> List[dict]:
    """
    Parse `git worktree list --porcelain` output.

    Skips the bare repository entry.

    Returns:
        List of dicts with 'path', 'branch' (absent when detached), 'commit' keys
    """
    worktrees = []
    current: dict = {}

    for line in output.split('\n'):
        if line.startswith('worktree '):
            if current and not current.get('bare'):
                worktrees.append(current)
            current = {'path': line[9:]}
        elif line == 'bare':
            current['bare'] = True
        elif line.startswith('branch '):
            current['branch'] = line[7:].replace('refs/heads/', '')
        elif line.startswith('HEAD '):
            current['commit'] = line[5:][:7]  # Short hash

    # Don't forget the last entry
    if current and not current.get('bare'):
        worktrees.append(current)

    return worktrees


def list_worktrees(repo_path: str, timeout: float = DEFAULT_TIMEOUT) -> List[dict]:
    """
    List all worktrees for a repository.

    Args:
        repo_path: Path to repository (can be any worktree or repo directory)

    Returns:
        List of dicts with 'path', 'branch', 'commit' keys

    Raises:
        subprocess.CalledProcessError: If git reports an error
        subprocess.TimeoutExpired: If git does not finish in time
        OSError: If git cannot be executed
    """
    result = run_git(["-C", repo_path, "worktree", "list", "--porcelain"], timeout=timeout)
    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, result.args, result.stdout, result.stderr)
    return parse_worktree_porcelain(result.stdout)
