"""
WorktreeService - git worktree provider for the hierarchy model.

Create, list, and remove git worktrees on disk. The hierarchy model only talks
to the GitWorktreeProvider protocol, so tests substitute an in-memory fake.
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from ..errors import ErrorCode, ExternalToolError
from . import git_utils

logger = logging.getLogger(__name__)


class GitWorktreeProvider(Protocol):
    """Narrow git interface consumed by WorkspaceManager and the command surface."""

    def is_repo(self, path: str) -> bool:
        ...

    def current_branch(self, path: str) -> Optional[str]:
        ...

    def list_worktrees(self, repo_path: str) -> List[Tuple[str, str]]:
        ...

    def create_worktree(self, repo_path: str, branch: str, worktree_path: str, create_branch: bool = False) -> str:
        ...

    def remove_worktree(self, repo_path: str, worktree_path: str) -> bool:
        ...


class WorktreeService:
    """
    Git-backed worktree provider.

    Worktrees are created under the configured worktrees directory, one
    directory per branch with slashes replaced by dashes:
      <worktrees_dir>/<workspace name>/
      ├── feature-login/   # branch feature/login
      └── bugfix-crash/    # branch bugfix/crash

    The main checkout stays in the repository itself.
    """

    def __init__(self, timeout: float = git_utils.DEFAULT_TIMEOUT):
        self.timeout = timeout

    def is_repo(self, path: str) -> bool:
        return git_utils.is_git_repository(path)

    def current_branch(self, path: str) -> Optional[str]:
        return git_utils.get_current_branch(path, timeout=self.timeout)

    def list_worktrees(self, repo_path: str) -> List[Tuple[str, str]]:
        """
        List (branch, path) for every branch-bearing worktree of a repository.

        Detached worktrees are skipped.

        Raises:
            ExternalToolError: If git cannot list worktrees
        """
        try:
            entries = git_utils.list_worktrees(repo_path, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            raise ExternalToolError("git worktree list", (e.stderr or "").strip() or f"exit status {e.returncode}")
        except subprocess.TimeoutExpired:
            raise ExternalToolError("git worktree list", "timed out")
        except OSError as e:
            raise ExternalToolError("git worktree list", str(e))

        return [(entry['branch'], entry['path']) for entry in entries if entry.get('branch')]

    def create_worktree(
        self,
        repo_path: str,
        branch: str,
        worktree_path: str,
        create_branch: bool = False
    ) -> str:
        """
        Create a worktree on disk.

        Args:
            repo_path: Repository the worktree belongs to
            branch: Branch to check out
            worktree_path: Target directory
            create_branch: Create ``branch`` from the current HEAD instead of checking out an existing one

        Returns:
            Path of the created worktree

        Raises:
            ExternalToolError: If worktree creation fails
        """
        if Path(worktree_path).exists():
            raise ExternalToolError(
                "git worktree add",
                f"directory already exists: {worktree_path}",
                suggestion="Remove the directory or import it with a worktree scan"
            )

        Path(worktree_path).parent.mkdir(parents=True, exist_ok=True)

        args = ["-C", repo_path, "worktree", "add"]
        if create_branch:
            args += ["-b", branch, worktree_path]
        else:
            args += [worktree_path, branch]

        logger.info(f"Creating worktree for {branch} at {worktree_path}")

        try:
            result = git_utils.run_git(args, timeout=max(self.timeout, 30.0))
        except subprocess.TimeoutExpired:
            raise ExternalToolError("git worktree add", "timed out")
        except OSError as e:
            raise ExternalToolError("git worktree add", str(e))

        if result.returncode != 0:
            raise ExternalToolError("git worktree add", result.stderr.strip())

        return worktree_path

    def remove_worktree(self, repo_path: str, worktree_path: str) -> bool:
        """
        Remove a worktree from disk (forced, uncommitted changes are lost).

        Returns:
            True if git removed the worktree
        """
        logger.info(f"Removing worktree at {worktree_path}")

        try:
            result = git_utils.run_git(
                ["-C", repo_path, "worktree", "remove", "--force", worktree_path],
                timeout=max(self.timeout, 30.0)
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"git worktree remove failed for {worktree_path}: {e}")
            return False

        if result.returncode != 0:
            logger.warning(f"git worktree remove failed for {worktree_path}: {result.stderr.strip()}")
            return False

        return True


def not_a_repository(path: str) -> ExternalToolError:
    return ExternalToolError(
        "open repository",
        f"{path} is not a git repository",
        code=ErrorCode.NOT_A_GIT_REPOSITORY,
        suggestion="Select the root directory of a git repository"
    )


def unknown_branch(path: str) -> ExternalToolError:
    return ExternalToolError(
        "open repository",
        f"could not determine the current branch of {path}",
        code=ErrorCode.BRANCH_UNKNOWN,
        suggestion="Check out a branch (HEAD is detached) and try again"
    )
