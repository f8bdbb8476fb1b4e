"""Settings for the worktree session core.

Paths and polling parameters come from defaults under the user's config
directory, overridable through WORKTREE_SESSION_* environment variables.
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "worktree-session"
CONFIG_FILE_NAME = "config.json"

ENV_CONFIG_DIR = "WORKTREE_SESSION_CONFIG_DIR"
ENV_WORKTREES_DIR = "WORKTREE_SESSION_WORKTREES_DIR"
ENV_POLL_INTERVAL = "WORKTREE_SESSION_POLL_INTERVAL"
ENV_GIT_TIMEOUT = "WORKTREE_SESSION_GIT_TIMEOUT"


class SessionSettings(BaseModel):
    """Process-wide settings, built once at startup."""

    config_dir: Path = Field(default=DEFAULT_CONFIG_DIR, description="Directory holding the session document")
    worktrees_dir: Optional[Path] = Field(
        default=None,
        description="Root for worktrees created on disk (default: <config_dir>/worktrees)"
    )
    poll_interval: float = Field(default=2.0, gt=0, description="Port poll interval in seconds")
    git_timeout: float = Field(default=10.0, gt=0, description="Timeout for git subprocesses in seconds")

    @field_validator("config_dir", "worktrees_dir", mode="before")
    @classmethod
    def expand_user(cls, v):
        if v is None or v == "":
            return None
        return Path(v).expanduser()

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def effective_worktrees_dir(self) -> Path:
        return self.worktrees_dir or self.config_dir / "worktrees"

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config_dir: Optional[Path] = None
    ) -> "SessionSettings":
        """Build settings from the environment.

        Args:
            environ: Environment mapping (default: os.environ)
            config_dir: Explicit config directory, wins over the environment

        Raises:
            pydantic.ValidationError: If an override has an invalid value
        """
        env = os.environ if environ is None else environ
        data = {}

        if config_dir is not None:
            data["config_dir"] = config_dir
        elif env.get(ENV_CONFIG_DIR):
            data["config_dir"] = env[ENV_CONFIG_DIR]

        if env.get(ENV_WORKTREES_DIR):
            data["worktrees_dir"] = env[ENV_WORKTREES_DIR]
        if env.get(ENV_POLL_INTERVAL):
            data["poll_interval"] = env[ENV_POLL_INTERVAL]
        if env.get(ENV_GIT_TIMEOUT):
            data["git_timeout"] = env[ENV_GIT_TIMEOUT]

        return cls.model_validate(data)
