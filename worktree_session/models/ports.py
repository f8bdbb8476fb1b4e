"""
Port monitoring models.

DetectedPort and the two notification payloads are ephemeral: they are never
written to the session document.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Protocol, Set, runtime_checkable

from pydantic import BaseModel, Field


@runtime_checkable
class TerminalProcess(Protocol):
    """Handle to a terminal-backed process supplied by the terminal provider."""

    pid: int

    def kill(self, signal: Optional[int] = None) -> None:
        ...


class DetectedPort(BaseModel):
    """A listening TCP port attributed to a monitored terminal."""

    port: int = Field(..., ge=1, le=65535)
    service: Optional[str] = Field(default=None, description="Inferred service name, display only")
    terminal_id: str = Field(..., alias="terminalId")
    detected_at: datetime = Field(..., alias="detectedAt")

    model_config = {"populate_by_name": True}


class PortDetectedEvent(DetectedPort):
    """Published when a port appears in a terminal's process tree."""

    worktree_id: str = Field(..., alias="worktreeId")


class PortClosedEvent(BaseModel):
    """Published when a previously detected port is no longer listening."""

    terminal_id: str = Field(..., alias="terminalId")
    worktree_id: str = Field(..., alias="worktreeId")
    port: int = Field(..., ge=1, le=65535)

    model_config = {"populate_by_name": True}


@dataclass
class MonitoredTerminal:
    """Internal bookkeeping for one terminal under port observation."""

    terminal_id: str
    worktree_id: str
    process: TerminalProcess
    cwd: Optional[str] = None
    last_detected_ports: Set[int] = field(default_factory=set)
    first_seen: Dict[int, datetime] = field(default_factory=dict)
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> int:
        return self.process.pid
