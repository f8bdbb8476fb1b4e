# Data models for the session document and port monitoring

from .session import (
    CURRENT_SCHEMA_VERSION,
    ActiveSelection,
    SessionDocument,
    Tab,
    TabGroup,
    TabType,
    Workspace,
    Worktree,
)
from .legacy import LegacySessionDocument
from .ports import (
    DetectedPort,
    MonitoredTerminal,
    PortClosedEvent,
    PortDetectedEvent,
    TerminalProcess,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "ActiveSelection",
    "SessionDocument",
    "Tab",
    "TabGroup",
    "TabType",
    "Workspace",
    "Worktree",
    "LegacySessionDocument",
    "DetectedPort",
    "MonitoredTerminal",
    "PortClosedEvent",
    "PortDetectedEvent",
    "TerminalProcess",
]
