"""
Port monitor for terminal-backed processes.

One asyncio task per monitored terminal polls the OS for listening TCP ports
of the terminal's process tree, diffs the result against the previous cycle
and publishes PortDetectedEvent / PortClosedEvent notifications. The derived
per-worktree cache is readable from any thread.

Ordering guarantee: within one poll cycle of one terminal, every detected
notification is published before any closed notification, each group in
ascending port order. No ordering holds across terminals.

Stopping is synchronous from the caller's perspective: stop_monitoring waits
for an in-flight cycle to finish, then publishes closed notifications for the
ports that cycle left open. A hung OS query therefore stalls the stop of that
terminal only.
"""

import asyncio
import inspect
import logging
import re
import threading
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Type, Union

from ..errors import ExternalToolError, ProcessGoneError
from ..models.ports import (
    DetectedPort,
    MonitoredTerminal,
    PortClosedEvent,
    PortDetectedEvent,
    TerminalProcess,
)
from ..models.session import utcnow
from .port_query import PortQuery, PsutilPortQuery

logger = logging.getLogger(__name__)

PortEvent = Union[PortDetectedEvent, PortClosedEvent]
PortEventCallback = Callable[[PortEvent], Any]

DEFAULT_POLL_INTERVAL = 2.0

_SERVICE_MARKERS = ("apps", "packages")


def detect_service_name(cwd: Optional[str]) -> Optional[str]:
    """Infer a display name for the service running in a directory.

    ``.../apps/website`` -> "website", ``.../packages/core`` -> "core",
    otherwise the last path segment. Only used for display.
    """
    if not cwd:
        return None

    segments = [segment for segment in re.split(r"[\\/]", cwd) if segment]
    if not segments:
        return None

    for marker in _SERVICE_MARKERS:
        if marker in segments:
            index = len(segments) - 1 - segments[::-1].index(marker)
            if index < len(segments) - 1:
                return segments[index + 1]

    return segments[-1]


class PortMonitor:
    """Track listening ports of monitored terminals, grouped by worktree."""

    def __init__(self, port_query: Optional[PortQuery] = None, poll_interval: float = DEFAULT_POLL_INTERVAL):
        """Initialize port monitor.

        Args:
            port_query: OS port query (defaults to PsutilPortQuery)
            poll_interval: Seconds between poll cycles of one terminal
        """
        self.port_query = port_query or PsutilPortQuery()
        self.poll_interval = poll_interval
        self._terminals: Dict[str, MonitoredTerminal] = {}
        self._cache: Dict[str, List[DetectedPort]] = {}
        self._cache_lock = threading.Lock()
        self._subscribers: List[Tuple[Optional[Type], PortEventCallback]] = []

        logger.debug(f"PortMonitor initialized (poll_interval={poll_interval}s)")

    # Subscriptions

    def subscribe(self, callback: PortEventCallback, event_type: Optional[Type] = None) -> Callable[[], None]:
        """Register a sync or async callback for port events.

        Args:
            callback: Called with each PortDetectedEvent / PortClosedEvent
            event_type: Restrict delivery to one event class

        Returns:
            Function that removes the subscription
        """
        entry = (event_type, callback)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def subscribe_detected(self, callback: PortEventCallback) -> Callable[[], None]:
        return self.subscribe(callback, PortDetectedEvent)

    def subscribe_closed(self, callback: PortEventCallback) -> Callable[[], None]:
        return self.subscribe(callback, PortClosedEvent)

    async def _publish(self, event: PortEvent) -> None:
        for event_type, callback in list(self._subscribers):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Port event subscriber {callback!r} failed on {type(event).__name__}")

    # Lifecycle

    async def start_monitoring(
        self,
        terminal_id: str,
        worktree_id: str,
        process: TerminalProcess,
        cwd: Optional[str] = None
    ) -> None:
        """Start observing a terminal's process tree.

        Replaces any existing monitoring of ``terminal_id``. Returns after
        the first poll cycle has completed; later cycles run every
        ``poll_interval`` seconds until stopped.
        """
        if terminal_id in self._terminals:
            logger.debug(f"Terminal {terminal_id} already monitored, restarting")
            await self.stop_monitoring(terminal_id)

        terminal = MonitoredTerminal(
            terminal_id=terminal_id,
            worktree_id=worktree_id,
            process=process,
            cwd=cwd
        )
        self._terminals[terminal_id] = terminal
        logger.info(f"Monitoring ports of terminal {terminal_id} (pid {terminal.pid}, worktree {worktree_id})")

        terminal.task = asyncio.ensure_future(self._guarded_poll(terminal))
        alive = await terminal.task

        if not alive:
            self._retire(terminal)
            return

        if terminal.stop_event.is_set():
            # Stopped while the first cycle was running
            return

        terminal.task = asyncio.create_task(
            self._monitoring_loop(terminal),
            name=f"port-monitor-{terminal_id}"
        )

    async def stop_monitoring(self, terminal_id: str) -> None:
        """Stop observing a terminal and publish closed events for its open ports.

        Unknown terminal ids are ignored.
        """
        terminal = self._terminals.get(terminal_id)
        if terminal is None:
            return

        terminal.stop_event.set()
        if terminal.task is not None and not terminal.task.done():
            await terminal.task

        # The loop may have retired the terminal itself while we waited
        if self._terminals.get(terminal_id) is not terminal:
            return

        for port in sorted(terminal.last_detected_ports):
            logger.info(f"Port {port} closed (terminal {terminal_id} stopped)")
            await self._publish(PortClosedEvent(
                terminal_id=terminal_id,
                worktree_id=terminal.worktree_id,
                port=port
            ))
        terminal.last_detected_ports = set()
        terminal.first_seen.clear()

        del self._terminals[terminal_id]
        self._recompute_cache(terminal.worktree_id)
        logger.info(f"Stopped monitoring terminal {terminal_id}")

    async def cleanup(self) -> None:
        """Stop every monitored terminal and clear the cache."""
        for terminal_id in list(self._terminals):
            await self.stop_monitoring(terminal_id)

        with self._cache_lock:
            self._cache.clear()

        logger.info("PortMonitor cleaned up")

    # Polling

    async def _monitoring_loop(self, terminal: MonitoredTerminal) -> None:
        while not terminal.stop_event.is_set():
            try:
                await asyncio.wait_for(terminal.stop_event.wait(), timeout=self.poll_interval)
                break
            except asyncio.TimeoutError:
                pass

            if not await self._guarded_poll(terminal):
                self._retire(terminal)
                break

    async def _guarded_poll(self, terminal: MonitoredTerminal) -> bool:
        """Run one poll cycle; an unexpected error counts as a still-alive cycle."""
        try:
            return await self._poll_terminal(terminal)
        except Exception as e:
            logger.error(f"Error polling terminal {terminal.terminal_id}: {e}", exc_info=True)
            self._recompute_cache(terminal.worktree_id)
            return True

    async def _poll_terminal(self, terminal: MonitoredTerminal) -> bool:
        """Run one poll cycle.

        Returns:
            False when the terminal's process no longer exists
        """
        loop = asyncio.get_running_loop()
        alive = True

        try:
            current: Set[int] = await loop.run_in_executor(
                None, self.port_query.listening_ports, terminal.pid
            )
        except ProcessGoneError:
            logger.info(f"Process {terminal.pid} of terminal {terminal.terminal_id} is gone")
            current = set()
            alive = False
        except ExternalToolError as e:
            logger.warning(f"Port query failed for terminal {terminal.terminal_id}: {e.message}")
            current = set()

        previous = terminal.last_detected_ports
        new_ports = current - previous
        closed_ports = previous - current

        detected_at = utcnow()
        service = detect_service_name(terminal.cwd)

        for port in sorted(new_ports):
            terminal.first_seen[port] = detected_at
            logger.info(f"Port {port} detected (terminal {terminal.terminal_id}, service {service})")
            await self._publish(PortDetectedEvent(
                port=port,
                service=service,
                terminal_id=terminal.terminal_id,
                worktree_id=terminal.worktree_id,
                detected_at=detected_at
            ))

        for port in sorted(closed_ports):
            terminal.first_seen.pop(port, None)
            logger.info(f"Port {port} closed (terminal {terminal.terminal_id})")
            await self._publish(PortClosedEvent(
                terminal_id=terminal.terminal_id,
                worktree_id=terminal.worktree_id,
                port=port
            ))

        terminal.last_detected_ports = set(current)
        self._recompute_cache(terminal.worktree_id)
        return alive

    def _retire(self, terminal: MonitoredTerminal) -> None:
        """Drop a terminal whose process exited (its ports were already closed)."""
        if self._terminals.get(terminal.terminal_id) is terminal:
            del self._terminals[terminal.terminal_id]
            self._recompute_cache(terminal.worktree_id)
            logger.info(f"Retired terminal {terminal.terminal_id}: process exited")

    def _recompute_cache(self, worktree_id: str) -> None:
        ports: List[DetectedPort] = []
        monitored = False

        for terminal in list(self._terminals.values()):
            if terminal.worktree_id != worktree_id:
                continue
            monitored = True
            service = detect_service_name(terminal.cwd)
            for port in sorted(terminal.last_detected_ports):
                ports.append(DetectedPort(
                    port=port,
                    service=service,
                    terminal_id=terminal.terminal_id,
                    detected_at=terminal.first_seen.get(port) or utcnow()
                ))

        with self._cache_lock:
            if monitored:
                self._cache[worktree_id] = ports
            else:
                self._cache.pop(worktree_id, None)

    # Queries

    def get_detected_ports(self, worktree_id: str) -> List[DetectedPort]:
        """Cached ports of a worktree (empty if none); never queries the OS."""
        with self._cache_lock:
            return list(self._cache.get(worktree_id, []))

    def get_detected_ports_map(self, worktree_id: str) -> Dict[str, int]:
        """Map service name -> port; the first terminal with a given name wins."""
        services: Dict[str, int] = {}
        for detected in self.get_detected_ports(worktree_id):
            if detected.service and detected.service not in services:
                services[detected.service] = detected.port
        return services

    def get_monitored_terminals(self) -> List[str]:
        return list(self._terminals)
