"""
Unit tests for PortMonitor.

Tests cover:
- Diffing successive polls into detected/closed events
- Stop and cleanup semantics
- Per-worktree cache and service map
- Process exit and query failures
- Subscriber isolation
"""

import asyncio

import pytest

from worktree_session.errors import ErrorCode, ExternalToolError, ProcessGoneError
from worktree_session.models import PortClosedEvent, PortDetectedEvent


def _describe(events):
    return [
        ("detected" if isinstance(event, PortDetectedEvent) else "closed", event.port)
        for event in events
    ]


class FakeProcess:
    def __init__(self, pid):
        self.pid = pid

    def kill(self, signal=None):
        pass


class TestPolling:
    """Test poll cycles and notifications."""

    @pytest.mark.asyncio
    async def test_start_without_ports(self, monitor, port_query):
        """Test an immediate poll with no notifications and an empty cache entry."""
        events = []
        monitor.subscribe(events.append)
        port_query.script(100, set())

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))

        assert port_query.calls[100] >= 1
        assert events == []
        assert monitor.get_detected_ports("wt-1") == []
        assert monitor.get_monitored_terminals() == ["term-1"]

    @pytest.mark.asyncio
    async def test_first_poll_completes_before_start_returns(self, monitor, port_query):
        """Test ports from the first cycle are visible right after start."""
        port_query.script(100, {3000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100), cwd="/src/apps/web")

        assert [p.port for p in monitor.get_detected_ports("wt-1")] == [3000]

    @pytest.mark.asyncio
    async def test_diff_sequence(self, monitor, port_query, wait_until):
        """Test {3000} -> {3000,4000} -> {4000} yields detected, detected, closed."""
        events = []
        monitor.subscribe(events.append)
        port_query.script(100, {3000}, {3000, 4000}, {4000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await wait_until(lambda: len(events) >= 3)

        assert _describe(events) == [("detected", 3000), ("detected", 4000), ("closed", 3000)]
        assert [p.port for p in monitor.get_detected_ports("wt-1")] == [4000]
        assert all(e.terminal_id == "term-1" and e.worktree_id == "wt-1" for e in events)

    @pytest.mark.asyncio
    async def test_detected_before_closed_within_cycle(self, monitor, port_query, wait_until):
        """Test one cycle publishes all detections before closures."""
        events = []
        monitor.subscribe(events.append)
        port_query.script(100, {5000, 5001}, {6000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await wait_until(lambda: len(events) >= 5)

        assert _describe(events[2:]) == [("detected", 6000), ("closed", 5000), ("closed", 5001)]

    @pytest.mark.asyncio
    async def test_detected_event_payload(self, monitor, port_query):
        """Test the detected event carries service and timestamp."""
        events = []
        monitor.subscribe_detected(events.append)
        port_query.script(100, {3000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100), cwd="/home/u/wt/main/apps/website")

        event = events[0]
        assert event.service == "website"
        assert event.detected_at is not None
        assert event.model_dump(by_alias=True)["worktreeId"] == "wt-1"

    @pytest.mark.asyncio
    async def test_cache_keeps_first_detection_time(self, monitor, port_query, wait_until):
        """Test detectedAt is the time the port first appeared."""
        port_query.script(100, {3000}, {3000}, {3000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        first = monitor.get_detected_ports("wt-1")[0].detected_at
        await wait_until(lambda: port_query.calls[100] >= 3)

        assert monitor.get_detected_ports("wt-1")[0].detected_at == first


class TestStop:
    """Test stopping and cleanup."""

    @pytest.mark.asyncio
    async def test_stop_emits_closed_for_open_ports(self, monitor, port_query):
        """Test stop publishes exactly one closed(8080) and forgets the terminal."""
        events = []
        port_query.script(100, {8080})
        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        monitor.subscribe(events.append)

        await monitor.stop_monitoring("term-1")

        assert _describe(events) == [("closed", 8080)]
        assert monitor.get_monitored_terminals() == []
        assert monitor.get_detected_ports("wt-1") == []

    @pytest.mark.asyncio
    async def test_no_polls_after_stop(self, monitor, port_query, wait_until):
        """Test no further cycle runs once stop returns."""
        port_query.script(100, {8080})
        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await wait_until(lambda: port_query.calls[100] >= 2)

        await monitor.stop_monitoring("term-1")
        calls = port_query.calls[100]
        events = []
        monitor.subscribe(events.append)
        await asyncio.sleep(0.05)

        assert port_query.calls[100] == calls
        assert events == []

    @pytest.mark.asyncio
    async def test_stop_unknown_terminal(self, monitor):
        """Test stopping an unmonitored terminal is a no-op."""
        await monitor.stop_monitoring("nope")

    @pytest.mark.asyncio
    async def test_restart_replaces_monitoring(self, monitor, port_query):
        """Test starting an already monitored terminal stops the old one first."""
        events = []
        monitor.subscribe(events.append)
        port_query.script(100, {3000})
        port_query.script(200, {4000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(200))

        assert _describe(events) == [("detected", 3000), ("closed", 3000), ("detected", 4000)]
        assert monitor.get_monitored_terminals() == ["term-1"]

    @pytest.mark.asyncio
    async def test_cleanup_stops_everything(self, monitor, port_query):
        """Test cleanup closes every port and clears the cache."""
        events = []
        port_query.script(100, {3000})
        port_query.script(200, {4000})
        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await monitor.start_monitoring("term-2", "wt-2", FakeProcess(200))
        monitor.subscribe_closed(events.append)

        await monitor.cleanup()

        assert sorted(e.port for e in events) == [3000, 4000]
        assert monitor.get_monitored_terminals() == []
        assert monitor.get_detected_ports("wt-1") == []
        assert monitor.get_detected_ports("wt-2") == []


class TestCache:
    """Test the per-worktree cache and service map."""

    @pytest.mark.asyncio
    async def test_cache_aggregates_terminals_of_worktree(self, monitor, port_query):
        """Test ports of all terminals in a worktree are listed together."""
        port_query.script(100, {3000})
        port_query.script(200, {4000})
        port_query.script(300, {5000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await monitor.start_monitoring("term-2", "wt-1", FakeProcess(200))
        await monitor.start_monitoring("term-3", "wt-2", FakeProcess(300))

        assert sorted(p.port for p in monitor.get_detected_ports("wt-1")) == [3000, 4000]
        assert [p.port for p in monitor.get_detected_ports("wt-2")] == [5000]

    @pytest.mark.asyncio
    async def test_ports_map_first_service_wins(self, monitor, port_query):
        """Test two terminals naming the same service keep the first port."""
        port_query.script(100, {4001})
        port_query.script(200, {4002})
        port_query.script(300, {3000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100), cwd="/repo/apps/api")
        await monitor.start_monitoring("term-2", "wt-1", FakeProcess(200), cwd="/other/packages/api")
        await monitor.start_monitoring("term-3", "wt-1", FakeProcess(300))

        assert monitor.get_detected_ports_map("wt-1") == {"api": 4001}

    @pytest.mark.asyncio
    async def test_stopping_one_terminal_keeps_others(self, monitor, port_query):
        """Test the cache entry is recomputed from the remaining terminals."""
        port_query.script(100, {3000})
        port_query.script(200, {4000})
        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await monitor.start_monitoring("term-2", "wt-1", FakeProcess(200))

        await monitor.stop_monitoring("term-1")

        assert [p.port for p in monitor.get_detected_ports("wt-1")] == [4000]


class TestFailures:
    """Test process exit, query failures and failing subscribers."""

    @pytest.mark.asyncio
    async def test_process_exit_retires_terminal(self, monitor, port_query, wait_until):
        """Test a vanished process closes its ports and stops monitoring."""
        events = []
        monitor.subscribe(events.append)
        port_query.script(100, {3000}, ProcessGoneError(100))

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await wait_until(lambda: monitor.get_monitored_terminals() == [])

        assert _describe(events) == [("detected", 3000), ("closed", 3000)]
        assert monitor.get_detected_ports("wt-1") == []

    @pytest.mark.asyncio
    async def test_process_gone_at_start(self, monitor, port_query):
        """Test a process that is already gone is never scheduled."""
        port_query.script(100, ProcessGoneError(100))

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))

        assert monitor.get_monitored_terminals() == []

    @pytest.mark.asyncio
    async def test_query_failure_degrades_to_zero_ports(self, monitor, port_query, wait_until):
        """Test a failing query reads as 'no ports' and polling continues."""
        events = []
        monitor.subscribe(events.append)
        failure = ExternalToolError("port query", "access denied", code=ErrorCode.PORT_QUERY_FAILED)
        port_query.script(100, {3000}, failure, {3000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        await wait_until(lambda: len(events) >= 3)

        assert _describe(events) == [("detected", 3000), ("closed", 3000), ("detected", 3000)]
        assert monitor.get_monitored_terminals() == ["term-1"]

    @pytest.mark.asyncio
    async def test_unexpected_error_on_first_poll(self, monitor, port_query, wait_until):
        """Test an unexpected error in the first cycle still schedules polling."""
        port_query.script(100, RuntimeError("boom"), {3000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))

        assert monitor.get_monitored_terminals() == ["term-1"]
        assert monitor.get_detected_ports("wt-1") == []

        await wait_until(lambda: [p.port for p in monitor.get_detected_ports("wt-1")] == [3000])

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self, monitor, port_query):
        """Test an exception in one subscriber does not affect others."""
        received = []

        def broken(event):
            raise RuntimeError("boom")

        monitor.subscribe(broken)
        monitor.subscribe(received.append)
        port_query.script(100, {3000})

        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))

        assert [e.port for e in received] == [3000]

    @pytest.mark.asyncio
    async def test_async_subscriber_and_unsubscribe(self, monitor, port_query):
        """Test coroutine callbacks are awaited and unsubscribe stops delivery."""
        received = []

        async def on_event(event):
            received.append(event)

        unsubscribe = monitor.subscribe(on_event)
        port_query.script(100, {3000})
        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))
        unsubscribe()

        await monitor.stop_monitoring("term-1")

        assert _describe(received) == [("detected", 3000)]

    @pytest.mark.asyncio
    async def test_closed_event_type(self, monitor, port_query):
        """Test closed events are PortClosedEvent instances."""
        closed = []
        monitor.subscribe_closed(closed.append)
        port_query.script(100, {3000})
        await monitor.start_monitoring("term-1", "wt-1", FakeProcess(100))

        await monitor.stop_monitoring("term-1")

        assert len(closed) == 1
        assert isinstance(closed[0], PortClosedEvent)
