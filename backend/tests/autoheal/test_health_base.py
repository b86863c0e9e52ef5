"""
Tests for the shared health poller loop.
"""
import asyncio

import pytest

from backend.src.autoheal.actions import ActionContext, ActionTimings
from backend.src.autoheal.classification import ErrorClassifier
from backend.src.autoheal.config import AutohealConfig
from backend.src.autoheal.events import EventBus, EventType
from backend.src.autoheal.health import BaseHealthPoller, HealthSnapshot
from backend.src.autoheal.persistence import ErrorHistoryStore
from backend.src.autoheal.testing import FakeCommandRunner
from backend.src.autoheal.types import ErrorKind


class ScriptedPoller(BaseHealthPoller):
    """Poller whose probe outcomes are given up front."""

    service = "scripted"
    container = "attacknode-scripted"

    def __init__(self, ctx, outcomes, repair_result=True, **kwargs):
        super().__init__(ctx, **kwargs)
        self.outcomes = list(outcomes)
        self.repair_result = repair_result
        self.repairs = []

    async def probe(self):
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        snapshot = HealthSnapshot(service=self.service)
        snapshot.check("responding", outcome, "scripted service health check failed")
        return snapshot

    async def repair(self, snapshot):
        self.repairs.append(snapshot)
        if isinstance(self.repair_result, Exception):
            raise self.repair_result
        return self.repair_result


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def ctx(bus, tmp_path):
    return ActionContext(
        runner=FakeCommandRunner(),
        config=AutohealConfig(project_root=tmp_path, failure_threshold=3),
        bus=bus,
        timings=ActionTimings.immediate()
    )


def collect(bus):
    events = []
    bus.subscribe_all(events.append)
    return events


class TestHealthSnapshot:
    """Test snapshot bookkeeping."""

    def test_empty_snapshot_is_not_healthy(self):
        assert HealthSnapshot(service="redis").is_healthy is False

    def test_failed_check_records_error(self):
        snapshot = HealthSnapshot(service="redis")
        assert snapshot.check("container_running", True) is True
        assert snapshot.check("responding", False, "Redis is not responding to PING") is False

        assert snapshot.failed_checks == ["responding"]
        assert snapshot.errors == ["Redis is not responding to PING"]
        data = snapshot.to_dict()
        assert data["is_healthy"] is False
        assert data["checks"] == {"container_running": True, "responding": False}


class TestPollCycle:
    """Test failure counting and escalation."""

    @pytest.mark.asyncio
    async def test_escalates_at_each_threshold_multiple(self, ctx, bus):
        """Test that repair runs on the 3rd and 6th consecutive failure."""
        events = collect(bus)
        poller = ScriptedPoller(ctx, [False] * 6, repair_result=False)

        for _ in range(6):
            await poller.poll_once()

        assert poller.consecutive_failures == 6
        assert len(poller.repairs) == 2
        assert poller.repairs_attempted == 2
        critical = [e for e in events if e.type == EventType.HEALTH_CRITICAL]
        assert [e.payload["consecutive_failures"] for e in critical] == [3, 6]

    @pytest.mark.asyncio
    async def test_only_a_healthy_poll_resets(self, ctx, bus):
        """Test that recovery is announced and the counter cleared."""
        events = collect(bus)
        poller = ScriptedPoller(ctx, [False, False, True, False])

        for _ in range(3):
            await poller.poll_once()
        restored = [e for e in events if e.type == EventType.HEALTH_RESTORED]
        assert restored[0].payload["previous_failures"] == 2
        assert poller.consecutive_failures == 0

        await poller.poll_once()
        assert poller.consecutive_failures == 1
        assert poller.repairs == []

    @pytest.mark.asyncio
    async def test_every_poll_publishes_health_check(self, ctx, bus):
        events = collect(bus)
        poller = ScriptedPoller(ctx, [True, False])

        await poller.poll_once()
        await poller.poll_once()

        assert [e.type for e in events] == [
            EventType.HEALTH_CHECK,
            EventType.HEALTH_CHECK,
            EventType.HEALTH_DEGRADED,
        ]

    @pytest.mark.asyncio
    async def test_raising_probe_is_a_failed_poll(self, ctx):
        """Test that probe exceptions become a failed probe check."""
        poller = ScriptedPoller(ctx, [RuntimeError("socket closed")])

        snapshot = await poller.poll_once()

        assert snapshot.checks == {"probe": False}
        assert snapshot.errors == ["scripted health probe failed: socket closed"]
        assert poller.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_raising_repair_is_contained(self, ctx):
        poller = ScriptedPoller(ctx, [False] * 3, repair_result=RuntimeError("docker gone"))
        for _ in range(3):
            await poller.poll_once()
        assert poller.repairs_attempted == 1

    @pytest.mark.asyncio
    async def test_repair_can_be_disabled(self, ctx):
        poller = ScriptedPoller(ctx, [False] * 3, repair_enabled=False)
        for _ in range(3):
            await poller.poll_once()
        assert poller.repairs == []

    @pytest.mark.asyncio
    async def test_failures_are_classified(self, ctx, bus):
        """Test that failing snapshot errors reach the classifier with context."""
        history = ErrorHistoryStore()
        poller = ScriptedPoller(ctx, [False], classifier=ErrorClassifier(history=history, bus=bus))

        await poller.poll_once()

        [error] = history.recent()
        assert error.kind == ErrorKind.HEALTH_CHECK_FAILED
        assert error.context["service"] == "scripted"
        assert error.context["operation"] == "health_check"
        assert error.context["source"] == "health_poller"
        assert error.context["container_name"] == "attacknode-scripted"

    @pytest.mark.asyncio
    async def test_custom_threshold(self, ctx):
        poller = ScriptedPoller(ctx, [False], threshold=1)
        await poller.poll_once()
        assert len(poller.repairs) == 1


class TestPollerMetrics:
    """Test aggregate metrics."""

    @pytest.mark.asyncio
    async def test_metrics(self, ctx):
        poller = ScriptedPoller(ctx, [True, True, False, False])
        for _ in range(4):
            await poller.poll_once()

        metrics = poller.metrics()
        assert metrics["service"] == "scripted"
        assert metrics["health_score"] == 50
        assert metrics["uptime_ratio"] == 0.5
        assert metrics["error_rate"] == 50
        assert metrics["polls"] == 4
        assert metrics["healthy"] is False
        assert metrics["last_check"] is not None

    def test_metrics_before_first_poll(self, ctx):
        metrics = ScriptedPoller(ctx, []).metrics()
        assert metrics["polls"] == 0
        assert metrics["healthy"] is None
        assert metrics["uptime_ratio"] == 0.0

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, ctx):
        ctx.config.snapshot_history = 2
        poller = ScriptedPoller(ctx, [True] * 5)
        for _ in range(5):
            await poller.poll_once()
        assert len(poller.history) == 2


class TestPollerLoop:
    """Test start and stop of the periodic loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, ctx):
        poller = ScriptedPoller(ctx, [True] * 100, interval=0.01)

        poller.start()
        assert poller.running
        await asyncio.sleep(0.05)
        await poller.stop()

        assert not poller.running
        assert len(poller.history) >= 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self, ctx):
        await ScriptedPoller(ctx, []).stop()
