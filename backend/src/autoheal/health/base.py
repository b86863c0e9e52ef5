"""
Periodic health polling for a single service.

Each poll produces a HealthSnapshot that is folded into a bounded history.
Failing snapshots are classified and raise the consecutive failure count;
every multiple of the failure threshold escalates to the poller's direct
repair sequence. Only a snapshot whose checks all pass resets the count.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

from ..actions.base import ActionContext
from ..classification.classifier import ErrorClassifier
from ..events import EventType

logger = logging.getLogger(__name__)


@dataclass
class HealthSnapshot:
    """Result of one poll of one service."""
    service: str
    checks: dict[str, bool] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    performance: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_healthy(self) -> bool:
        return bool(self.checks) and all(self.checks.values())

    @property
    def failed_checks(self) -> list[str]:
        return [name for name, passed in self.checks.items() if not passed]

    def check(self, name: str, passed: bool, error: Optional[str] = None) -> bool:
        """Record a sub-check, adding ``error`` to the error list when it fails."""
        self.checks[name] = bool(passed)
        if not passed and error:
            self.errors.append(error)
        return bool(passed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "is_healthy": self.is_healthy,
            "checks": dict(self.checks),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "performance": dict(self.performance),
            "timestamp": self.timestamp.isoformat(),
        }


class BaseHealthPoller(ABC):
    """Polls one service on a fixed interval and escalates persistent failures.

    Subclasses implement ``probe`` and optionally ``repair``. A probe that
    raises is recorded as a failed ``probe`` check; a repair that raises is
    logged and counts as a failed repair.
    """

    service: str = ""
    container: Optional[str] = None

    def __init__(
        self,
        ctx: ActionContext,
        classifier: Optional[ErrorClassifier] = None,
        interval: Optional[float] = None,
        threshold: Optional[int] = None,
        repair_enabled: bool = True
    ):
        self.ctx = ctx
        self.config = ctx.config
        self.runner = ctx.runner
        self.bus = ctx.bus
        self.classifier = classifier
        self.interval = interval or self.default_interval()
        self.threshold = threshold or self.config.failure_threshold
        self.repair_enabled = repair_enabled

        self.history: deque[HealthSnapshot] = deque(maxlen=self.config.snapshot_history)
        self.consecutive_failures = 0
        self.last_snapshot: Optional[HealthSnapshot] = None
        self.repairs_attempted = 0
        self._task: Optional[asyncio.Task] = None

    def default_interval(self) -> float:
        return 30.0

    @abstractmethod
    async def probe(self) -> HealthSnapshot:
        """Run this service's sub-checks."""
        pass

    async def repair(self, snapshot: HealthSnapshot) -> bool:
        """Direct repair sequence run on critical escalation."""
        return False

    # Loop

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Starting {self.service} health poller (every {self.interval}s)")
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Stopped {self.service} health poller")

    async def _loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"{self.service} poll failed: {e}")
            await asyncio.sleep(self.interval)

    async def poll_once(self) -> HealthSnapshot:
        """Run one poll cycle: probe, record, classify, escalate."""
        started = time.monotonic()
        try:
            snapshot = await self.probe()
        except Exception as e:
            logger.warning(f"{self.service} probe raised: {e}")
            snapshot = HealthSnapshot(service=self.service)
            snapshot.check("probe", False, f"{self.service} health probe failed: {e}")
        snapshot.performance.setdefault("response_time", time.monotonic() - started)

        self.history.append(snapshot)
        self.last_snapshot = snapshot
        self._publish(EventType.HEALTH_CHECK, snapshot=snapshot)

        if snapshot.is_healthy:
            if self.consecutive_failures:
                logger.info(f"{self.service} healthy again after {self.consecutive_failures} failed polls")
                self._publish(EventType.HEALTH_RESTORED, snapshot=snapshot,
                              previous_failures=self.consecutive_failures)
            self.consecutive_failures = 0
            return snapshot

        self.consecutive_failures += 1
        logger.warning(
            f"{self.service} unhealthy ({self.consecutive_failures}/{self.threshold}): "
            f"{', '.join(snapshot.failed_checks)}"
        )
        self._classify(snapshot)
        self._publish(EventType.HEALTH_DEGRADED, snapshot=snapshot,
                      consecutive_failures=self.consecutive_failures)

        if self.consecutive_failures % self.threshold == 0:
            self._publish(EventType.HEALTH_CRITICAL, snapshot=snapshot,
                          consecutive_failures=self.consecutive_failures)
            await self._escalate(snapshot)
        return snapshot

    def _classify(self, snapshot: HealthSnapshot) -> None:
        if self.classifier is None:
            return
        context = {"service": self.service, "operation": "health_check", "source": "health_poller"}
        if self.container:
            context["container_name"] = self.container
        messages = snapshot.errors or [f"{self.service} checks failing: {', '.join(snapshot.failed_checks)}"]
        for message in messages:
            self.classifier.classify(message, dict(context))

    async def _escalate(self, snapshot: HealthSnapshot) -> None:
        if not self.repair_enabled:
            return
        self.repairs_attempted += 1
        logger.info(f"Running direct repair for {self.service}")
        try:
            repaired = await self.repair(snapshot)
        except Exception as e:
            logger.error(f"Direct repair of {self.service} raised: {e}")
            repaired = False
        if repaired:
            logger.info(f"Direct repair of {self.service} succeeded")
        else:
            logger.warning(f"Direct repair of {self.service} did not succeed")

    def _publish(self, event_type: EventType, **payload: Any) -> None:
        if self.bus is not None:
            self.bus.publish(event_type, **payload)

    # Metrics

    def metrics(self, window: int = 10) -> dict[str, Any]:
        """Aggregates over the snapshot history.

        ``health_score`` covers the last ``window`` polls, ``uptime_ratio``
        the whole bounded history.
        """
        history = list(self.history)
        recent = history[-window:]
        healthy_recent = sum(1 for s in recent if s.is_healthy)
        times = [s.performance.get("response_time", 0.0) for s in recent]
        return {
            "service": self.service,
            "health_score": round(healthy_recent / max(len(recent), 1) * 100),
            "uptime_ratio": sum(1 for s in history if s.is_healthy) / len(history) if history else 0.0,
            "avg_response_time": sum(times) / max(len(times), 1),
            "error_rate": round(sum(1 for s in recent if s.errors) / max(len(recent), 1) * 100),
            "consecutive_failures": self.consecutive_failures,
            "repairs_attempted": self.repairs_attempted,
            "polls": len(history),
            "last_check": self.last_snapshot.timestamp.isoformat() if self.last_snapshot else None,
            "healthy": self.last_snapshot.is_healthy if self.last_snapshot else None,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.service} every {self.interval}s>"
