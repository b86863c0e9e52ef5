"""
Autoheal supervisor.

Wires the event bus, history stores, classifier, recovery engine, health
pollers, log watchers and the optional archive together, and exposes the
query surface used by dashboards.
"""
import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import psutil

from .actions.base import ActionContext, ActionTimings
from .actions.catalogue import ActionCatalogue
from .classification.categories import ClassifiedError
from .classification.classifier import ErrorClassifier
from .classification.strategies import StrategyRegistry
from .config import AutohealConfig
from .engine import RecoveryEngine
from .events import EventBus, EventLogger
from .health import POLLERS, BaseHealthPoller, HealthSnapshot
from .logwatch import LogWatcher
from .persistence.base import BaseArchive
from .persistence.memory import ErrorHistoryStore, RecoveryActionLog
from .persistence.sqlalchemy_persistence import SQLAlchemyArchive
from .runner import ShellCommandRunner
from .types import CommandRunner, RecoveryAction

logger = logging.getLogger(__name__)


class AutohealSupervisor:
    """Composition root for error tracking, recovery and health polling."""

    def __init__(
        self,
        config: Optional[AutohealConfig] = None,
        runner: Optional[CommandRunner] = None,
        bus: Optional[EventBus] = None,
        archive: Optional[BaseArchive] = None,
        timings: Optional[ActionTimings] = None
    ):
        self.config = config or AutohealConfig()
        self.bus = bus or EventBus()
        self.runner = runner or ShellCommandRunner(
            default_timeout=self.config.command_timeout,
            use_sudo=self.config.use_sudo,
            cwd=str(self.config.project_root)
        )

        self.history = ErrorHistoryStore(self.config.history_capacity, bus=self.bus)
        self.action_log = RecoveryActionLog(self.config.action_log_capacity)
        self.registry = StrategyRegistry()
        self.ctx = ActionContext(
            runner=self.runner,
            config=self.config,
            bus=self.bus,
            timings=timings or ActionTimings()
        )
        self.catalogue = ActionCatalogue.default(self.ctx)
        self.engine = RecoveryEngine(
            self.history,
            self.registry,
            self.catalogue,
            action_log=self.action_log,
            bus=self.bus,
            action_timeout=self.config.action_timeout
        )
        self.classifier = ErrorClassifier(history=self.history, bus=self.bus)

        self.pollers: dict[str, BaseHealthPoller] = {
            name: POLLERS[name](self.ctx, classifier=self.classifier)
            for name in self.config.enabled_monitors
        }
        self.watchers: list[LogWatcher] = []
        if self.config.watch_logs:
            self.watchers = [
                LogWatcher(container, self.classifier, runner=self.runner)
                for container in self.config.watched_containers
            ]

        if archive is None and self.config.database_url:
            archive = SQLAlchemyArchive(self.config.database_url)
        self.archive = archive

        self.event_logger = EventLogger(self.bus)
        self._started = False

    async def __aenter__(self) -> "AutohealSupervisor":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # Lifecycle

    def wire(self) -> None:
        """Attach subscribers to the bus without starting any loops."""
        self.event_logger.attach()
        if self.config.auto_recover:
            self.engine.attach()

    def unwire(self) -> None:
        self.engine.detach()
        self.event_logger.detach()

    async def start(self) -> None:
        if self._started:
            return
        self.wire()
        if self.archive is not None:
            await self.archive.initialize()
            self.archive.attach(self.bus)

        for poller in self.pollers.values():
            poller.start()
        for watcher in self.watchers:
            watcher.start()

        self._started = True
        logger.info(f"Autoheal started with monitors: {', '.join(self.pollers) or 'none'}")

    async def stop(self) -> None:
        if not self._started:
            return
        await asyncio.gather(*(p.stop() for p in self.pollers.values()))
        await asyncio.gather(*(w.stop() for w in self.watchers))

        self.engine.detach()
        await self.engine.wait_idle()
        await self.bus.drain()

        if self.archive is not None:
            self.archive.detach()
            await self.archive.close()
        self.unwire()
        self._started = False
        logger.info("Autoheal stopped")

    # Inputs

    def classify(self, text: str, context: Optional[dict[str, Any]] = None) -> ClassifiedError:
        """Classify diagnostic text, record it and trigger recovery when applicable."""
        return self.classifier.classify(text, context)

    async def poll_all(self) -> dict[str, HealthSnapshot]:
        """Run one poll of every enabled monitor."""
        names = list(self.pollers)
        snapshots = await asyncio.gather(*(self.pollers[n].poll_once() for n in names))
        return dict(zip(names, snapshots))

    # Query surface

    def recent_errors(self, limit: int = 50) -> list[ClassifiedError]:
        return self.history.recent(limit)

    def error_stats(self) -> dict[str, Any]:
        stats = self.history.stats()
        stats["classifier"] = self.classifier.get_statistics()
        return stats

    def recent_recovery_actions(self, limit: int = 50) -> list[RecoveryAction]:
        return self.action_log.recent(limit)

    def recovery_stats(self) -> dict[str, Any]:
        return self.engine.recovery_stats()

    async def system_health_summary(self) -> dict[str, Any]:
        """Host resources, Docker reachability, per-service metrics and error counts."""
        info = await self.runner.run("docker info --format '{{.ServerVersion}}'",
                                     timeout=self.config.probe_timeout)
        try:
            disk = (await asyncio.to_thread(psutil.disk_usage, str(self.config.project_root))).percent
        except OSError as e:
            logger.warning(f"Cannot read disk usage for {self.config.project_root}: {e}")
            disk = None
        memory = (await asyncio.to_thread(psutil.virtual_memory)).percent

        stats = self.history.stats()
        hour_ago = datetime.now(UTC) - timedelta(hours=1)
        services = {name: poller.metrics() for name, poller in self.pollers.items()}
        unhealthy = [name for name, m in services.items() if m["healthy"] is False]

        return {
            "healthy": info.ok and not unhealthy and stats["unresolved_critical"] == 0,
            "docker_daemon": info.ok,
            "docker_version": info.stdout.strip() if info.ok else None,
            "disk_usage": disk,
            "memory_usage": memory,
            "services": services,
            "unhealthy_services": unhealthy,
            "errors_last_hour": len(self.history.errors_since(hour_ago)),
            "unresolved_critical": stats["unresolved_critical"],
            "active_recoveries": len(self.engine.active_recoveries()),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    def resolve_error(self, error_id: str) -> bool:
        """Manually acknowledge an error as resolved."""
        return self.history.mark_resolved(error_id)

    async def retry_recovery(self, error_id: str) -> bool:
        return await self.engine.retry(error_id)

    async def pull_image(self, image: str) -> bool:
        """Record a pull failure for ``image`` and run the manual pull strategy on it."""
        error = self.classify(f"failed to pull image {image}", {"image": image, "source": "manual"})
        return await self.retry_recovery(error.id)
