"""Host-level checks: disk, memory and Docker daemon reachability."""
import asyncio
import logging

import psutil

from ..actions.system import CleanupDiskSpaceAction, FreeMemoryAction, RestartDockerDaemonAction
from ..classification.categories import ClassifiedError
from ..types import ErrorKind, ErrorSeverity
from .base import BaseHealthPoller, HealthSnapshot

logger = logging.getLogger(__name__)

DISK_FAIL_PERCENT = 90.0
DISK_WARN_PERCENT = 80.0
MEMORY_FAIL_PERCENT = 95.0
MEMORY_WARN_PERCENT = 85.0


class SystemHealthPoller(BaseHealthPoller):
    service = "system"

    def default_interval(self) -> float:
        return self.config.system_interval

    async def probe(self) -> HealthSnapshot:
        snapshot = HealthSnapshot(service=self.service)

        disk = await asyncio.to_thread(psutil.disk_usage, str(self.ctx.project_root))
        memory = await asyncio.to_thread(psutil.virtual_memory)
        snapshot.performance.update({
            "disk_percent": disk.percent,
            "disk_free_gb": round(disk.free / 1024 ** 3, 2),
            "memory_percent": memory.percent,
            "memory_available_mb": round(memory.available / 1024 ** 2, 1),
            "cpu_percent": psutil.cpu_percent(interval=None),
        })

        snapshot.check("disk_space", disk.percent <= DISK_FAIL_PERCENT,
                       f"Low disk space: {disk.percent:.1f}% used on {self.ctx.project_root}")
        if DISK_WARN_PERCENT < disk.percent <= DISK_FAIL_PERCENT:
            snapshot.warnings.append(f"Disk usage at {disk.percent:.1f}%")

        snapshot.check("memory", memory.percent <= MEMORY_FAIL_PERCENT,
                       f"Low memory: {memory.percent:.1f}% used")
        if MEMORY_WARN_PERCENT < memory.percent <= MEMORY_FAIL_PERCENT:
            snapshot.warnings.append(f"Memory usage at {memory.percent:.1f}%")

        info = await self.runner.run("docker info --format '{{.ServerVersion}}'",
                                     timeout=self.config.probe_timeout)
        snapshot.check("docker_daemon", info.ok,
                       f"Cannot connect to the Docker daemon: {info.output.strip()[:200]}")
        if info.ok:
            snapshot.performance["docker_version"] = info.stdout.strip()
        return snapshot

    async def repair(self, snapshot: HealthSnapshot) -> bool:
        """Run the host-level action matching each failed check."""
        actions = {
            "disk_space": (CleanupDiskSpaceAction, ErrorKind.RESOURCE_EXHAUSTED),
            "memory": (FreeMemoryAction, ErrorKind.RESOURCE_EXHAUSTED),
            "docker_daemon": (RestartDockerDaemonAction, ErrorKind.DAEMON_ERROR),
        }
        results = []
        for check in snapshot.failed_checks:
            if check not in actions:
                continue
            action_cls, kind = actions[check]
            error = ClassifiedError(
                kind=kind,
                severity=ErrorSeverity.CRITICAL,
                message=f"System health check failed: {check}",
                context={"operation": "system_health"},
                auto_recoverable=True
            )
            results.append(await action_cls(self.ctx).execute(error))
        return bool(results) and all(results)
