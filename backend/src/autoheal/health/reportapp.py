"""Health poller for the Django report application container."""
import logging
import re
from typing import Optional

from ..actions.base import container_running
from ..actions.containers import RestartContainerAction
from ..actions.reportapp import DatabaseConfigValidator
from .base import BaseHealthPoller, HealthSnapshot

logger = logging.getLogger(__name__)

CHECK_CLEAN = "System check identified no issues"
MEMORY_RE = re.compile(r"(\d+\.?\d*)\s*([a-zA-Z]+)")


def parse_memory_mb(value: str) -> Optional[float]:
    """Convert a ``docker stats`` memory figure such as ``123.4MiB`` to MB."""
    match = MEMORY_RE.search(value)
    if not match:
        return None
    amount, unit = float(match.group(1)), match.group(2).lower()
    if unit.startswith("g"):
        return amount * 1024
    if unit.startswith("k"):
        return amount / 1024
    if unit in ("b", "bytes"):
        return amount / (1024 * 1024)
    return amount


class ReportAppHealthPoller(BaseHealthPoller):
    """Container, database, migrations and plugin checks for the Django app."""

    service = "reportapp"

    def __init__(self, ctx, **kwargs):
        super().__init__(ctx, **kwargs)
        self.container = self.config.reportapp_container
        self.validator = DatabaseConfigValidator(ctx)

    def default_interval(self) -> float:
        return self.config.reportapp_interval

    async def probe(self) -> HealthSnapshot:
        snapshot = HealthSnapshot(service=self.service)

        running = await container_running(self.runner, self.container)
        if not snapshot.check("container_running", running, f"Django container {self.container} is not running"):
            return snapshot

        connected = await self.validator.test_connection()
        snapshot.check("database_connected", connected,
                       "Database connection failed: database is improperly configured or unreachable")
        snapshot.warnings.extend(self.validator.validate_config_file().issues)

        if connected:
            pending = await self.validator.migrations_pending()
            snapshot.check("migrations_up_to_date", not pending, None)
            if pending:
                snapshot.warnings.append("Unapplied Django migrations")

        await self.check_application(snapshot)
        await self.collect_stats(snapshot)
        return snapshot

    async def check_application(self, snapshot: HealthSnapshot) -> None:
        result = await self.validator.manage("check", timeout=self.config.command_timeout)
        output = result.output
        if CHECK_CLEAN in output:
            snapshot.check("plugins_loaded", True)
            return

        plugin_errors = [line.strip() for line in output.splitlines()
                         if "plugin" in line.lower() and "not found" in line.lower()]
        if plugin_errors:
            snapshot.check("plugins_loaded", False)
            snapshot.errors.extend(plugin_errors)
        elif not result.ok:
            snapshot.check("plugins_loaded", False, f"Django check failed: {output.strip()[:200]}")
        else:
            snapshot.check("plugins_loaded", True)

        if "ImproperlyConfigured" in output and not plugin_errors:
            snapshot.errors.append("Django configuration error: database is improperly configured")
        snapshot.warnings.extend(line.strip() for line in output.splitlines() if "WARNING" in line)

    async def collect_stats(self, snapshot: HealthSnapshot) -> None:
        result = await self.runner.run(
            f"docker stats {self.container} --no-stream --format '{{{{.CPUPerc}}}},{{{{.MemUsage}}}}'",
            timeout=self.config.probe_timeout,
            privileged_fallback=False
        )
        line = result.stdout.strip().splitlines()[-1] if result.ok and result.stdout.strip() else ""
        if "," not in line:
            return
        cpu, memory = line.split(",", 1)
        try:
            snapshot.performance["cpu_usage"] = float(cpu.strip().rstrip("%"))
        except ValueError:
            logger.debug(f"Unparseable CPU figure from docker stats: {cpu!r}")
        memory_mb = parse_memory_mb(memory.split("/")[0])
        if memory_mb is not None:
            snapshot.performance["memory_usage"] = memory_mb

    async def repair(self, snapshot: HealthSnapshot) -> bool:
        """Repair database configuration, then recreate the container if it is down."""
        repaired = True
        if not snapshot.checks.get("database_connected", True) or not snapshot.checks.get("migrations_up_to_date", True):
            repaired = await self.validator.repair()
            logger.info(f"Database configuration repair {'succeeded' if repaired else 'failed'}")

        if not snapshot.checks.get("container_running", False):
            repaired = await RestartContainerAction(self.ctx).recreate(self.container, "app")
        return repaired
