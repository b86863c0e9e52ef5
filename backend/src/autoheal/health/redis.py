"""Redis health poller."""
import asyncio
import logging

from ..actions.base import compose_up, container_running, wait_until_running
from ..actions.volumes import VolumePermissionManager
from .base import BaseHealthPoller, HealthSnapshot

logger = logging.getLogger(__name__)

AOF_REWRITE_MARKERS = ("temp file for AOF rewrite", "rewriteAppendOnlyFile")
MEMORY_WARNING_BYTES = 1_000_000_000


def parse_info(text: str) -> dict[str, str]:
    """Parse ``redis-cli INFO`` output into a flat dict."""
    info = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        key, _, value = line.partition(":")
        info[key] = value
    return info


class RedisHealthPoller(BaseHealthPoller):
    service = "redis"

    def __init__(self, ctx, **kwargs):
        super().__init__(ctx, **kwargs)
        self.container = self.config.redis_container

    def default_interval(self) -> float:
        return self.config.redis_interval

    async def redis_cli(self, *args: str):
        return await self.runner.run(
            f"docker exec {self.container} redis-cli {' '.join(args)}",
            timeout=self.config.probe_timeout
        )

    async def probe(self) -> HealthSnapshot:
        snapshot = HealthSnapshot(service=self.service)

        running = await container_running(self.runner, self.container)
        if not snapshot.check("container_running", running, f"Redis container {self.container} is not running"):
            return snapshot

        ping = await self.redis_cli("ping")
        responding = ping.ok and ping.stdout.strip() == "PONG"
        if not snapshot.check("responding", responding, "Redis is not responding to PING"):
            await self.check_permissions(snapshot)
            return snapshot

        aof_enabled = await self.aof_enabled()
        snapshot.performance["aof_enabled"] = aof_enabled
        if aof_enabled:
            writable = await self.runner.run(
                f'docker exec {self.container} sh -c "test -w /data/appendonlydir && echo writable || echo not_writable"',
                timeout=self.config.probe_timeout
            )
            snapshot.check(
                "aof_writable",
                writable.ok and writable.stdout.strip() == "writable",
                "Redis AOF directory /data/appendonlydir is not writable: permission denied"
            )

        await self.collect_stats(snapshot)
        await self.check_permissions(snapshot)
        return snapshot

    async def aof_enabled(self) -> bool:
        result = await self.redis_cli("CONFIG", "GET", "appendonly")
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        return result.ok and len(lines) >= 2 and lines[1] == "yes"

    async def collect_stats(self, snapshot: HealthSnapshot) -> None:
        result = await self.redis_cli("INFO")
        if not result.ok:
            snapshot.warnings.append("Could not read redis INFO")
            return
        info = parse_info(result.stdout)
        memory = int(info.get("used_memory", "0") or 0)
        snapshot.performance["memory_usage"] = memory
        snapshot.performance["connected_clients"] = int(info.get("connected_clients", "0") or 0)
        if memory > MEMORY_WARNING_BYTES:
            snapshot.warnings.append("Redis uses more than 1GB, consider setting memory limits")

    async def check_permissions(self, snapshot: HealthSnapshot) -> None:
        manager = VolumePermissionManager(self.ctx)
        volume = manager.validate_volume(manager.resolve("redis-data"))
        if volume.exists:
            snapshot.warnings.extend(f"redis-data: {issue}" for issue in volume.issues)

        logs = await self.runner.run(
            f"docker logs {self.container} --tail 50 2>&1 | grep -i 'permission denied' || true",
            timeout=self.config.probe_timeout
        )
        denied = logs.stdout.strip()
        message = "Permission denied errors found in Redis logs"
        if any(marker in denied for marker in AOF_REWRITE_MARKERS):
            message = "Redis AOF rewrite permission denied: temp file creation failed"
        snapshot.check("no_permission_errors", not denied, message)

    async def repair(self, snapshot: HealthSnapshot) -> bool:
        """Fix volume permissions, then start or restart redis and re-check."""
        if not snapshot.checks.get("no_permission_errors", True) or not snapshot.checks.get("aof_writable", True):
            # fix_redis_permissions removes the container
            if not await VolumePermissionManager(self.ctx).fix_redis_permissions():
                logger.error("Failed to fix redis volume permissions")
                return False
            await self._wait(self.ctx.timings.settle_delay)
            if not await compose_up(self.ctx, "redis"):
                logger.error("Could not start redis after the permission fix")
                return False
        elif not snapshot.checks.get("container_running", False):
            if not await compose_up(self.ctx, "redis"):
                await self.runner.run(f"docker start {self.container}", timeout=30)
        elif not snapshot.checks.get("responding", True):
            await self.runner.run(f"docker restart {self.container}", timeout=60)

        await wait_until_running(self.ctx, self.container)
        await self._wait(self.ctx.timings.service_start_wait)
        return (await self.probe()).is_healthy

    @staticmethod
    async def _wait(seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
