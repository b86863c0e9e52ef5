"""Redis persistence repair actions."""
import logging
from pathlib import Path

from ..classification.categories import ClassifiedError
from ..types import ActionType
from .base import BaseAction, compose_up, stop_and_remove, wait_until_running
from .volumes import VolumePermissionManager

logger = logging.getLogger(__name__)

STALE_PERSISTENCE_GLOBS = ("*.rdb", "*.base.rdb", "*.base.aof")
REDIS_PERSISTENCE_GLOBS = ("*.rdb", "*.aof", "*.manifest")


class RedisAction(BaseAction):
    """Shared helpers for actions on the redis container."""

    @property
    def container(self) -> str:
        return self.ctx.config.redis_container

    @property
    def data_dir(self) -> Path:
        return self.path("redis-data")

    async def redis_cli(self, *args: str, timeout: float = 10):
        return await self.run(
            f"docker exec {self.container} redis-cli {' '.join(args)}",
            timeout=timeout
        )

    async def remove_matching(self, directory: Path, patterns: tuple[str, ...]) -> int:
        if not directory.is_dir():
            return 0
        manager = VolumePermissionManager(self.ctx)
        removed = 0
        for pattern in patterns:
            for entry in directory.glob(pattern):
                if entry.is_file() and await manager.remove_file(entry):
                    logger.info(f"Removed {entry}")
                    removed += 1
        return removed

    async def start_redis(self) -> bool:
        if not await compose_up(self.ctx, "redis"):
            return False
        return await wait_until_running(self.ctx, self.container)


class RemoveStaleRDBAction(RedisAction):
    action_type = ActionType.REMOVE_STALE_RDB
    description = "Remove stale RDB and base AOF files that redis cannot load"

    async def execute(self, error: ClassifiedError) -> bool:
        removed = await self.remove_matching(self.data_dir, STALE_PERSISTENCE_GLOBS)
        removed += await self.remove_matching(self.data_dir / "appendonlydir", STALE_PERSISTENCE_GLOBS)
        if not removed:
            return False
        await stop_and_remove(self.ctx.runner, self.container, self.ctx.timings.stop_timeout)
        return await self.start_redis()


class FixRedisPermissionsAction(RedisAction):
    action_type = ActionType.FIX_REDIS_PERMISSIONS
    description = "Fix redis data volume ownership and restart redis"

    async def execute(self, error: ClassifiedError) -> bool:
        if not await VolumePermissionManager(self.ctx).fix_redis_permissions():
            return False
        return await self.start_redis()


class CleanRedisDataAction(RedisAction):
    """Wipe redis persistence. Cached data is lost; redis starts empty."""

    action_type = ActionType.CLEAN_REDIS_DATA
    description = "Delete redis persistence files and start with an empty dataset"

    async def execute(self, error: ClassifiedError) -> bool:
        await stop_and_remove(self.ctx.runner, self.container, self.ctx.timings.stop_timeout)
        await self.remove_matching(self.data_dir, REDIS_PERSISTENCE_GLOBS)

        append_dir = self.data_dir / "appendonlydir"
        await self.remove_matching(append_dir, ("*",))

        if not await VolumePermissionManager(self.ctx).fix_redis_permissions():
            return False
        return await self.start_redis()


class RestartRedisContainerAction(RedisAction):
    action_type = ActionType.RESTART_REDIS_CONTAINER
    description = "Recreate the redis container"

    async def execute(self, error: ClassifiedError) -> bool:
        await stop_and_remove(self.ctx.runner, self.container, self.ctx.timings.stop_timeout)
        await self.sleep(self.ctx.timings.settle_delay)
        if not await self.start_redis():
            return False
        ping = await self.redis_cli("ping")
        return ping.ok and "PONG" in ping.stdout


class DisableRedisAOFAction(RedisAction):
    """Last resort: turn off append-only persistence to get redis serving again."""

    action_type = ActionType.DISABLE_REDIS_AOF
    description = "Disable redis append-only persistence"

    async def execute(self, error: ClassifiedError) -> bool:
        disabled = await self.redis_cli("CONFIG", "SET", "appendonly", "no")
        if not disabled.ok or "OK" not in disabled.stdout:
            return False
        rewrite = await self.redis_cli("CONFIG", "REWRITE")
        if not rewrite.ok:
            logger.warning("appendonly disabled for this run only, CONFIG REWRITE failed")
        return True


class ForceAOFRewriteAction(RedisAction):
    action_type = ActionType.FORCE_AOF_REWRITE
    description = "Trigger a background AOF rewrite once redis answers"

    ping_attempts = 5

    async def execute(self, error: ClassifiedError) -> bool:
        for _ in range(self.ping_attempts):
            ping = await self.redis_cli("ping")
            if ping.ok and "PONG" in ping.stdout:
                break
            await self.sleep(self.ctx.timings.poll_interval)
        else:
            return False

        rewrite = await self.redis_cli("BGREWRITEAOF", timeout=30)
        return rewrite.ok
