"""Container cleanup and restart actions."""
import logging

from ..classification.categories import ClassifiedError
from ..types import ActionType
from .base import (
    BaseAction,
    compose_up,
    container_exists,
    stop_and_remove,
    wait_until_running,
)

logger = logging.getLogger(__name__)


class CleanupContainersAction(BaseAction):
    """Remove a conflicting container by name, by id and by fuzzy pattern."""

    action_type = ActionType.CLEANUP_CONTAINERS
    description = "Remove conflicting containers and prune stopped ones"

    def base_name(self, name: str) -> str:
        prefix = self.ctx.config.container_prefix
        base = name.lstrip("/")
        return base[len(prefix):] if base.startswith(prefix) else base

    def name_variations(self, name: str) -> list[str]:
        base = self.base_name(name)
        variations = [name, name.lstrip("/"), base, f"{self.ctx.config.container_prefix}{base}"]
        return list(dict.fromkeys(v for v in variations if v))

    async def execute(self, error: ClassifiedError) -> bool:
        name = self.container_for(error)
        container_id = error.context.get("conflicting_container_id")
        removed_any = False

        if name:
            for candidate in self.name_variations(name):
                result = await self.run(f"docker rm -f {self.quote(candidate)}")
                if result.ok:
                    logger.info(f"Removed container {candidate}")
                    removed_any = True

        if container_id:
            result = await self.run(f"docker rm -f {self.quote(container_id)}")
            if result.ok:
                logger.info(f"Removed conflicting container {container_id}")
                removed_any = True

        if name:
            listed = await self.run(f"docker ps -aq --filter name={self.quote(self.base_name(name))}")
            for found_id in listed.stdout.split() if listed.ok else []:
                result = await self.run(f"docker rm -f {found_id}")
                removed_any = removed_any or result.ok

        await self.run("docker container prune -f", privileged_fallback=False)

        if not name:
            return removed_any

        for candidate in self.name_variations(name):
            if await container_exists(self.ctx.runner, candidate):
                logger.warning(f"Container {candidate} still present after cleanup")
                return False
        return True


class RestartContainerAction(BaseAction):
    """Stop, remove and recreate the container an error refers to."""

    action_type = ActionType.RESTART_CONTAINER
    description = "Recreate the failed container and wait for it to come up"

    def compose_service(self, container: str) -> str:
        prefix = self.ctx.config.container_prefix
        return container[len(prefix):] if container.startswith(prefix) else container

    async def execute(self, error: ClassifiedError) -> bool:
        container = self.container_for(error)
        if not container:
            logger.warning(f"No container named in {error.id}, nothing to restart")
            return False
        return await self.recreate(container, self.compose_service(container))

    async def recreate(self, container: str, service: str) -> bool:
        timings = self.ctx.timings
        await stop_and_remove(self.ctx.runner, container, timings.stop_timeout)
        await self.sleep(timings.settle_delay)

        if not await compose_up(self.ctx, service):
            logger.warning(f"docker-compose could not start {service}")
            return False

        if not await wait_until_running(self.ctx, container):
            logger.warning(f"{container} did not report running in time")
            return False

        logger.info(f"{container} recreated")
        return True
