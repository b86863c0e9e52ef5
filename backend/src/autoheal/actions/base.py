"""Base class and shared context for recovery actions."""
import asyncio
import logging
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..classification.categories import ClassifiedError
from ..config import AutohealConfig
from ..events import EventBus
from ..types import ActionType, CommandResult, CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class ActionTimings:
    """Waits used by actions between external operations, in seconds."""
    settle_delay: float = 2.0
    poll_interval: float = 2.0
    ready_retries: int = 15
    daemon_retries: int = 10
    service_start_wait: float = 5.0
    stop_timeout: int = 10
    pull_retries: int = 5
    pull_backoff: float = 1.0

    @classmethod
    def immediate(cls) -> "ActionTimings":
        """Zero-delay timings for tests and dry runs."""
        return cls(settle_delay=0.0, poll_interval=0.0, ready_retries=3,
                   daemon_retries=3, service_start_wait=0.0, pull_retries=3, pull_backoff=0.0)


@dataclass
class ActionContext:
    """Collaborators shared by every action in a catalogue."""
    runner: CommandRunner
    config: AutohealConfig = field(default_factory=AutohealConfig)
    bus: Optional[EventBus] = None
    timings: ActionTimings = field(default_factory=ActionTimings)

    @property
    def project_root(self) -> Path:
        return Path(self.config.project_root)


class BaseAction(ABC):
    """A named repair operation.

    ``execute`` must be safe to call when its precondition no longer holds
    and always resolves to a single success flag.
    """

    action_type: ActionType
    description: str = ""

    def __init__(self, ctx: ActionContext):
        self.ctx = ctx

    @property
    def name(self) -> str:
        return self.action_type.value

    @abstractmethod
    async def execute(self, error: ClassifiedError) -> bool:
        """Run the repair for an error and report success."""
        pass

    async def run(self, command: str, timeout: Optional[float] = None,
                  privileged_fallback: bool = True) -> CommandResult:
        return await self.ctx.runner.run(
            command,
            timeout=timeout or self.ctx.config.command_timeout,
            privileged_fallback=privileged_fallback
        )

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    def container_for(self, error: ClassifiedError, default: Optional[str] = None) -> Optional[str]:
        """Container name an error refers to, without a leading slash."""
        name = error.context.get("container_name") or default
        if not name:
            return None
        return str(name).lstrip("/")

    def path(self, *parts: str) -> Path:
        return self.ctx.project_root.joinpath(*parts)

    @staticmethod
    def quote(value) -> str:
        return shlex.quote(str(value))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


async def container_running(runner: CommandRunner, name: str) -> bool:
    """Check whether a container with exactly this name is running."""
    result = await runner.run(
        f"docker ps --filter name=^/{name}$ --filter status=running --format '{{{{.Names}}}}'",
        timeout=10
    )
    return result.ok and name in result.stdout.split()


async def container_exists(runner: CommandRunner, name: str) -> bool:
    result = await runner.run(
        f"docker ps -a --filter name=^/{name}$ --format '{{{{.Names}}}}'",
        timeout=10
    )
    return result.ok and name in result.stdout.split()


async def stop_and_remove(runner: CommandRunner, name: str, stop_timeout: int = 10) -> bool:
    """Stop and remove a container. Returns whether it is gone afterwards."""
    stopped = await runner.run(f"docker stop --time {stop_timeout} {name}", timeout=stop_timeout + 20)
    if not stopped.ok:
        logger.debug(f"docker stop {name} failed: {stopped.stderr}")
    removed = await runner.run(f"docker rm -f {name}", timeout=30)
    if removed.ok or "no such container" in removed.stderr.lower():
        return True
    logger.warning(f"Could not remove {name}: {removed.stderr}")
    return False


async def wait_until_running(ctx: ActionContext, name: str) -> bool:
    """Poll until the container reports Up, within the configured retries."""
    for attempt in range(1, ctx.timings.ready_retries + 1):
        if await container_running(ctx.runner, name):
            logger.debug(f"{name} is running after {attempt} checks")
            return True
        if ctx.timings.poll_interval > 0:
            await asyncio.sleep(ctx.timings.poll_interval)
    return False


async def compose_up(ctx: ActionContext, service: str) -> bool:
    """Start a compose service. The runner's working directory is the project root."""
    result = await ctx.runner.run(f"docker-compose up -d {service}", timeout=120)
    return result.ok

