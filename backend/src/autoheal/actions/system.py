"""Host-level actions: disk, memory, docker daemon and directories."""
import logging
import re
from pathlib import Path

from ..classification.categories import ClassifiedError
from ..types import ActionType
from .base import BaseAction

logger = logging.getLogger(__name__)

# Containers never stopped to free memory
PROTECTED_CONTAINERS = ("postgres", "redis")


class CleanupDiskSpaceAction(BaseAction):
    action_type = ActionType.CLEANUP_DISK_SPACE
    description = "Prune unused images, volumes and networks"

    async def execute(self, error: ClassifiedError) -> bool:
        results = [
            await self.run("docker image prune -af", timeout=300),
            await self.run("docker volume prune -f", timeout=120),
            await self.run("docker network prune -f", timeout=60),
        ]
        freed = [r.stdout.splitlines()[-1] for r in results if r.ok and r.stdout]
        if freed:
            logger.info(f"Disk cleanup: {'; '.join(freed)}")
        return any(r.ok for r in results)


class FreeMemoryAction(BaseAction):
    """Drop page caches, then stop up to two non-database containers."""

    action_type = ActionType.FREE_MEMORY
    description = "Drop caches and stop non-essential containers"

    max_stopped = 2

    async def execute(self, error: ClassifiedError) -> bool:
        await self.run("sh -c 'sync && echo 3 > /proc/sys/vm/drop_caches'")

        listed = await self.run("docker ps --format '{{.Names}}'")
        if not listed.ok:
            return False

        candidates = [
            name for name in listed.stdout.split()
            if not any(p in name for p in PROTECTED_CONTAINERS)
        ]
        stopped = 0
        for name in candidates[:self.max_stopped]:
            result = await self.run(f"docker stop {self.quote(name)}", timeout=60)
            if result.ok:
                logger.info(f"Stopped {name} to free memory")
                stopped += 1
        return stopped > 0


class RestartDockerDaemonAction(BaseAction):
    action_type = ActionType.RESTART_DOCKER_DAEMON
    description = "Restart the Docker daemon and wait until it answers"

    async def execute(self, error: ClassifiedError) -> bool:
        restart = await self.run("systemctl restart docker", timeout=120)
        if not restart.ok:
            restart = await self.run("service docker restart", timeout=120)
            if not restart.ok:
                logger.warning(f"Could not restart docker: {restart.stderr}")
                return False

        for _ in range(self.ctx.timings.daemon_retries):
            await self.sleep(self.ctx.timings.poll_interval)
            info = await self.run("docker info", timeout=15, privileged_fallback=False)
            if info.ok:
                logger.info("Docker daemon is back")
                return True
        return False


class CreateMissingDirectoriesAction(BaseAction):
    """Create every absolute path mentioned in the error."""

    action_type = ActionType.CREATE_MISSING_DIRECTORIES
    description = "Create missing volume mount directories"

    PATH_RE = re.compile(r"(/[\w.@+-]+(?:/[\w.@+-]+)*)")

    def candidate_paths(self, error: ClassifiedError) -> list[Path]:
        found = self.PATH_RE.findall(error.message)
        for key in ("mount_path", "volume_path"):
            if error.context.get(key):
                found.append(str(error.context[key]))
        ignored = ("/var/run/docker.sock", "/proc", "/sys", "/dev")
        paths = [p for p in dict.fromkeys(found) if not p.startswith(ignored)]
        return [Path(p) for p in paths]

    async def execute(self, error: ClassifiedError) -> bool:
        paths = self.candidate_paths(error)
        if not paths:
            return False

        created = 0
        for path in paths:
            try:
                path.mkdir(parents=True, exist_ok=True)
                created += 1
                continue
            except PermissionError:
                pass
            except OSError as e:
                logger.warning(f"Cannot create {path}: {e}")
                continue
            result = await self.run(f"mkdir -p {self.quote(path)}")
            created += int(result.ok)
        return created == len(paths)


class RetryWithSudoAction(BaseAction):
    action_type = ActionType.RETRY_WITH_SUDO
    description = "Re-run the failed command with elevated privileges"

    async def execute(self, error: ClassifiedError) -> bool:
        command = error.context.get("command")
        if not command:
            return False
        if not command.lstrip().startswith("sudo "):
            command = f"sudo -n {command}"
        result = await self.run(command, privileged_fallback=False)
        return result.ok
