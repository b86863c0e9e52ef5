"""Network repair and image pull actions for registry connectivity failures."""
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any

import aiohttp

from ..classification.categories import ClassifiedError
from ..types import ActionType
from .base import BaseAction
from .system import RestartDockerDaemonAction

logger = logging.getLogger(__name__)

NAMESERVERS = ("8.8.8.8", "1.1.1.1", "9.9.9.9")
DAEMON_DNS = ["8.8.8.8", "1.1.1.1"]
DAEMON_SETTINGS = {
    "max-concurrent-downloads": 3,
    "max-concurrent-uploads": 5,
}
PULL_VARIANTS = ("", " --disable-content-trust", " --platform linux/amd64")
PULL_TIMEOUT = 300


def missing_nameservers(resolv_conf: str, wanted: tuple[str, ...] = NAMESERVERS) -> list[str]:
    present = set()
    for line in resolv_conf.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "nameserver":
            present.add(parts[1])
    return [server for server in wanted if server not in present]


def merge_daemon_config(current: dict[str, Any], mirrors: list[str]) -> dict[str, Any]:
    """Daemon settings with DNS, concurrency limits and reachable mirrors merged in."""
    merged = dict(current)
    merged["dns"] = list(dict.fromkeys(list(current.get("dns", [])) + DAEMON_DNS))
    merged.update(DAEMON_SETTINGS)
    if mirrors:
        merged["registry-mirrors"] = list(dict.fromkeys(list(current.get("registry-mirrors", [])) + mirrors))
    return merged


class NetworkRepairAction(BaseAction):
    """Flush DNS, add public nameservers, tune the daemon and restart it.

    Root-owned files are written directly when possible, otherwise through
    a temporary copy and a privileged ``cp``.
    """

    action_type = ActionType.REPAIR_NETWORK
    description = "Repair DNS and Docker daemon network settings"

    async def flush_dns_cache(self) -> bool:
        for command in ("systemctl restart systemd-resolved", "/etc/init.d/dns-clean restart"):
            result = await self.run(command, timeout=60)
            if result.ok:
                logger.info(f"Flushed DNS cache with '{command}'")
                return True
        logger.warning("Could not flush the DNS cache")
        return False

    async def write_system_file(self, path: Path, content: str) -> bool:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            return True
        except PermissionError:
            logger.debug(f"No write access to {path}, copying through the runner")

        fd, staged = tempfile.mkstemp(prefix="autoheal-", suffix=path.suffix)
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(content)
            result = await self.run(f"cp {self.quote(staged)} {self.quote(path)}")
        finally:
            os.unlink(staged)
        if not result.ok:
            logger.warning(f"Could not write {path}: {result.stderr}")
        return result.ok

    async def add_nameservers(self) -> list[str]:
        """Append the public nameservers missing from resolv.conf, after a backup."""
        resolv = Path(self.ctx.config.resolv_conf)
        try:
            current = resolv.read_text() if resolv.exists() else ""
        except OSError as e:
            logger.warning(f"Cannot read {resolv}: {e}")
            return []

        missing = missing_nameservers(current)
        if not missing:
            return []

        if current:
            backup = resolv.with_name(f"{resolv.name}.backup.{int(time.time())}")
            if not await self.write_system_file(backup, current):
                return []
            logger.info(f"Backed up {resolv} to {backup}")

        content = current if not current or current.endswith("\n") else current + "\n"
        content += "".join(f"nameserver {server}\n" for server in missing)
        if not await self.write_system_file(resolv, content):
            return []
        logger.info(f"Added nameservers {', '.join(missing)} to {resolv}")
        return missing

    async def working_mirrors(self) -> list[str]:
        """Configured registry mirrors that answer over HTTPS."""
        if not self.ctx.config.registry_mirrors:
            return []
        working = []
        timeout = aiohttp.ClientTimeout(total=self.ctx.config.probe_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for mirror in self.ctx.config.registry_mirrors:
                try:
                    async with session.get(mirror) as response:
                        if response.status < 500:
                            working.append(mirror)
                except (aiohttp.ClientError, TimeoutError) as e:
                    logger.debug(f"Mirror {mirror} unreachable: {e}")
        return working

    async def configure_daemon(self) -> bool:
        """Merge network settings into daemon.json. Returns True when the file changed."""
        path = Path(self.ctx.config.docker_daemon_config)
        try:
            current = json.loads(path.read_text()) if path.exists() else {}
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot read {path}: {e}")
            return False

        merged = merge_daemon_config(current, await self.working_mirrors())
        if merged == current:
            logger.debug(f"{path} already has the network settings")
            return False
        if not await self.write_system_file(path, json.dumps(merged, indent=2) + "\n"):
            return False
        logger.info(f"Updated Docker daemon settings in {path}")
        return True

    async def execute(self, error: ClassifiedError) -> bool:
        flushed = await self.flush_dns_cache()
        added = await self.add_nameservers()
        if await self.configure_daemon():
            return await RestartDockerDaemonAction(self.ctx).execute(error)
        return flushed or bool(added)


class PullImageWithRetryAction(BaseAction):
    """Pull an image with exponential backoff and alternate pull flags.

    Halfway through the attempts the network repair runs once.
    """

    action_type = ActionType.PULL_IMAGE_WITH_RETRY
    description = "Pull the image again with backoff, repairing the network midway"

    async def pull(self, image: str) -> bool:
        for variant in PULL_VARIANTS:
            result = await self.run(f"docker pull {self.quote(image)}{variant}", timeout=PULL_TIMEOUT)
            if result.ok:
                logger.info(f"Pulled {image}{variant}")
                return True
            logger.debug(f"docker pull {image}{variant} failed: {result.stderr}")
        return False

    async def execute(self, error: ClassifiedError) -> bool:
        image = error.context.get("image")
        if not image:
            logger.warning(f"No image to pull for {error.id}")
            return False

        retries = self.ctx.timings.pull_retries
        for attempt in range(1, retries + 1):
            if attempt > 1:
                await self.sleep(2 ** (attempt - 1) * self.ctx.timings.pull_backoff)
            logger.info(f"Pulling {image} (attempt {attempt}/{retries})")
            if await self.pull(image):
                return True
            if attempt == retries // 2:
                logger.info("Repairing the network before the remaining pull attempts")
                await NetworkRepairAction(self.ctx).execute(error)

        logger.error(f"Failed to pull {image} after {retries} attempts")
        return False
