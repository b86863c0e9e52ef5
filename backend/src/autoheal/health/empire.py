"""Empire C2 framework health poller."""
import logging

import aiohttp

from ..actions.base import compose_up, stop_and_remove, wait_until_running
from ..actions.volumes import VolumePermissionManager
from .base import BaseHealthPoller, HealthSnapshot

logger = logging.getLogger(__name__)

STARTUP_SEQUENCE = ("Empire starting up", "Application startup complete", "Uvicorn running on")
STARTUP_MARKERS = STARTUP_SEQUENCE + (
    "Empire database initialized",
    "Starting Empire server",
    "Empire REST API running",
    "Empire started successfully",
    "Server running at",
    "Starkiller served at",
)
API_ENDPOINTS = ("/api/admin/users", "/api/users", "/api/", "/")
API_OK_STATUSES = (200, 401, 403)
EMPIRE_DATABASE = "/empire/empire.db"
EMPIRE_IMAGE = "bcsecurity/empire:latest"
STARKILLER_PORT = 5000
VOLUME_DIRS = (("uploads", "empire", "data"), ("uploads", "empire", "downloads"))


def startup_completed(logs: str) -> bool:
    if all(marker in logs for marker in STARTUP_SEQUENCE):
        return True
    lowered = logs.lower()
    return any(marker.lower() in lowered for marker in STARTUP_MARKERS)


def analyze_logs(logs: str) -> tuple[list[str], list[str]]:
    """Pick error and warning lines out of recent container logs."""
    errors, warnings = [], []
    for line in logs.splitlines():
        lowered = line.lower()
        if any(word in lowered for word in ("error", "exception", "failed")):
            errors.append(line.strip())
        elif "warn" in lowered:
            warnings.append(line.strip())
    return errors[-5:], warnings[-5:]


class EmpireHealthPoller(BaseHealthPoller):
    service = "empire"

    def __init__(self, ctx, **kwargs):
        super().__init__(ctx, **kwargs)
        self.container = self.config.empire_container
        self.base_url = self.config.empire_url.rstrip("/")

    def default_interval(self) -> float:
        return self.config.empire_interval

    async def probe(self) -> HealthSnapshot:
        snapshot = HealthSnapshot(service=self.service)

        inspect = await self.runner.run(
            f"docker inspect {self.container} --format '{{{{.State.Status}}}}'",
            timeout=self.config.probe_timeout
        )
        status = inspect.stdout.strip() if inspect.ok else "missing"
        snapshot.performance["container_status"] = status
        if not snapshot.check("container_running", status == "running",
                              f"Empire container {self.container} is not running ({status})"):
            return snapshot

        logs = await self.runner.run(f"docker logs {self.container} --tail 100 2>&1",
                                     timeout=self.config.probe_timeout)
        snapshot.check("setup_completed", startup_completed(logs.stdout),
                       "Empire setup has not completed successfully")

        snapshot.check("api_responding", await self.api_responding(),
                       f"Empire API is not responding on {self.base_url}")

        database = await self.runner.run(f"docker exec {self.container} ls -la {EMPIRE_DATABASE}",
                                         timeout=self.config.probe_timeout)
        snapshot.check("database_present", database.ok and "empire.db" in database.stdout,
                       "Empire database connection failed: empire.db not found")

        starkiller = await self.runner.run(
            f"docker exec {self.container} sh -c 'netstat -tln | grep :{STARKILLER_PORT}'",
            timeout=self.config.probe_timeout, privileged_fallback=False
        )
        if not (starkiller.ok and f":{STARKILLER_PORT}" in starkiller.stdout):
            snapshot.warnings.append("Starkiller UI may not be accessible")

        log_errors, log_warnings = analyze_logs(logs.stdout)
        snapshot.warnings.extend(log_warnings)
        snapshot.performance["log_errors"] = log_errors
        return snapshot

    async def fetch_status(self, session: aiohttp.ClientSession, url: str) -> int:
        async with session.head(url, allow_redirects=False) as response:
            return response.status

    async def api_responding(self) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.config.probe_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for endpoint in API_ENDPOINTS:
                try:
                    if await self.fetch_status(session, f"{self.base_url}{endpoint}") in API_OK_STATUSES:
                        return True
                except (aiohttp.ClientError, TimeoutError) as e:
                    logger.debug(f"Empire API {endpoint} unreachable: {e}")

        # API may still be binding; a live empire process counts
        process = await self.runner.run(f"docker exec {self.container} pgrep -f empire",
                                        timeout=self.config.probe_timeout, privileged_fallback=False)
        return process.ok and bool(process.stdout.strip())

    async def repair(self, snapshot: HealthSnapshot) -> bool:
        """Remove stale empire containers, prepare volumes, start and wait."""
        timings = self.ctx.timings
        for name in (self.container, "empire-data"):
            await stop_and_remove(self.runner, name, timings.stop_timeout)
        await self.runner.run("docker container prune -f", timeout=60)

        manager = VolumePermissionManager(self.ctx)
        for parts in VOLUME_DIRS:
            path = self.ctx.project_root.joinpath(*parts)
            if await manager.ensure_directory(path):
                await manager.set_permissions(path, "755", recursive=False)
            else:
                logger.error(f"Failed to prepare volume directory {path}")

        if not await compose_up(self.ctx, "empire") and not await self.run_standalone():
            logger.error("Could not start empire")
            return False
        return await wait_until_running(self.ctx, self.container)

    async def run_standalone(self) -> bool:
        """Start empire outside compose with a data container for /empire."""
        await self.runner.run(f"docker pull {EMPIRE_IMAGE}", timeout=600)
        await self.runner.run(f"docker create -v /empire --name empire-data {EMPIRE_IMAGE}", timeout=60)
        result = await self.runner.run(
            f"docker run -d --name {self.container} --restart unless-stopped "
            f"-p 1337:1337 -p {STARKILLER_PORT}:{STARKILLER_PORT} --volumes-from empire-data {EMPIRE_IMAGE}",
            timeout=120
        )
        return result.ok
