"""HTTP reachability poller for the SysReptor web front end."""
import logging
from typing import Optional

import aiohttp

from ..actions.reportapp import RestartSysreptorContainerAction
from ..classification.categories import ClassifiedError
from ..types import ErrorKind, ErrorSeverity
from .base import BaseHealthPoller, HealthSnapshot

logger = logging.getLogger(__name__)

HEALTH_ENDPOINTS = ("/", "/health", "/api/v1/", "/login/", "/admin/", "/static/")
USER_AGENT = "autoheal-health-poller/1.0"


def is_reachable(status: int) -> bool:
    """2xx and 3xx mean the service answered; 404 means it runs but lacks the route."""
    return 200 <= status < 400 or status == 404


class SysreptorHttpPoller(BaseHealthPoller):
    service = "sysreptor"

    def __init__(self, ctx, endpoints: tuple[str, ...] = HEALTH_ENDPOINTS, **kwargs):
        super().__init__(ctx, **kwargs)
        self.container = self.config.sysreptor_container
        self.base_url = self.config.sysreptor_url.rstrip("/")
        self.endpoints = endpoints

    def default_interval(self) -> float:
        return self.config.sysreptor_interval

    async def fetch_status(self, session: aiohttp.ClientSession, url: str) -> int:
        async with session.get(url, allow_redirects=False) as response:
            return response.status

    async def probe(self) -> HealthSnapshot:
        snapshot = HealthSnapshot(service=self.service)
        last_error: Optional[str] = None
        timeout = aiohttp.ClientTimeout(total=self.config.probe_timeout)

        async with aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": USER_AGENT}) as session:
            for endpoint in self.endpoints:
                url = f"{self.base_url}{endpoint}"
                try:
                    status = await self.fetch_status(session, url)
                except (aiohttp.ClientError, TimeoutError) as e:
                    last_error = str(e) or type(e).__name__
                    logger.debug(f"{url} unreachable: {last_error}")
                    continue

                if is_reachable(status):
                    logger.debug(f"SysReptor answered {status} on {url}")
                    snapshot.performance["endpoint"] = endpoint
                    snapshot.performance["status"] = status
                    snapshot.check("http_reachable", True)
                    return snapshot
                last_error = f"HTTP {status}"

        snapshot.check("http_reachable", False,
                       f"Sysreptor health check failed: {last_error or 'no endpoint answered'}")
        return snapshot

    def _classify(self, snapshot: HealthSnapshot) -> None:
        if self.classifier is None:
            return
        for message in snapshot.errors:
            self.classifier.classify(message, {
                "service": self.service,
                "container_name": self.container,
                "operation": "health_check",
                "source": "health_poller",
                "health_endpoints": [f"{self.base_url}{e}" for e in self.endpoints],
                "response_time": snapshot.performance.get("response_time"),
            })

    async def repair(self, snapshot: HealthSnapshot) -> bool:
        error = ClassifiedError(
            kind=ErrorKind.HEALTH_CHECK_FAILED,
            severity=ErrorSeverity.HIGH,
            message=snapshot.errors[0] if snapshot.errors else "Sysreptor health check failed",
            context={"container_name": self.container},
            auto_recoverable=True
        )
        return await RestartSysreptorContainerAction(self.ctx).execute(error)
