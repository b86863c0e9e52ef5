"""Internet, DNS and container registry reachability poller."""
import asyncio
import logging
import os
import socket
import time
from typing import Any

import aiohttp

from ..actions.network import NetworkRepairAction
from ..classification.categories import ClassifiedError
from ..events import EventType
from ..types import ErrorKind, ErrorSeverity
from .base import BaseHealthPoller, HealthSnapshot

logger = logging.getLogger(__name__)

CONNECTIVITY_URLS = ("https://www.google.com", "https://1.1.1.1", "https://8.8.8.8")
DNS_HOSTS = ("registry-1.docker.io", "docker.io", "ghcr.io", "quay.io")
DOCKER_HUB_URLS = ("https://registry-1.docker.io/v2/", "https://index.docker.io/v1/")
REGISTRIES = {
    "Docker Hub": "https://registry-1.docker.io",
    "GitHub Container Registry": "https://ghcr.io",
    "Quay.io": "https://quay.io",
    "GitLab Registry": "https://registry.gitlab.com",
}
PROXY_VARIABLES = ("HTTP_PROXY", "HTTPS_PROXY", "http_proxy", "https_proxy")

# Health transitions re-published under the network event names
NETWORK_EVENTS = {
    EventType.HEALTH_DEGRADED: EventType.NETWORK_DEGRADED,
    EventType.HEALTH_CRITICAL: EventType.NETWORK_CRITICAL,
    EventType.HEALTH_RESTORED: EventType.NETWORK_RESTORED,
}


class NetworkHealthPoller(BaseHealthPoller):
    """Checks that images can be pulled: internet, DNS and Docker Hub.

    Proxy settings are reported as a warning. Registries that answer are
    listed under ``performance["registries"]``.
    """

    service = "network"

    def default_interval(self) -> float:
        return self.config.network_interval

    async def fetch_status(self, session: aiohttp.ClientSession, url: str) -> int:
        async with session.get(url, allow_redirects=False) as response:
            return response.status

    async def resolve(self, host: str) -> bool:
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(loop.getaddrinfo(host, 443, type=socket.SOCK_STREAM),
                                   timeout=self.config.probe_timeout)
            return True
        except (OSError, TimeoutError) as e:
            logger.debug(f"Cannot resolve {host}: {e}")
            return False

    async def any_reachable(self, session: aiohttp.ClientSession, urls) -> bool:
        """Whether any URL answers below 500. Registries answer 401 to anonymous calls."""
        for url in urls:
            try:
                status = await self.fetch_status(session, url)
            except (aiohttp.ClientError, TimeoutError) as e:
                logger.debug(f"{url} unreachable: {e}")
                continue
            if status < 500:
                return True
        return False

    async def proxy_configured(self) -> bool:
        if any(os.environ.get(name) for name in PROXY_VARIABLES):
            return True
        info = await self.runner.run("docker info --format '{{.HTTPProxy}}'",
                                     timeout=self.config.probe_timeout, privileged_fallback=False)
        return info.ok and bool(info.stdout.strip())

    async def probe(self) -> HealthSnapshot:
        snapshot = HealthSnapshot(service=self.service)
        timeout = aiohttp.ClientTimeout(total=self.config.probe_timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            started = time.monotonic()
            connected = await self.any_reachable(session, CONNECTIVITY_URLS)
            snapshot.performance["latency"] = round(time.monotonic() - started, 3)
            snapshot.check("internet", connected, "No internet connectivity detected")

            resolved = False
            for host in DNS_HOSTS:
                if await self.resolve(host):
                    resolved = True
                    break
            snapshot.check("dns", resolved, "DNS resolution failed")

            snapshot.check("docker_hub", await self.any_reachable(session, DOCKER_HUB_URLS),
                           "Docker Hub registry unreachable")

            snapshot.performance["registries"] = [
                name for name, url in REGISTRIES.items()
                if await self.any_reachable(session, (url,))
            ]

        if await self.proxy_configured():
            snapshot.warnings.append("Proxy configuration detected")
        if not snapshot.performance["registries"]:
            snapshot.warnings.append("No container registry is reachable")
        return snapshot

    def _publish(self, event_type: EventType, **payload: Any) -> None:
        super()._publish(event_type, **payload)
        if event_type in NETWORK_EVENTS:
            super()._publish(NETWORK_EVENTS[event_type], **payload)

    async def repair(self, snapshot: HealthSnapshot) -> bool:
        error = ClassifiedError(
            kind=ErrorKind.NETWORK_ERROR,
            severity=ErrorSeverity.MEDIUM,
            message=", ".join(snapshot.errors) or "Network checks failing",
            context={"service": self.service, "failed_checks": snapshot.failed_checks},
            auto_recoverable=True
        )
        return await NetworkRepairAction(self.ctx).execute(error)
