"""Port conflict actions."""
import asyncio
import logging
import socket
from typing import Optional

import psutil

from ..classification.categories import ClassifiedError
from ..events import EventType
from ..types import ActionType
from .base import BaseAction

logger = logging.getLogger(__name__)

# Alternative host port ranges per service, inclusive
PORT_RANGES: dict[str, tuple[int, int]] = {
    "postgres": (5433, 5440),
    "redis": (6380, 6390),
    "kali": (6900, 6910),
    "vscode": (6920, 6930),
    "empire": (1337, 1350),
    "sysreptor": (9000, 9010),
    "bbot": (8080, 8090),
    "maltego": (6940, 6950),
    "burpsuite": (6960, 6970),
}

DEFAULT_PORT_SPAN = 100


def listening_ports() -> set[int]:
    """Local TCP ports with a listening socket."""
    try:
        connections = psutil.net_connections(kind="tcp")
    except (psutil.AccessDenied, OSError) as e:
        logger.debug(f"Cannot read connection table: {e}")
        return set()
    return {c.laddr.port for c in connections if c.status == psutil.CONN_LISTEN and c.laddr}


def port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind(("0.0.0.0", port))
            return True
        except OSError:
            return False


def port_range_for(container_name: Optional[str], port: int) -> tuple[int, int]:
    if container_name:
        lowered = container_name.lower()
        for service, port_range in PORT_RANGES.items():
            if service in lowered:
                return port_range
    return port + 1, port + DEFAULT_PORT_SPAN


class FindAlternativePortAction(BaseAction):
    """Find a free port in the service's range and announce it.

    Nothing is restarted here; subscribers of ``port-alternative-found``
    decide how to apply the new mapping.
    """

    action_type = ActionType.FIND_ALTERNATIVE_PORT
    description = "Find an unused port in the service's range and announce it"

    def is_free(self, port: int, in_use: set[int]) -> bool:
        return port not in in_use and port_is_free(port)

    async def execute(self, error: ClassifiedError) -> bool:
        port = error.context.get("port")
        if not port:
            logger.warning(f"No port in context of {error.id}")
            return False

        port = int(port)
        container_name = self.container_for(error)
        start, end = port_range_for(container_name, port)
        in_use = listening_ports()

        for candidate in range(start, end + 1):
            if candidate == port:
                continue
            if self.is_free(candidate, in_use):
                logger.info(f"Alternative port {candidate} found for {container_name or port}")
                if self.ctx.bus is not None:
                    self.ctx.bus.publish(
                        EventType.PORT_ALTERNATIVE_FOUND,
                        original_port=port,
                        alternative_port=candidate,
                        container_name=container_name,
                        error=error
                    )
                return True

        logger.warning(f"No free port in {start}-{end} for {container_name or port}")
        return False


class KillConflictingProcessAction(BaseAction):
    """Terminate whatever process is listening on the conflicting port."""

    action_type = ActionType.KILL_CONFLICTING_PROCESS
    description = "Terminate the process holding the conflicting port"

    grace_period = 3.0

    def find_listeners(self, port: int) -> list[int]:
        try:
            connections = psutil.net_connections(kind="inet")
        except (psutil.AccessDenied, OSError) as e:
            logger.debug(f"Cannot read connection table: {e}")
            return []
        return sorted({
            c.pid for c in connections
            if c.pid and c.laddr and c.laddr.port == port and c.status == psutil.CONN_LISTEN
        })

    def terminate(self, pid: int) -> bool:
        try:
            process = psutil.Process(pid)
            process.terminate()
            try:
                process.wait(timeout=self.grace_period)
            except psutil.TimeoutExpired:
                process.kill()
            return True
        except psutil.NoSuchProcess:
            return True
        except psutil.AccessDenied:
            logger.warning(f"Access denied terminating process {pid}")
            return False

    async def execute(self, error: ClassifiedError) -> bool:
        port = error.context.get("port")
        if not port:
            return False
        port = int(port)

        pids = self.find_listeners(port)
        if not pids:
            # Connection table may hide other users' processes
            result = await self.run(f"fuser -k {port}/tcp")
            return result.ok

        killed = [pid for pid in pids if await asyncio.to_thread(self.terminate, pid)]
        if len(killed) < len(pids):
            await self.run(f"fuser -k {port}/tcp")

        logger.info(f"Terminated {len(killed)} process(es) on port {port}")
        return bool(killed) or port_is_free(port)
