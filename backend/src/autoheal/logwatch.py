"""
Container log watcher.

Follows ``docker logs -f`` for one container and feeds lines that look like
errors to the classifier. The follow process is restarted after it exits
until the watcher is stopped.
"""
import asyncio
import logging
import re
from collections import deque
from typing import Optional

from .classification.categories import ClassifiedError
from .classification.classifier import ErrorClassifier
from .types import CommandRunner

logger = logging.getLogger(__name__)

ERROR_LINE_RE = re.compile(
    r"error|exception|failed|fatal|denied|refused|improperly configured|not found|traceback|"
    r"already in use|no space left",
    re.IGNORECASE
)


class LogWatcher:
    """Streams one container's logs into the classifier."""

    def __init__(
        self,
        container: str,
        classifier: ErrorClassifier,
        runner: Optional[CommandRunner] = None,
        tail: int = 50,
        buffer_size: int = 100,
        restart_delay: float = 5.0
    ):
        self.container = container
        self.classifier = classifier
        self.runner = runner
        self.tail = tail
        self.restart_delay = restart_delay
        self.buffer: deque[str] = deque(maxlen=buffer_size)
        self.errors_detected = 0

        self._task: Optional[asyncio.Task] = None
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def command(self) -> str:
        return f"docker logs -f --tail={self.tail} {self.container}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def feed(self, data: str) -> list[ClassifiedError]:
        """Buffer each non-empty line and classify the ones that look like errors."""
        classified = []
        for line in data.splitlines():
            line = line.strip()
            if not line:
                continue
            self.buffer.append(line)
            if not ERROR_LINE_RE.search(line):
                continue
            logger.debug(f"Error line from {self.container}: {line}")
            classified.append(self.classifier.classify(line, {
                "container_name": self.container,
                "operation": "log_monitoring",
                "source": "log_monitor",
            }))
        self.errors_detected += len(classified)
        return classified

    async def scan_recent(self, lines: int = 100) -> list[ClassifiedError]:
        """Classify the container's recent log lines once, without following."""
        if self.runner is None:
            raise ValueError("scan_recent needs a command runner")
        result = await self.runner.run(f"docker logs --tail={lines} {self.container} 2>&1", timeout=30)
        if not result.ok:
            logger.debug(f"Could not read logs for {self.container}: {result.output.strip()}")
            return []
        return self.feed(result.stdout)

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Watching logs of {self.container}")
        self._task = asyncio.get_running_loop().create_task(self._follow_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Stopped watching logs of {self.container}")

    async def _follow_forever(self) -> None:
        while True:
            try:
                code = await self._follow()
                logger.info(f"Log stream for {self.container} exited with code {code}")
            except OSError as e:
                logger.error(f"Failed to follow logs of {self.container}: {e}")
            await asyncio.sleep(self.restart_delay)

    async def _follow(self) -> int:
        self._process = await asyncio.create_subprocess_shell(
            self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT
        )
        try:
            async for raw in self._process.stdout:
                self.feed(raw.decode("utf-8", errors="replace"))
            return await self._process.wait()
        finally:
            if self._process.returncode is None:
                self._process.kill()
                await self._process.wait()
            self._process = None
