"""
Tests for the container log watcher.
"""
import asyncio

import pytest

from backend.src.autoheal.classification import ErrorClassifier
from backend.src.autoheal.logwatch import LogWatcher
from backend.src.autoheal.persistence import ErrorHistoryStore
from backend.src.autoheal.testing import FakeCommandRunner
from backend.src.autoheal.types import ErrorKind


class CannedLogWatcher(LogWatcher):
    """Follows a fixed shell command instead of docker logs."""

    def __init__(self, *args, output="", **kwargs):
        super().__init__(*args, **kwargs)
        self.output = output

    @property
    def command(self):
        return f"printf '{self.output}'"


@pytest.fixture
def history():
    return ErrorHistoryStore()


@pytest.fixture
def classifier(history):
    return ErrorClassifier(history=history)


class TestLogWatcherFeed:
    """Test line filtering and classification."""

    def test_only_error_lines_are_classified(self, classifier, history):
        watcher = LogWatcher("sysreptor-app", classifier)

        errors = watcher.feed(
            "Starting server\n"
            "\n"
            "django.db.utils.OperationalError: could not translate host name \"db\"\n"
            "Listening on 0.0.0.0:8000\n"
        )

        assert len(errors) == 1
        assert watcher.errors_detected == 1
        assert list(watcher.buffer) == [
            "Starting server",
            "django.db.utils.OperationalError: could not translate host name \"db\"",
            "Listening on 0.0.0.0:8000",
        ]
        assert [e.id for e in history.recent()] == [errors[0].id]

    def test_context_names_container(self, classifier):
        """Test that each classified line carries the log monitoring context."""
        watcher = LogWatcher("redis", classifier)

        [error] = watcher.feed("Fatal error: Permission denied opening /data/appendonlydir/appendonly.aof.1.incr.aof")

        assert error.kind == ErrorKind.PERMISSION_DENIED
        assert error.context["operation"] == "log_monitoring"
        assert error.context["source"] == "log_monitor"

    def test_buffer_is_bounded(self, classifier):
        watcher = LogWatcher("redis", classifier, buffer_size=3)
        watcher.feed("\n".join(f"line {i}" for i in range(10)))
        assert list(watcher.buffer) == ["line 7", "line 8", "line 9"]
        assert watcher.errors_detected == 0

    def test_command(self, classifier):
        assert LogWatcher("redis", classifier, tail=20).command == "docker logs -f --tail=20 redis"


class TestLogWatcherScan:
    """Test one-off scans of recent logs."""

    @pytest.mark.asyncio
    async def test_scan_recent(self, classifier):
        runner = FakeCommandRunner()
        runner.on(r"docker logs --tail=200 sysreptor-app",
                  stdout='ok\nPlugin "cyberchef" not found in plugins directory\n')
        watcher = LogWatcher("sysreptor-app", classifier, runner=runner)

        [error] = await watcher.scan_recent(lines=200)

        assert error.kind == ErrorKind.PLUGIN_MISSING_ERROR
        assert error.context["container_name"] == "sysreptor-app"

    @pytest.mark.asyncio
    async def test_scan_recent_when_logs_unavailable(self, classifier):
        runner = FakeCommandRunner()
        runner.fail(r"docker logs", stderr="Error: No such container: redis")
        watcher = LogWatcher("redis", classifier, runner=runner)

        assert await watcher.scan_recent() == []
        assert watcher.errors_detected == 0

    @pytest.mark.asyncio
    async def test_scan_recent_needs_runner(self, classifier):
        with pytest.raises(ValueError):
            await LogWatcher("redis", classifier).scan_recent()


class TestLogWatcherFollow:
    """Test the follow loop."""

    @pytest.mark.asyncio
    async def test_follow_feeds_stream_output(self, classifier):
        """Test that streamed output is fed line by line until the process exits."""
        watcher = CannedLogWatcher("redis", classifier, output="Ready to accept connections\\nError: Connection refused\\n")

        code = await watcher._follow()

        assert code == 0
        assert watcher.errors_detected == 1
        assert watcher.buffer[0] == "Ready to accept connections"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, classifier):
        watcher = CannedLogWatcher("redis", classifier, output="ok\\n", restart_delay=0.01)

        watcher.start()
        assert watcher.running
        await asyncio.sleep(0.05)
        await watcher.stop()

        assert not watcher.running
        assert "ok" in watcher.buffer
