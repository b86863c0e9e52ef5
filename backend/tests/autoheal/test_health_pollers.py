"""
Tests for the per-service health pollers.
"""
from types import SimpleNamespace

import aiohttp
import pytest

from backend.src.autoheal.actions import ActionContext, ActionTimings
from backend.src.autoheal.actions.network import NetworkRepairAction
from backend.src.autoheal.actions.reportapp import RestartSysreptorContainerAction
from backend.src.autoheal.classification import ErrorClassifier
from backend.src.autoheal.config import AutohealConfig
from backend.src.autoheal.events import EventBus, EventType
from backend.src.autoheal.health import (
    POLLERS,
    EmpireHealthPoller,
    HealthSnapshot,
    NetworkHealthPoller,
    RedisHealthPoller,
    ReportAppHealthPoller,
    SysreptorHttpPoller,
    SystemHealthPoller
)
from backend.src.autoheal.health import system as system_module
from backend.src.autoheal.health.empire import analyze_logs, startup_completed
from backend.src.autoheal.health.redis import parse_info
from backend.src.autoheal.health.reportapp import parse_memory_mb
from backend.src.autoheal.health.sysreptor import is_reachable
from backend.src.autoheal.persistence import ErrorHistoryStore
from backend.src.autoheal.testing import FakeCommandRunner
from backend.src.autoheal.types import ErrorKind


@pytest.fixture
def runner():
    return FakeCommandRunner()


@pytest.fixture
def ctx(runner, tmp_path):
    return ActionContext(
        runner=runner,
        config=AutohealConfig(project_root=tmp_path),
        bus=EventBus(),
        timings=ActionTimings.immediate()
    )


@pytest.fixture
def history():
    return ErrorHistoryStore()


@pytest.fixture
def classifier(history, ctx):
    return ErrorClassifier(history=history, bus=ctx.bus)


def mark_running(runner, name):
    runner.on(rf"docker ps --filter name=\^/{name}\$", stdout=name)


def failed_snapshot(service, message):
    snapshot = HealthSnapshot(service=service)
    snapshot.check("reachable", False, message)
    return snapshot


def test_poller_registry():
    """Test that every configurable monitor has a poller."""
    assert set(POLLERS) == set(AutohealConfig().enabled_monitors)


class TestRedisHealthPoller:
    """Test redis checks."""

    def script_healthy(self, runner):
        mark_running(runner, "attacknode-redis")
        runner.on(r"redis-cli ping", stdout="PONG")
        runner.on(r"redis-cli CONFIG GET appendonly", stdout="appendonly\nyes")
        runner.on(r"test -w /data/appendonlydir", stdout="writable")
        runner.on(r"redis-cli INFO", stdout="# Clients\r\nconnected_clients:3\r\n# Memory\r\nused_memory:1048576\r\n")

    def test_parse_info(self):
        info = parse_info("# Server\nredis_version:7.2.4\n\nused_memory:100\nnot a pair")
        assert info == {"redis_version": "7.2.4", "used_memory": "100"}

    @pytest.mark.asyncio
    async def test_healthy(self, ctx, runner):
        self.script_healthy(runner)

        snapshot = await RedisHealthPoller(ctx).probe()

        assert snapshot.is_healthy, snapshot.errors
        assert snapshot.checks["aof_writable"] is True
        assert snapshot.performance["memory_usage"] == 1048576
        assert snapshot.performance["connected_clients"] == 3

    @pytest.mark.asyncio
    async def test_aof_check_skipped_when_disabled(self, ctx, runner):
        self.script_healthy(runner)
        runner.on(r"redis-cli CONFIG GET appendonly", stdout="appendonly\nno")

        snapshot = await RedisHealthPoller(ctx).probe()

        assert "aof_writable" not in snapshot.checks
        assert not runner.ran(r"test -w")

    @pytest.mark.asyncio
    async def test_container_down(self, ctx, runner):
        snapshot = await RedisHealthPoller(ctx).probe()

        assert snapshot.checks == {"container_running": False}
        assert snapshot.errors == ["Redis container attacknode-redis is not running"]

    @pytest.mark.asyncio
    async def test_not_responding(self, ctx, runner):
        mark_running(runner, "attacknode-redis")
        runner.fail(r"redis-cli ping", stderr="Could not connect to Redis at 127.0.0.1:6379: Connection refused")

        snapshot = await RedisHealthPoller(ctx).probe()

        assert snapshot.checks["responding"] is False
        assert snapshot.errors == ["Redis is not responding to PING"]

    @pytest.mark.asyncio
    async def test_aof_permission_denied_in_logs(self, ctx, runner, classifier, history):
        """Test that AOF rewrite failures are reported as permission errors."""
        self.script_healthy(runner)
        runner.on(r"grep -i 'permission denied'",
                  stdout="Opening the temp file for AOF rewrite in rewriteAppendOnlyFile(): Permission denied")
        poller = RedisHealthPoller(ctx, classifier=classifier)

        snapshot = await poller.poll_once()

        assert snapshot.checks["no_permission_errors"] is False
        assert snapshot.errors == ["Redis AOF rewrite permission denied: temp file creation failed"]
        [error] = history.recent()
        assert error.kind == ErrorKind.PERMISSION_DENIED
        assert error.context["container_name"] == "redis"

    @pytest.mark.asyncio
    async def test_unwritable_aof_directory(self, ctx, runner, classifier, history):
        self.script_healthy(runner)
        runner.on(r"test -w /data/appendonlydir", stdout="not_writable")

        await RedisHealthPoller(ctx, classifier=classifier).poll_once()

        [error] = history.recent()
        assert error.kind == ErrorKind.PERMISSION_DENIED
        assert error.context["volume_path"] == "/data/appendonlydir"

    @pytest.mark.asyncio
    async def test_repair_fixes_permissions_and_restarts(self, ctx, runner):
        """Test the permission repair path brings redis back."""
        self.script_healthy(runner)
        poller = RedisHealthPoller(ctx)
        failing = await poller.probe()
        failing.checks["no_permission_errors"] = False

        assert await poller.repair(failing) is True
        assert runner.ran(r'chown -R 999:999 ".*redis-data"$')
        assert runner.ran(r"docker-compose up -d redis")

    @pytest.mark.asyncio
    async def test_repair_restarts_unresponsive_redis(self, ctx, runner):
        self.script_healthy(runner)
        poller = RedisHealthPoller(ctx)
        failing = await poller.probe()
        failing.checks["responding"] = False

        assert await poller.repair(failing) is True
        assert runner.ran(r"docker restart attacknode-redis")


class TestReportAppHealthPoller:
    """Test Django app checks."""

    def script_healthy(self, runner):
        mark_running(runner, "sysreptor-app")
        runner.on(r"python -c", stdout="ok")
        runner.on(r"manage.py showmigrations", stdout="[X] 0001_initial\n[X] 0002_users")
        runner.on(r"manage.py check", stdout="System check identified no issues (0 silenced).")
        runner.on(r"docker stats sysreptor-app", stdout="1.50%,123.4MiB / 1.944GiB")

    def test_parse_memory(self):
        assert parse_memory_mb("1.5GiB") == 1536
        assert parse_memory_mb("512KiB") == 0.5
        assert parse_memory_mb("123.4MiB") == 123.4
        assert parse_memory_mb("n/a") is None

    @pytest.mark.asyncio
    async def test_healthy(self, ctx, runner):
        self.script_healthy(runner)

        snapshot = await ReportAppHealthPoller(ctx).probe()

        assert snapshot.is_healthy, snapshot.errors
        assert snapshot.performance == {"cpu_usage": 1.5, "memory_usage": 123.4}
        assert any("app.env not found" in w for w in snapshot.warnings)

    @pytest.mark.asyncio
    async def test_pending_migrations(self, ctx, runner):
        self.script_healthy(runner)
        runner.on(r"manage.py showmigrations", stdout="[X] 0001_initial\n[ ] 0002_users")

        snapshot = await ReportAppHealthPoller(ctx).probe()

        assert snapshot.checks["migrations_up_to_date"] is False
        assert "Unapplied Django migrations" in snapshot.warnings

    @pytest.mark.asyncio
    async def test_missing_plugin(self, ctx, runner, classifier, history):
        """Test that plugin load failures are classified with the plugin name."""
        self.script_healthy(runner)
        runner.on(r"manage.py check", stderr='Plugin "cyberchef" not found in plugins directory', exit_code=1)

        await ReportAppHealthPoller(ctx, classifier=classifier).poll_once()

        [error] = history.recent()
        assert error.kind == ErrorKind.PLUGIN_MISSING_ERROR
        assert error.context["missing_plugins"] == ["cyberchef"]
        assert error.context["container_name"] == "sysreptor-app"

    @pytest.mark.asyncio
    async def test_database_unreachable(self, ctx, runner, classifier, history):
        self.script_healthy(runner)
        runner.fail(r"python -c")
        runner.fail(r"dbshell")

        snapshot = await ReportAppHealthPoller(ctx, classifier=classifier).poll_once()

        assert snapshot.checks["database_connected"] is False
        assert "migrations_up_to_date" not in snapshot.checks
        assert history.recent()[0].kind == ErrorKind.DATABASE_CONFIG_ERROR

    @pytest.mark.asyncio
    async def test_repair_recreates_stopped_container(self, ctx, runner):
        poller = ReportAppHealthPoller(ctx)
        snapshot = await poller.probe()
        mark_running(runner, "sysreptor-app")

        assert await poller.repair(snapshot) is True
        assert runner.ran(r"docker-compose up -d app$")


class TestSysreptorHttpPoller:
    """Test HTTP reachability checks."""

    def test_reachable_statuses(self):
        assert is_reachable(200)
        assert is_reachable(302)
        assert is_reachable(404)
        assert not is_reachable(502)

    @pytest.mark.asyncio
    async def test_first_reachable_endpoint_wins(self, ctx, monkeypatch):
        statuses = {"/": 502, "/health": 200}
        poller = SysreptorHttpPoller(ctx)
        seen = []

        async def fetch_status(session, url):
            endpoint = url[len(poller.base_url):]
            seen.append(endpoint)
            return statuses[endpoint]

        monkeypatch.setattr(poller, "fetch_status", fetch_status)
        snapshot = await poller.probe()

        assert snapshot.is_healthy
        assert snapshot.performance["endpoint"] == "/health"
        assert seen == ["/", "/health"]

    @pytest.mark.asyncio
    async def test_unreachable_is_a_health_check_failure(self, ctx, monkeypatch, classifier, history):
        """Test that connection failures classify as failed health checks."""
        poller = SysreptorHttpPoller(ctx, classifier=classifier)

        async def fetch_status(session, url):
            raise aiohttp.ClientConnectionError("Connection refused")

        monkeypatch.setattr(poller, "fetch_status", fetch_status)
        snapshot = await poller.poll_once()

        assert snapshot.errors == ["Sysreptor health check failed: Connection refused"]
        [error] = history.recent()
        assert error.kind == ErrorKind.HEALTH_CHECK_FAILED
        assert error.context["container_name"] == "attacknode-sysreptor"
        assert "http://localhost:9000/health" in error.context["health_endpoints"]

    @pytest.mark.asyncio
    async def test_repair_recreates_container(self, ctx, runner, monkeypatch):
        async def probe_http(self):
            return True

        monkeypatch.setattr(RestartSysreptorContainerAction, "probe_http", probe_http)
        mark_running(runner, "attacknode-sysreptor")
        poller = SysreptorHttpPoller(ctx)

        assert await poller.repair(failed_snapshot("sysreptor", "Sysreptor health check failed: HTTP 502")) is True
        assert runner.ran(r"docker-compose up -d sysreptor$")


class TestEmpireHealthPoller:
    """Test Empire container, API and database checks."""

    LOGS = (
        "Empire starting up\n"
        "Application startup complete\n"
        "Uvicorn running on http://0.0.0.0:1337\n"
        "WARNING: using default admin credentials\n"
    )

    def script_healthy(self, runner):
        runner.on(r"docker inspect attacknode-empire", stdout="running")
        runner.on(r"docker logs attacknode-empire", stdout=self.LOGS)
        runner.on(r"ls -la /empire/empire.db", stdout="-rw-r--r-- 1 root root 4096 empire.db")
        runner.on(r"netstat -tln", stdout="tcp 0 0 0.0.0.0:5000 0.0.0.0:* LISTEN")

    def patch_api(self, monkeypatch, poller, status=None):
        async def fetch_status(session, url):
            if status is None:
                raise aiohttp.ClientConnectionError("Connection refused")
            return status

        monkeypatch.setattr(poller, "fetch_status", fetch_status)

    def test_startup_markers(self):
        assert startup_completed(self.LOGS)
        assert startup_completed("... Starkiller served at http://localhost:1337/ ...")
        assert not startup_completed("pulling image")

    def test_analyze_logs(self):
        errors, warnings = analyze_logs("ok\nERROR: db locked\nWARNING: slow\nTraceback Exception")
        assert errors == ["ERROR: db locked", "Traceback Exception"]
        assert warnings == ["WARNING: slow"]

    @pytest.mark.asyncio
    async def test_healthy(self, ctx, runner, monkeypatch):
        self.script_healthy(runner)
        poller = EmpireHealthPoller(ctx)
        self.patch_api(monkeypatch, poller, status=401)

        snapshot = await poller.probe()

        assert snapshot.is_healthy, snapshot.errors
        assert "WARNING: using default admin credentials" in snapshot.warnings
        assert "Starkiller UI may not be accessible" not in snapshot.warnings

    @pytest.mark.asyncio
    async def test_api_falls_back_to_process_check(self, ctx, runner, monkeypatch):
        self.script_healthy(runner)
        runner.on(r"pgrep -f empire", stdout="42")
        poller = EmpireHealthPoller(ctx)
        self.patch_api(monkeypatch, poller)

        snapshot = await poller.probe()
        assert snapshot.checks["api_responding"] is True

    @pytest.mark.asyncio
    async def test_container_exited(self, ctx, runner):
        runner.on(r"docker inspect attacknode-empire", stdout="exited")

        snapshot = await EmpireHealthPoller(ctx).probe()

        assert snapshot.checks == {"container_running": False}
        assert snapshot.errors == ["Empire container attacknode-empire is not running (exited)"]

    @pytest.mark.asyncio
    async def test_missing_database(self, ctx, runner, monkeypatch):
        self.script_healthy(runner)
        runner.fail(r"ls -la /empire/empire.db", stderr="No such file or directory")
        poller = EmpireHealthPoller(ctx)
        self.patch_api(monkeypatch, poller, status=200)

        snapshot = await poller.probe()
        assert snapshot.failed_checks == ["database_present"]

    @pytest.mark.asyncio
    async def test_repair_falls_back_to_standalone(self, ctx, runner, tmp_path):
        """Test starting empire without compose when compose fails."""
        runner.fail(r"docker-compose up -d empire")
        mark_running(runner, "attacknode-empire")
        poller = EmpireHealthPoller(ctx)

        assert await poller.repair(failed_snapshot("empire", "Empire API is not responding")) is True
        assert runner.ran(r"docker rm -f empire-data")
        assert runner.ran(r"docker run -d --name attacknode-empire .*--volumes-from empire-data")
        assert (tmp_path / "uploads" / "empire" / "data").is_dir()
        assert (tmp_path / "uploads" / "empire" / "downloads").is_dir()


class TestSystemHealthPoller:
    """Test host resource and daemon checks."""

    def patch_resources(self, monkeypatch, disk_percent=40.0, memory_percent=50.0):
        monkeypatch.setattr(system_module.psutil, "disk_usage",
                            lambda path: SimpleNamespace(percent=disk_percent, free=50 * 1024 ** 3))
        monkeypatch.setattr(system_module.psutil, "virtual_memory",
                            lambda: SimpleNamespace(percent=memory_percent, available=2048 * 1024 ** 2))
        monkeypatch.setattr(system_module.psutil, "cpu_percent", lambda interval=None: 12.5)

    @pytest.mark.asyncio
    async def test_healthy(self, ctx, runner, monkeypatch):
        self.patch_resources(monkeypatch)
        runner.on(r"docker info", stdout="24.0.7")

        snapshot = await SystemHealthPoller(ctx).probe()

        assert snapshot.is_healthy
        assert snapshot.performance["docker_version"] == "24.0.7"
        assert snapshot.performance["disk_free_gb"] == 50.0
        assert snapshot.warnings == []

    @pytest.mark.asyncio
    async def test_thresholds(self, ctx, runner, monkeypatch):
        """Test the fail and warn levels for disk and memory."""
        self.patch_resources(monkeypatch, disk_percent=93.0, memory_percent=88.0)

        snapshot = await SystemHealthPoller(ctx).probe()

        assert snapshot.failed_checks == ["disk_space"]
        assert snapshot.warnings == ["Memory usage at 88.0%"]

    @pytest.mark.asyncio
    async def test_daemon_down_is_classified(self, ctx, runner, monkeypatch, classifier, history):
        self.patch_resources(monkeypatch)
        runner.fail(r"docker info",
                    stderr="Cannot connect to the Docker daemon at unix:///var/run/docker.sock. "
                           "Is the docker daemon running?")

        await SystemHealthPoller(ctx, classifier=classifier).poll_once()

        [error] = history.recent()
        assert error.kind == ErrorKind.DAEMON_ERROR

    @pytest.mark.asyncio
    async def test_repair_runs_matching_actions(self, ctx, runner, monkeypatch):
        self.patch_resources(monkeypatch, disk_percent=97.0)
        poller = SystemHealthPoller(ctx)
        snapshot = await poller.probe()

        assert await poller.repair(snapshot) is True
        assert runner.ran(r"docker image prune -af")
        assert not runner.ran(r"systemctl restart docker")


class TestNetworkHealthPoller:
    """Test internet, DNS and registry checks."""

    @pytest.fixture(autouse=True)
    def no_proxy(self, monkeypatch):
        for name in ("HTTP_PROXY", "HTTPS_PROXY", "http_proxy", "https_proxy"):
            monkeypatch.delenv(name, raising=False)

    def online(self, poller, monkeypatch, status=200):
        async def fetch_status(session, url):
            return status

        async def resolve(host):
            return True

        monkeypatch.setattr(poller, "fetch_status", fetch_status)
        monkeypatch.setattr(poller, "resolve", resolve)

    def offline(self, poller, monkeypatch):
        async def fetch_status(session, url):
            raise aiohttp.ClientConnectionError("Network is unreachable")

        async def resolve(host):
            return False

        monkeypatch.setattr(poller, "fetch_status", fetch_status)
        monkeypatch.setattr(poller, "resolve", resolve)

    @pytest.mark.asyncio
    async def test_healthy_network(self, ctx, monkeypatch):
        poller = NetworkHealthPoller(ctx)
        self.online(poller, monkeypatch)

        snapshot = await poller.probe()

        assert snapshot.is_healthy
        assert snapshot.checks == {"internet": True, "dns": True, "docker_hub": True}
        assert "Docker Hub" in snapshot.performance["registries"]
        assert snapshot.warnings == []

    @pytest.mark.asyncio
    async def test_registry_auth_challenge_counts_as_reachable(self, ctx, monkeypatch):
        """Test that a 401 from the registry API means the registry answered."""
        poller = NetworkHealthPoller(ctx)
        self.online(poller, monkeypatch, status=401)
        assert (await poller.probe()).checks["docker_hub"] is True

    @pytest.mark.asyncio
    async def test_offline_classifies_network_errors(self, ctx, monkeypatch, classifier, history):
        """Test that every failed check is classified as a network error."""
        poller = NetworkHealthPoller(ctx, classifier=classifier)
        self.offline(poller, monkeypatch)

        snapshot = await poller.poll_once()

        assert snapshot.errors == [
            "No internet connectivity detected",
            "DNS resolution failed",
            "Docker Hub registry unreachable",
        ]
        assert "No container registry is reachable" in snapshot.warnings
        assert {e.kind for e in history.recent()} == {ErrorKind.NETWORK_ERROR}

    @pytest.mark.asyncio
    async def test_network_events_and_repair(self, ctx, monkeypatch):
        """Test degraded, critical and restored transitions under the network event names."""
        events = []
        ctx.bus.subscribe_all(events.append)
        repaired = []

        async def execute(self, error):
            repaired.append(error.context["failed_checks"])
            return True

        monkeypatch.setattr(NetworkRepairAction, "execute", execute)
        poller = NetworkHealthPoller(ctx, threshold=2)
        self.offline(poller, monkeypatch)

        await poller.poll_once()
        await poller.poll_once()
        self.online(poller, monkeypatch)
        await poller.poll_once()

        network_events = [e.type for e in events if e.type.value.startswith("network-")]
        assert network_events == [
            EventType.NETWORK_DEGRADED,
            EventType.NETWORK_DEGRADED,
            EventType.NETWORK_CRITICAL,
            EventType.NETWORK_RESTORED,
        ]
        assert repaired == [["internet", "dns", "docker_hub"]]
        assert EventType.HEALTH_CRITICAL in [e.type for e in events]

    @pytest.mark.asyncio
    async def test_proxy_is_a_warning(self, ctx, monkeypatch):
        monkeypatch.setenv("HTTPS_PROXY", "http://proxy.internal:3128")
        poller = NetworkHealthPoller(ctx)
        self.online(poller, monkeypatch)

        snapshot = await poller.probe()

        assert snapshot.is_healthy
        assert snapshot.warnings == ["Proxy configuration detected"]

    @pytest.mark.asyncio
    async def test_docker_daemon_proxy(self, ctx, runner, monkeypatch):
        runner.on(r"HTTPProxy", stdout="http://proxy.internal:3128")
        poller = NetworkHealthPoller(ctx)
        self.online(poller, monkeypatch)

        assert "Proxy configuration detected" in (await poller.probe()).warnings
