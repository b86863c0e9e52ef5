"""Tests for error classification."""
import pytest

from backend.src.autoheal.classification import ALL_PATTERNS, ClassifiedError, ErrorClassifier, ErrorPattern
from backend.src.autoheal.events import EventBus, EventType
from backend.src.autoheal.persistence import ErrorHistoryStore
from backend.src.autoheal.types import ErrorKind, ErrorSeverity


class TestErrorPattern:
    """Test pattern definitions."""

    def test_matches_case_insensitively(self):
        pattern = ErrorPattern(
            kind=ErrorKind.NETWORK_ERROR,
            patterns=[r"connection refused"],
            severity=ErrorSeverity.MEDIUM,
            auto_recoverable=True
        )
        assert pattern.matches("dial tcp: Connection Refused")
        assert not pattern.matches("all good")

    def test_unknown_cannot_be_auto_recoverable(self):
        with pytest.raises(ValueError):
            ErrorPattern(
                kind=ErrorKind.UNKNOWN,
                patterns=[r"anything"],
                severity=ErrorSeverity.LOW,
                auto_recoverable=True
            )

    def test_no_built_in_pattern_targets_unknown(self):
        assert all(p.kind != ErrorKind.UNKNOWN for p in ALL_PATTERNS)


class TestErrorClassifier:
    """Test classification of raw diagnostic text."""

    def setup_method(self):
        self.classifier = ErrorClassifier()

    def test_port_conflict_extracts_port(self):
        error = self.classifier.classify(
            "Error starting userland proxy: listen tcp4 0.0.0.0:5432: bind: port 5432 is already in use",
            {"container_name": "attacknode-postgres"}
        )
        assert error.kind == ErrorKind.PORT_CONFLICT
        assert error.severity == ErrorSeverity.HIGH
        assert error.auto_recoverable is True
        assert error.context["port"] == 5432
        assert error.context["container_name"] == "attacknode-postgres"

    def test_docker_bind_failure(self):
        """Test the bind failure docker reports when a host port is taken."""
        error = self.classifier.classify("failed to bind host port 5432: address already in use")
        assert error.kind == ErrorKind.PORT_CONFLICT
        assert error.severity == ErrorSeverity.HIGH
        assert error.auto_recoverable is True
        assert error.context["port"] == 5432

    def test_port_already_allocated_reads_host_port(self):
        error = self.classifier.classify(
            "Bind for 0.0.0.0:6379 failed: port is already allocated"
        )
        assert error.kind == ErrorKind.PORT_CONFLICT
        assert error.context["port"] == 6379

    def test_container_named_port_is_a_name_conflict(self):
        """Test that a container whose name contains 'port' is not taken for a port conflict."""
        error = self.classifier.classify(
            'Conflict. The container name "/redis-port" is already in use by container "0123456789ab"'
        )
        assert error.kind == ErrorKind.NAME_CONFLICT
        assert error.context["container_name"] == "redis-port"
        assert error.context["conflicting_container_id"] == "0123456789ab"


    def test_name_conflict_extracts_container_and_id(self):
        text = (
            'Conflict. The container name "/attacknode-redis" is already in use by container '
            '"3f4e5d6c7b8a9f0e1d2c". You have to remove (or rename) that container to be able to reuse that name.'
        )
        error = self.classifier.classify(text)
        assert error.kind == ErrorKind.NAME_CONFLICT
        assert error.context["container_name"] == "attacknode-redis"
        assert error.context["conflicting_container_id"] == "3f4e5d6c7b8a9f0e1d2c"

    def test_image_pull_is_not_auto_recoverable(self):
        error = self.classifier.classify("pull access denied for bcsecurity/empyre, repository does not exist")
        assert error.kind == ErrorKind.IMAGE_PULL_FAILED
        assert error.auto_recoverable is False
        assert error.context["image"] == "bcsecurity/empyre"

    def test_redis_permission_context(self):
        error = self.classifier.classify(
            'Permission denied opening directory "/data/appendonlydir"'
        )
        assert error.kind == ErrorKind.PERMISSION_DENIED
        assert error.context["container_name"] == "redis"
        assert error.context["volume_path"] == "/data/appendonlydir"

    def test_extracted_keys_win_over_caller_context(self):
        error = self.classifier.classify(
            "Fatal error loading the DB dump.rdb: Permission denied. Exiting.",
            {"container_name": "attacknode-redis", "operation": "startup"}
        )
        assert error.context["container_name"] == "redis"
        assert error.context["operation"] == "startup"

    def test_health_check_keeps_caller_container(self):
        error = self.classifier.classify(
            "Sysreptor health check failed: HTTP 502",
            {"container_name": "attacknode-sysreptor"}
        )
        assert error.kind == ErrorKind.HEALTH_CHECK_FAILED
        assert error.context["container_name"] == "attacknode-sysreptor"

    def test_health_check_default_container(self):
        error = self.classifier.classify("Sysreptor health check failed: connection reset")
        assert error.context["container_name"] == "sysreptor"

    def test_health_check_beats_generic_timeout(self):
        error = self.classifier.classify("timeout waiting for health check on port 9000")
        assert error.kind == ErrorKind.HEALTH_CHECK_FAILED

    def test_database_config(self):
        error = self.classifier.classify(
            "django.core.exceptions.ImproperlyConfigured: settings.DATABASES is improperly configured. "
            "Please supply the NAME or OPTIONS['service'] value."
        )
        assert error.kind == ErrorKind.DATABASE_CONFIG_ERROR
        assert error.context["container_name"] == "sysreptor-app"
        assert error.context["operation"] == "database_config"

    def test_missing_plugins_are_listed(self):
        error = self.classifier.classify('Plugin "cyberchef" not found in plugins directory')
        assert error.kind == ErrorKind.PLUGIN_MISSING_ERROR
        assert error.context["missing_plugins"] == ["cyberchef"]
        assert error.context["container_name"] == "sysreptor-app"

    def test_daemon_error_beats_network_error(self):
        error = self.classifier.classify(
            "Cannot connect to the Docker daemon at unix:///var/run/docker.sock. Is the docker daemon running?"
        )
        assert error.kind == ErrorKind.DAEMON_ERROR
        assert error.severity == ErrorSeverity.CRITICAL
        assert error.auto_recoverable is True

    def test_resource_exhausted(self):
        error = self.classifier.classify("write /var/lib/docker/tmp: no space left on device")
        assert error.kind == ErrorKind.RESOURCE_EXHAUSTED
        assert error.severity == ErrorSeverity.CRITICAL

    def test_volume_mount_extracts_path(self):
        error = self.classifier.classify("invalid mount config for type bind: bind source path does not exist: /srv/data")
        assert error.kind == ErrorKind.VOLUME_MOUNT_ERROR
        assert error.context["mount_path"] == "/srv/data"

    def test_container_start_failure(self):
        error = self.classifier.classify("Error response from daemon: failed to start container attacknode-empire")
        assert error.kind == ErrorKind.CONTAINER_START_FAILED
        assert error.context["container_name"] == "attacknode-empire"

    def test_network_error(self):
        error = self.classifier.classify("dial tcp 10.0.0.5:6379: connect: connection refused")
        assert error.kind == ErrorKind.NETWORK_ERROR

    @pytest.mark.parametrize("message", [
        "No internet connectivity detected",
        "DNS resolution failed",
        "Docker Hub registry unreachable",
    ])
    def test_network_poller_messages(self, message):
        assert self.classifier.classify(message).kind == ErrorKind.NETWORK_ERROR

    def test_unmatched_text_is_unknown(self):
        error = self.classifier.classify("something odd happened", {"container_name": "x"})
        assert error.kind == ErrorKind.UNKNOWN
        assert error.severity == ErrorSeverity.MEDIUM
        assert error.auto_recoverable is False
        assert error.context == {"container_name": "x"}

    def test_empty_text_is_unknown(self):
        assert self.classifier.classify("").kind == ErrorKind.UNKNOWN

    def test_each_call_creates_a_new_instance(self):
        first = self.classifier.classify("Permission denied")
        second = self.classifier.classify("Permission denied")
        assert first.id != second.id
        assert first.recovery_attempts == 0 and not first.resolved

    def test_caller_context_is_not_mutated(self):
        context = {"container_name": "attacknode-redis"}
        self.classifier.classify("Fatal error loading the DB dump.rdb: Permission denied", context)
        assert context == {"container_name": "attacknode-redis"}

    def test_failing_extractor_degrades_to_empty_context(self):
        def broken(text, context):
            raise RuntimeError("boom")

        self.classifier.add_pattern(ErrorPattern(
            kind=ErrorKind.NETWORK_ERROR,
            patterns=[r"flaky link"],
            severity=ErrorSeverity.MEDIUM,
            auto_recoverable=True,
            extractor=broken
        ), first=True)

        error = self.classifier.classify("flaky link detected", {"service": "redis"})
        assert error.kind == ErrorKind.NETWORK_ERROR
        assert error.context == {"service": "redis"}

    def test_records_to_history_and_publishes(self):
        history = ErrorHistoryStore(capacity=10)
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.ERROR_DETECTED, lambda e: seen.append(e.payload["error"]))
        classifier = ErrorClassifier(history=history, bus=bus)

        error = classifier.classify("totally unrecognised")

        assert history.get(error.id) is not None
        assert [e.id for e in seen] == [error.id]

    def test_statistics(self):
        self.classifier.classify("Permission denied")
        self.classifier.classify("mystery")
        stats = self.classifier.get_statistics()
        assert stats["total_classifications"] == 2
        assert stats["by_kind"]["permission_denied"] == 1
        assert stats["unknown_rate"] == 0.5


class TestClassifiedError:
    """Test classified error records."""

    def test_unknown_is_forced_non_recoverable(self):
        error = ClassifiedError(
            kind=ErrorKind.UNKNOWN,
            severity=ErrorSeverity.LOW,
            message="?",
            context={},
            auto_recoverable=True
        )
        assert error.auto_recoverable is False

    def test_dict_round_trip(self):
        error = ClassifiedError(
            kind=ErrorKind.PORT_CONFLICT,
            severity=ErrorSeverity.HIGH,
            message="port 80 is already in use",
            context={"port": 80},
            auto_recoverable=True,
            recovery_attempts=2
        )
        restored = ClassifiedError.from_dict(error.to_dict())
        assert restored == error

    def test_copy_is_independent(self):
        error = ClassifiedError(
            kind=ErrorKind.PLUGIN_MISSING_ERROR,
            severity=ErrorSeverity.MEDIUM,
            message="missing plugin",
            context={"missing_plugins": ["cyberchef"]},
            auto_recoverable=True
        )
        clone = error.copy()
        clone.context["missing_plugins"].append("other")
        assert error.context["missing_plugins"] == ["cyberchef"]
