"""
Shared type definitions for the autoheal system.
"""
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional, Protocol


class ErrorKind(Enum):
    """Closed taxonomy of infrastructure failures."""
    PORT_CONFLICT = "port_conflict"
    NAME_CONFLICT = "name_conflict"
    IMAGE_PULL_FAILED = "image_pull_failed"
    PERMISSION_DENIED = "permission_denied"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    NETWORK_ERROR = "network_error"
    DAEMON_ERROR = "daemon_error"
    CONTAINER_START_FAILED = "container_start_failed"
    VOLUME_MOUNT_ERROR = "volume_mount_error"
    HEALTH_CHECK_FAILED = "health_check_failed"
    DATABASE_CONFIG_ERROR = "database_config_error"
    PLUGIN_MISSING_ERROR = "plugin_missing_error"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryState(Enum):
    """States of the recovery state machine, tracked per error id."""
    IDLE = "idle"
    RECOVERING = "recovering"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"


class ActionType(Enum):
    """Names of the repair operations in the action catalogue."""
    CLEANUP_CONTAINERS = "cleanup_containers"
    FIND_ALTERNATIVE_PORT = "find_alternative_port"
    KILL_CONFLICTING_PROCESS = "kill_conflicting_process"
    CLEANUP_DISK_SPACE = "cleanup_disk_space"
    FREE_MEMORY = "free_memory"
    RESTART_DOCKER_DAEMON = "restart_docker_daemon"
    REPAIR_VOLUME_PERMISSIONS = "repair_volume_permissions"
    CREATE_MISSING_DIRECTORIES = "create_missing_directories"
    RETRY_WITH_SUDO = "retry_with_sudo"
    FIX_REDIS_PERMISSIONS = "fix_redis_permissions"
    REMOVE_STALE_RDB = "remove_stale_rdb"
    CLEAN_REDIS_DATA = "clean_redis_data"
    RESTART_REDIS_CONTAINER = "restart_redis_container"
    DISABLE_REDIS_AOF = "disable_redis_aof"
    FORCE_AOF_REWRITE = "force_aof_rewrite"
    RESTART_CONTAINER = "restart_container"
    RESTART_SYSREPTOR_CONTAINER = "restart_sysreptor_container"
    RESTART_DJANGO_CONTAINER = "restart_django_container"
    VERIFY_DATABASE_CONNECTION = "verify_database_connection"
    FIX_DJANGO_DATABASE_CONFIG = "fix_django_database_config"
    INSTALL_DJANGO_PLUGINS = "install_django_plugins"
    DISABLE_MISSING_PLUGINS = "disable_missing_plugins"
    REPAIR_NETWORK = "repair_network"
    PULL_IMAGE_WITH_RETRY = "pull_image_with_retry"


@dataclass
class CommandResult:
    """Outcome of one external command."""
    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, as a log tailer would see it."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class CommandRunner(Protocol):
    """Protocol for the boundary to the operating environment."""

    async def run(
        self,
        command: str,
        timeout: Optional[float] = None,
        privileged_fallback: bool = True
    ) -> CommandResult:
        """Run a shell command and report its outcome. Never raises on failure."""
        ...


@dataclass(frozen=True)
class RecoveryAction:
    """Append-only record of one executed repair operation."""
    error_id: str
    action_type: str
    success: bool
    details: Optional[str] = None
    id: str = field(default_factory=lambda: f"act_{uuid.uuid4().hex}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "error_id": self.error_id,
            "action_type": self.action_type,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "details": self.details,
        }
