"""Configuration for the autoheal supervisor."""
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError

ENV_PREFIX = "AUTOHEAL_"

ALL_MONITORS = ("redis", "reportapp", "sysreptor", "empire", "system", "network")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AutohealConfig:
    """Configuration for error tracking, recovery and health polling."""
    project_root: Path = field(default_factory=Path.cwd)
    container_prefix: str = "attacknode-"
    redis_container: str = "attacknode-redis"
    postgres_container: str = "attacknode-postgres"
    reportapp_container: str = "sysreptor-app"
    sysreptor_container: str = "attacknode-sysreptor"
    empire_container: str = "attacknode-empire"
    reportapp_env_file: str = "server/configs/sysreptor/app.env"
    history_capacity: int = 1000
    action_log_capacity: int = 500
    snapshot_history: int = 100
    failure_threshold: int = 3
    command_timeout: float = 30.0
    probe_timeout: float = 5.0
    action_timeout: float = 120.0
    use_sudo: bool = True
    database_url: Optional[str] = None
    redis_interval: float = 15.0
    sysreptor_interval: float = 15.0
    reportapp_interval: float = 30.0
    empire_interval: float = 30.0
    system_interval: float = 60.0
    network_interval: float = 60.0
    sysreptor_url: str = "http://localhost:9000"
    empire_url: str = "http://localhost:1337"
    resolv_conf: str = "/etc/resolv.conf"
    docker_daemon_config: str = "/etc/docker/daemon.json"
    registry_mirrors: tuple[str, ...] = ()
    log_level: str = "INFO"
    enabled_monitors: tuple[str, ...] = ALL_MONITORS
    auto_recover: bool = True
    watch_logs: bool = False
    watched_containers: tuple[str, ...] = ("sysreptor-app", "redis", "postgres")

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "AutohealConfig":
        """Build a config from AUTOHEAL_* environment variables.

        Unset variables keep their defaults. Values are converted to the
        type of the field default.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                if f.name == "project_root":
                    values[f.name] = Path(raw).expanduser()
                elif f.name in ("enabled_monitors", "watched_containers", "registry_mirrors"):
                    values[f.name] = tuple(p.strip() for p in raw.split(",") if p.strip())
                elif f.type in (bool, "bool"):
                    values[f.name] = _env_bool(raw)
                elif f.type in (int, "int"):
                    values[f.name] = int(raw)
                elif f.type in (float, "float"):
                    values[f.name] = float(raw)
                else:
                    values[f.name] = raw
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from e

        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        if self.history_capacity < 1 or self.action_log_capacity < 1 or self.snapshot_history < 1:
            raise ConfigurationError("History capacities must be at least 1")
        if self.failure_threshold < 1:
            raise ConfigurationError("failure_threshold must be at least 1")
        for name in ("command_timeout", "probe_timeout", "action_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        for name in ("redis_interval", "sysreptor_interval", "reportapp_interval",
                     "empire_interval", "system_interval", "network_interval"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        unknown = set(self.enabled_monitors) - set(ALL_MONITORS)
        if unknown:
            raise ConfigurationError(f"Unknown monitors: {', '.join(sorted(unknown))}")

    def container_name(self, service: str) -> str:
        """Full container name for a compose service."""
        if service.startswith(self.container_prefix):
            return service
        return f"{self.container_prefix}{service}"
