"""Predefined error patterns for classification.

``ALL_PATTERNS`` is ordered by precedence: the first kind whose pattern
matches wins, so specific kinds are listed ahead of the generic ones whose
patterns ("timeout", "connection refused", "permission denied") would
otherwise shadow them.
"""
import re
from typing import Any

from ..types import ErrorKind, ErrorSeverity
from .categories import ErrorPattern


def _search(pattern: str, text: str) -> re.Match | None:
    return re.search(pattern, text, re.IGNORECASE)


def extract_port(text: str, context: dict[str, Any]) -> dict[str, Any]:
    match = _search(r"port\s+(\d+)", text) or _search(r"\d+\.\d+\.\d+\.\d+:(\d+)", text)
    if match:
        return {"port": int(match.group(1))}
    return {}


def extract_container_conflict(text: str, context: dict[str, Any]) -> dict[str, Any]:
    extracted: dict[str, Any] = {}
    match = (
        _search(r"container name [\"']([^\"']+)[\"'] is already in use", text)
        or _search(r"container name ([^\s]+) is already in use", text)
    )
    if match:
        extracted["container_name"] = match.group(1).strip("\"'").lstrip("/")

    id_match = _search(r"by container [\"']?([a-f0-9]{12,64})[\"']?", text)
    if id_match:
        extracted["conflicting_container_id"] = id_match.group(1)
    return extracted


def extract_image(text: str, context: dict[str, Any]) -> dict[str, Any]:
    match = (
        _search(r"image\s+[\"']?([^\"'\s]+)", text)
        or _search(r"(?:pull access denied for|manifest for)\s+([^\s,]+)", text)
    )
    if match:
        return {"image": match.group(1)}
    return {}


def extract_permission(text: str, context: dict[str, Any]) -> dict[str, Any]:
    extracted: dict[str, Any] = {}
    lowered = text.lower()
    if "redis" in lowered or "appendonly" in lowered or "rdb" in lowered:
        extracted["container_name"] = "redis"
    elif "postgres" in lowered or "postmaster" in lowered:
        extracted["container_name"] = "postgres"

    match = _search(r"(?:dir|directory|file)\s+[\"']?([^\"'\s]+)", text)
    if match:
        extracted["volume_path"] = match.group(1)
    return extracted


def extract_health_check(text: str, context: dict[str, Any]) -> dict[str, Any]:
    match = _search(r"container[:\s]+([^\s,]+)", text)
    extracted: dict[str, Any] = {
        "container_name": match.group(1) if match else context.get("container_name", "sysreptor")
    }

    endpoint = _search(r"endpoint[:\s]+([^\s,]+)", text)
    if endpoint:
        extracted["health_endpoint"] = endpoint.group(1)
    return extracted


def extract_database_config(text: str, context: dict[str, Any]) -> dict[str, Any]:
    extracted: dict[str, Any] = {
        "container_name": context.get("container_name", "sysreptor-app"),
        "operation": "database_config",
    }
    match = _search(r"database[:\s]+([^\s,'\"]+)", text)
    if match:
        extracted["database_name"] = match.group(1)
    return extracted


def extract_missing_plugins(text: str, context: dict[str, Any]) -> dict[str, Any]:
    extracted: dict[str, Any] = {"container_name": context.get("container_name", "sysreptor-app")}
    plugins = [m.strip() for m in re.findall(r'Plugin "([^"]+)" not found', text, re.IGNORECASE)]
    if not plugins:
        match = _search(r"plugins?[:\s]+([a-z0-9_,\s-]+?)\s+(?:not found|could not be loaded)", text)
        if match:
            plugins = [p.strip() for p in match.group(1).split(",") if p.strip()]
    if plugins:
        extracted["missing_plugins"] = plugins
    return extracted


def extract_start_failure(text: str, context: dict[str, Any]) -> dict[str, Any]:
    match = _search(r"container\s+[\"']?/?([a-z0-9][a-z0-9_.-]+)[\"']?", text)
    if match and match.group(1).lower() not in ("exited", "with", "process"):
        return {"container_name": match.group(1)}
    return {}


def extract_mount_path(text: str, context: dict[str, Any]) -> dict[str, Any]:
    match = re.search(r"(/[^\s:\"',]+)", text)
    if match:
        return {"mount_path": match.group(1)}
    return {}


HEALTH_CHECK_PATTERNS: list[ErrorPattern] = [
    ErrorPattern(
        kind=ErrorKind.HEALTH_CHECK_FAILED,
        patterns=[
            r"sysreptor health check failed",
            r"health check failed",
            r"service health check error",
            r"connection failed.*health",
            r"timeout.*health check",
            r"http.*failed.*health",
        ],
        severity=ErrorSeverity.HIGH,
        auto_recoverable=True,
        extractor=extract_health_check
    ),
]

DJANGO_PATTERNS: list[ErrorPattern] = [
    ErrorPattern(
        kind=ErrorKind.DATABASE_CONFIG_ERROR,
        patterns=[
            r"settings\.DATABASES is improperly configured",
            r"Please supply the NAME or OPTIONS\['service'\] value",
            r"ImproperlyConfigured.*settings\.DATABASES",
            r"database.*improperly configured",
        ],
        severity=ErrorSeverity.HIGH,
        auto_recoverable=True,
        extractor=extract_database_config
    ),
    ErrorPattern(
        kind=ErrorKind.PLUGIN_MISSING_ERROR,
        patterns=[
            r'Plugin "([^"]+)" not found in plugins',
            r"plugin.*not found",
            r"missing plugin",
            r"plugin.*could not be loaded",
            r"failed to load plugin",
        ],
        severity=ErrorSeverity.MEDIUM,
        auto_recoverable=True,
        extractor=extract_missing_plugins
    ),
]

CONTAINER_PATTERNS: list[ErrorPattern] = [
    ErrorPattern(
        kind=ErrorKind.PORT_CONFLICT,
        patterns=[
            r"failed to bind host port.*address already in use",
            r"\bport\s+\d+\b.*already in use",
            r"port is already allocated",
            r"bind: address already in use",
        ],
        severity=ErrorSeverity.HIGH,
        auto_recoverable=True,
        extractor=extract_port
    ),
    ErrorPattern(
        kind=ErrorKind.NAME_CONFLICT,
        patterns=[
            r"the container name.*is already in use",
            r"conflict.*container.*already in use",
            r"name.*already in use by container",
            r"container name [\"'][^\"']*[\"'] is already in use",
            r"you have to remove.*that container to be able to reuse that name",
        ],
        severity=ErrorSeverity.HIGH,
        auto_recoverable=True,
        extractor=extract_container_conflict
    ),
    ErrorPattern(
        kind=ErrorKind.IMAGE_PULL_FAILED,
        patterns=[
            r"pull access denied",
            r"repository does not exist",
            r"manifest unknown",
            r"failed to pull image",
        ],
        severity=ErrorSeverity.MEDIUM,
        auto_recoverable=False,
        extractor=extract_image
    ),
    ErrorPattern(
        kind=ErrorKind.CONTAINER_START_FAILED,
        patterns=[
            r"error response from daemon.*(failed to start|cannot start) container",
            r"container .* exited with code [1-9]",
            r"oci runtime create failed",
            r"failed to start container",
        ],
        severity=ErrorSeverity.HIGH,
        auto_recoverable=True,
        extractor=extract_start_failure
    ),
    ErrorPattern(
        kind=ErrorKind.VOLUME_MOUNT_ERROR,
        patterns=[
            r"invalid mount config",
            r"no such file or directory.*volume",
            r"invalid volume specification",
        ],
        severity=ErrorSeverity.MEDIUM,
        auto_recoverable=True,
        extractor=extract_mount_path
    ),
]

RESOURCE_PATTERNS: list[ErrorPattern] = [
    ErrorPattern(
        kind=ErrorKind.RESOURCE_EXHAUSTED,
        patterns=[
            r"no space left on device",
            r"cannot allocate memory",
            r"resource temporarily unavailable",
            r"disk quota exceeded",
        ],
        severity=ErrorSeverity.CRITICAL,
        auto_recoverable=True
    ),
]

DAEMON_PATTERNS: list[ErrorPattern] = [
    ErrorPattern(
        kind=ErrorKind.DAEMON_ERROR,
        patterns=[
            r"cannot connect to the docker daemon",
            r"docker daemon not running",
            r"is the docker daemon running",
        ],
        severity=ErrorSeverity.CRITICAL,
        auto_recoverable=True
    ),
]

PERMISSION_PATTERNS: list[ErrorPattern] = [
    ErrorPattern(
        kind=ErrorKind.PERMISSION_DENIED,
        patterns=[
            r"permission denied",
            r"access denied",
            r"operation not permitted",
            r"unauthorized",
            # Redis persistence
            r"can't open or create append-only dir",
            r"can't handle rdb format version \d+",
            r"aof loading aborted",
            r"fatal error loading the db",
            r"corrupted rdb file",
            # Postgres data directory
            r"could not open file.*postmaster\.pid",
            r"data directory .* has invalid permissions",
            r"could not create lock file",
        ],
        severity=ErrorSeverity.HIGH,
        auto_recoverable=True,
        extractor=extract_permission
    ),
]

NETWORK_PATTERNS: list[ErrorPattern] = [
    ErrorPattern(
        kind=ErrorKind.NETWORK_ERROR,
        patterns=[
            r"network unreachable",
            r"connection refused",
            r"timeout",
            r"no route to host",
            r"no internet connectivity",
            r"dns resolution failed",
            r"registry.*unreachable",
        ],
        severity=ErrorSeverity.MEDIUM,
        auto_recoverable=True
    ),
]

# Precedence order, most specific first
ALL_PATTERNS: list[ErrorPattern] = (
    HEALTH_CHECK_PATTERNS
    + DJANGO_PATTERNS
    + CONTAINER_PATTERNS
    + RESOURCE_PATTERNS
    + DAEMON_PATTERNS
    + PERMISSION_PATTERNS
    + NETWORK_PATTERNS
)

UNKNOWN_SEVERITY = ErrorSeverity.MEDIUM
