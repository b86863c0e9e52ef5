"""Recovery strategy table keyed by error kind."""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from ..exceptions import StrategyNotFoundError
from ..types import ActionType, ErrorKind


@dataclass(frozen=True)
class RecoveryStrategy:
    """Ordered action plan and retry budget for one error kind.

    Actions are tried in listed order within one attempt; ``retry_delay``
    seconds are waited after each failed action.
    """

    actions: tuple[ActionType, ...]
    max_attempts: int
    retry_delay: float

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not self.actions:
            raise ValueError("A strategy needs at least one action")
        if self.retry_delay < 0:
            raise ValueError("retry_delay cannot be negative")


class StrategyRegistry:
    """Maps error kinds to recovery strategies."""

    DEFAULT_STRATEGIES: dict[ErrorKind, RecoveryStrategy] = {
        ErrorKind.PORT_CONFLICT: RecoveryStrategy(
            actions=(
                ActionType.FIND_ALTERNATIVE_PORT,
                ActionType.KILL_CONFLICTING_PROCESS,
                ActionType.CLEANUP_CONTAINERS,
            ),
            max_attempts=3,
            retry_delay=2.0
        ),
        ErrorKind.NAME_CONFLICT: RecoveryStrategy(
            actions=(ActionType.CLEANUP_CONTAINERS,),
            max_attempts=2,
            retry_delay=1.0
        ),
        # Least disruptive first: stale files, ownership, then data wipe and AOF off
        ErrorKind.PERMISSION_DENIED: RecoveryStrategy(
            actions=(
                ActionType.REMOVE_STALE_RDB,
                ActionType.FIX_REDIS_PERMISSIONS,
                ActionType.REPAIR_VOLUME_PERMISSIONS,
                ActionType.CLEAN_REDIS_DATA,
                ActionType.RESTART_REDIS_CONTAINER,
                ActionType.DISABLE_REDIS_AOF,
                ActionType.RETRY_WITH_SUDO,
            ),
            max_attempts=6,
            retry_delay=2.0
        ),
        ErrorKind.RESOURCE_EXHAUSTED: RecoveryStrategy(
            actions=(
                ActionType.CLEANUP_DISK_SPACE,
                ActionType.FREE_MEMORY,
                ActionType.CLEANUP_CONTAINERS,
            ),
            max_attempts=3,
            retry_delay=5.0
        ),
        ErrorKind.VOLUME_MOUNT_ERROR: RecoveryStrategy(
            actions=(ActionType.CREATE_MISSING_DIRECTORIES,),
            max_attempts=2,
            retry_delay=1.0
        ),
        ErrorKind.NETWORK_ERROR: RecoveryStrategy(
            actions=(ActionType.RESTART_DOCKER_DAEMON,),
            max_attempts=3,
            retry_delay=10.0
        ),
        ErrorKind.DAEMON_ERROR: RecoveryStrategy(
            actions=(ActionType.RESTART_DOCKER_DAEMON,),
            max_attempts=3,
            retry_delay=10.0
        ),
        ErrorKind.CONTAINER_START_FAILED: RecoveryStrategy(
            actions=(
                ActionType.CLEANUP_CONTAINERS,
                ActionType.REPAIR_VOLUME_PERMISSIONS,
                ActionType.RESTART_CONTAINER,
            ),
            max_attempts=3,
            retry_delay=3.0
        ),
        ErrorKind.HEALTH_CHECK_FAILED: RecoveryStrategy(
            actions=(
                ActionType.RESTART_SYSREPTOR_CONTAINER,
                ActionType.REPAIR_VOLUME_PERMISSIONS,
                ActionType.CLEANUP_CONTAINERS,
                ActionType.RESTART_DOCKER_DAEMON,
            ),
            max_attempts=4,
            retry_delay=5.0
        ),
        ErrorKind.DATABASE_CONFIG_ERROR: RecoveryStrategy(
            actions=(
                ActionType.FIX_DJANGO_DATABASE_CONFIG,
                ActionType.VERIFY_DATABASE_CONNECTION,
                ActionType.RESTART_DJANGO_CONTAINER,
                ActionType.REPAIR_VOLUME_PERMISSIONS,
            ),
            max_attempts=4,
            retry_delay=3.0
        ),
        ErrorKind.PLUGIN_MISSING_ERROR: RecoveryStrategy(
            actions=(
                ActionType.INSTALL_DJANGO_PLUGINS,
                ActionType.DISABLE_MISSING_PLUGINS,
                ActionType.RESTART_DJANGO_CONTAINER,
            ),
            max_attempts=3,
            retry_delay=2.0
        ),
        # Not auto-recoverable: only runs on a manual retry
        ErrorKind.IMAGE_PULL_FAILED: RecoveryStrategy(
            actions=(ActionType.PULL_IMAGE_WITH_RETRY,),
            max_attempts=2,
            retry_delay=0.0
        ),
    }

    def __init__(self, custom_strategies: Optional[dict[ErrorKind, RecoveryStrategy]] = None):
        """Initialize with default strategies, optionally overridden per kind."""
        strategies = self.DEFAULT_STRATEGIES.copy()
        if custom_strategies:
            strategies.update(custom_strategies)
        strategies.pop(ErrorKind.UNKNOWN, None)
        self._strategies: Mapping[ErrorKind, RecoveryStrategy] = MappingProxyType(strategies)

    @property
    def strategies(self) -> Mapping[ErrorKind, RecoveryStrategy]:
        return self._strategies

    def lookup(self, kind: ErrorKind) -> Optional[RecoveryStrategy]:
        """Get the strategy for a kind, or None when no automated recovery is defined."""
        return self._strategies.get(kind)

    def require(self, kind: ErrorKind) -> RecoveryStrategy:
        strategy = self.lookup(kind)
        if strategy is None:
            raise StrategyNotFoundError(kind)
        return strategy

    def max_attempts(self, kind: ErrorKind) -> int:
        """Attempt budget for a kind; zero when there is no strategy."""
        strategy = self.lookup(kind)
        return strategy.max_attempts if strategy else 0

    def action_types(self) -> set[ActionType]:
        """Every action referenced by some strategy."""
        return {action for strategy in self._strategies.values() for action in strategy.actions}
