"""Registry of repair actions by action type."""
import logging
from typing import Optional

from ..exceptions import AutohealError
from ..types import ActionType
from .base import ActionContext, BaseAction
from .containers import CleanupContainersAction, RestartContainerAction
from .network import NetworkRepairAction, PullImageWithRetryAction
from .ports import FindAlternativePortAction, KillConflictingProcessAction
from .redis import (
    CleanRedisDataAction,
    DisableRedisAOFAction,
    FixRedisPermissionsAction,
    ForceAOFRewriteAction,
    RemoveStaleRDBAction,
    RestartRedisContainerAction,
)
from .reportapp import (
    DisableMissingPluginsAction,
    FixDjangoDatabaseConfigAction,
    InstallDjangoPluginsAction,
    RestartDjangoContainerAction,
    RestartSysreptorContainerAction,
    VerifyDatabaseConnectionAction,
)
from .system import (
    CleanupDiskSpaceAction,
    CreateMissingDirectoriesAction,
    FreeMemoryAction,
    RestartDockerDaemonAction,
    RetryWithSudoAction,
)
from .volumes import RepairVolumePermissionsAction

logger = logging.getLogger(__name__)

DEFAULT_ACTIONS: tuple[type[BaseAction], ...] = (
    CleanupContainersAction,
    RestartContainerAction,
    FindAlternativePortAction,
    KillConflictingProcessAction,
    CleanupDiskSpaceAction,
    FreeMemoryAction,
    RestartDockerDaemonAction,
    CreateMissingDirectoriesAction,
    RetryWithSudoAction,
    RepairVolumePermissionsAction,
    RemoveStaleRDBAction,
    FixRedisPermissionsAction,
    CleanRedisDataAction,
    RestartRedisContainerAction,
    DisableRedisAOFAction,
    ForceAOFRewriteAction,
    RestartSysreptorContainerAction,
    RestartDjangoContainerAction,
    VerifyDatabaseConnectionAction,
    FixDjangoDatabaseConfigAction,
    InstallDjangoPluginsAction,
    DisableMissingPluginsAction,
    NetworkRepairAction,
    PullImageWithRetryAction,
)


class ActionCatalogue:
    """Named, independently invokable repair operations."""

    def __init__(self, actions: Optional[list[BaseAction]] = None):
        self._actions: dict[ActionType, BaseAction] = {}
        for action in actions or []:
            self.register(action)

    @classmethod
    def default(cls, ctx: ActionContext) -> "ActionCatalogue":
        return cls([action_cls(ctx) for action_cls in DEFAULT_ACTIONS])

    def register(self, action: BaseAction) -> None:
        if action.action_type in self._actions:
            logger.debug(f"Replacing action {action.name}")
        self._actions[action.action_type] = action

    def get(self, action_type: ActionType) -> Optional[BaseAction]:
        return self._actions.get(action_type)

    def require(self, action_type: ActionType) -> BaseAction:
        action = self.get(action_type)
        if action is None:
            raise AutohealError(f"No executor registered for {action_type.value}")
        return action

    def __contains__(self, action_type: ActionType) -> bool:
        return action_type in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def describe(self) -> dict[str, str]:
        """Human-readable description of every action."""
        return {a.name: a.description for a in self._actions.values()}
