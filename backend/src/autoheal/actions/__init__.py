"""Recovery action executors."""
from .base import ActionContext, ActionTimings, BaseAction
from .catalogue import DEFAULT_ACTIONS, ActionCatalogue
from .volumes import VolumePermissionManager

__all__ = [
    "ActionCatalogue",
    "ActionContext",
    "ActionTimings",
    "BaseAction",
    "DEFAULT_ACTIONS",
    "VolumePermissionManager",
]
