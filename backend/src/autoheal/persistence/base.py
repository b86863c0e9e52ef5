"""
Base implementation for the durable history archive.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..classification.categories import ClassifiedError
from ..events import Event, EventBus, EventType
from ..types import RecoveryAction


logger = logging.getLogger(__name__)


class BaseArchive(ABC):
    """Base class for archive implementations.

    The bounded in-memory stores stay authoritative; an archive keeps a
    longer record of errors, recovery actions and health snapshots fed from
    the event bus.
    """

    def __init__(self):
        self._initialized = False
        self._subscriptions: list[str] = []
        self._bus: Optional[EventBus] = None

    async def initialize(self) -> None:
        """Initialize the archive backend."""
        if not self._initialized:
            await self._setup()
            self._initialized = True

    @abstractmethod
    async def _setup(self) -> None:
        """Setup the archive backend. Override in subclasses."""
        pass

    @abstractmethod
    async def save_error(self, error: ClassifiedError) -> None:
        """Insert or update a classified error."""
        pass

    @abstractmethod
    async def save_action(self, action: RecoveryAction) -> None:
        """Append an executed recovery action."""
        pass

    @abstractmethod
    async def save_snapshot(self, snapshot: Any) -> None:
        """Append a health snapshot."""
        pass

    @abstractmethod
    async def recent_errors(self, limit: int = 50) -> list[ClassifiedError]:
        pass

    @abstractmethod
    async def recent_actions(self, limit: int = 50) -> list[RecoveryAction]:
        pass

    async def close(self) -> None:
        pass

    def attach(self, bus: EventBus) -> None:
        """Subscribe to the events that feed the archive."""
        self._bus = bus
        self._subscriptions = [
            bus.subscribe(EventType.ERROR_DETECTED, self._on_error),
            bus.subscribe(EventType.ERROR_RESOLVED, self._on_error),
            bus.subscribe(EventType.RECOVERY_SUCCESS, self._on_error),
            bus.subscribe(EventType.RECOVERY_FAILED, self._on_error),
            bus.subscribe(EventType.RECOVERY_ACTION, self._on_action),
            bus.subscribe(EventType.HEALTH_CHECK, self._on_snapshot),
        ]

    def detach(self) -> None:
        if self._bus is None:
            return
        for sub_id in self._subscriptions:
            self._bus.unsubscribe(sub_id)
        self._subscriptions = []
        self._bus = None

    async def _on_error(self, event: Event) -> None:
        try:
            await self.save_error(event.payload["error"])
        except Exception as e:
            logger.error(f"Failed to archive error from {event.type.value}: {e}")

    async def _on_action(self, event: Event) -> None:
        try:
            await self.save_action(event.payload["action"])
        except Exception as e:
            logger.error(f"Failed to archive recovery action: {e}")

    async def _on_snapshot(self, event: Event) -> None:
        try:
            await self.save_snapshot(event.payload["snapshot"])
        except Exception as e:
            logger.error(f"Failed to archive health snapshot: {e}")
