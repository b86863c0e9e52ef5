"""In-memory bounded history of classified errors and recovery actions."""
import asyncio
import threading
from collections import deque
from datetime import datetime
from typing import Any, Optional

from ..classification.categories import ClassifiedError
from ..events import EventBus, EventType
from ..exceptions import ErrorNotFoundError
from ..types import ErrorSeverity, RecoveryAction
from .base import BaseArchive


class ErrorHistoryStore:
    """Fixed-capacity ring of classified errors.

    The store owns its records: ``record`` keeps a private copy and every
    read returns copies, so callers can never mutate stored state. Once full,
    each insertion evicts the oldest record.
    """

    def __init__(self, capacity: int = 1000, bus: Optional[EventBus] = None):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.bus = bus
        self._errors: deque[ClassifiedError] = deque(maxlen=capacity)
        self._index: dict[str, ClassifiedError] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._errors)

    def record(self, error: ClassifiedError) -> None:
        stored = error.copy()
        with self._lock:
            if len(self._errors) == self.capacity:
                evicted = self._errors[0]
                self._index.pop(evicted.id, None)
            self._errors.append(stored)
            self._index[stored.id] = stored

    def get(self, error_id: str) -> Optional[ClassifiedError]:
        with self._lock:
            error = self._index.get(error_id)
            return error.copy() if error else None

    def recent(self, limit: int = 50) -> list[ClassifiedError]:
        """Most recent errors first."""
        with self._lock:
            newest_first = list(reversed(self._errors))[:max(limit, 0)]
            return [error.copy() for error in newest_first]

    def errors_since(self, since: datetime) -> list[ClassifiedError]:
        with self._lock:
            return [error.copy() for error in reversed(self._errors) if error.timestamp >= since]

    def mark_resolved(self, error_id: str) -> bool:
        """Mark an error resolved.

        Returns:
            True if the error was unresolved before this call

        Raises:
            ErrorNotFoundError: if the id is not in the store

        """
        with self._lock:
            error = self._index.get(error_id)
            if error is None:
                raise ErrorNotFoundError(error_id)
            if error.resolved:
                return False
            error.resolved = True
            snapshot = error.copy()

        if self.bus is not None:
            self.bus.publish(EventType.ERROR_RESOLVED, error=snapshot)
        return True

    def increment_attempts(self, error_id: str) -> int:
        """Increment and return the recovery attempt counter."""
        with self._lock:
            error = self._index.get(error_id)
            if error is None:
                raise ErrorNotFoundError(error_id)
            error.recovery_attempts += 1
            return error.recovery_attempts

    def stats(self) -> dict[str, Any]:
        """Aggregate counts over the errors currently held."""
        with self._lock:
            errors = list(self._errors)

        by_kind: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        for error in errors:
            by_kind[error.kind.value] = by_kind.get(error.kind.value, 0) + 1
            by_severity[error.severity.value] = by_severity.get(error.severity.value, 0) + 1

        return {
            "total": len(errors),
            "by_kind": by_kind,
            "by_severity": by_severity,
            "resolved_count": sum(1 for e in errors if e.resolved),
            "auto_recoverable_count": sum(1 for e in errors if e.auto_recoverable),
            "unresolved_critical": sum(
                1 for e in errors if not e.resolved and e.severity == ErrorSeverity.CRITICAL
            ),
        }

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()
            self._index.clear()


class RecoveryActionLog:
    """Fixed-capacity, append-only log of executed recovery actions."""

    def __init__(self, capacity: int = 500):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._actions: deque[RecoveryAction] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def record(self, action: RecoveryAction) -> None:
        with self._lock:
            self._actions.append(action)

    def recent(self, limit: int = 50) -> list[RecoveryAction]:
        """Most recent actions first."""
        with self._lock:
            return list(reversed(self._actions))[:max(limit, 0)]

    def for_error(self, error_id: str) -> list[RecoveryAction]:
        """Actions for one error, in execution order."""
        with self._lock:
            return [a for a in self._actions if a.error_id == error_id]

    def stats(self) -> dict[str, Any]:
        with self._lock:
            actions = list(self._actions)

        by_action: dict[str, dict[str, int]] = {}
        for action in actions:
            entry = by_action.setdefault(action.action_type, {"total": 0, "successful": 0})
            entry["total"] += 1
            if action.success:
                entry["successful"] += 1

        successful = sum(1 for a in actions if a.success)
        return {
            "total": len(actions),
            "successful": successful,
            "failed": len(actions) - successful,
            "success_rate": successful / len(actions) if actions else 0.0,
            "by_action": by_action,
        }


class MemoryArchive(BaseArchive):
    """In-memory archive.

    Useful for testing and for runs where nothing should outlive the process.
    """

    def __init__(self):
        super().__init__()
        self.errors: dict[str, ClassifiedError] = {}
        self.actions: list[RecoveryAction] = []
        self.snapshots: list[dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def _setup(self) -> None:
        """No setup needed for the memory archive."""
        pass

    async def save_error(self, error: ClassifiedError) -> None:
        async with self._lock:
            stored = error.copy()
            previous = self.errors.get(error.id)
            if previous:
                stored.recovery_attempts = max(previous.recovery_attempts, stored.recovery_attempts)
                stored.resolved = previous.resolved or stored.resolved
            self.errors[error.id] = stored

    async def save_action(self, action: RecoveryAction) -> None:
        async with self._lock:
            self.actions.append(action)

    async def save_snapshot(self, snapshot: Any) -> None:
        async with self._lock:
            self.snapshots.append(snapshot.to_dict())

    async def recent_errors(self, limit: int = 50) -> list[ClassifiedError]:
        async with self._lock:
            ordered = sorted(self.errors.values(), key=lambda e: e.timestamp, reverse=True)
            return [e.copy() for e in ordered[:limit]]

    async def recent_actions(self, limit: int = 50) -> list[RecoveryAction]:
        async with self._lock:
            return list(reversed(self.actions))[:limit]
