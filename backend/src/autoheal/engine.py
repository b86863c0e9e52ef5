"""
Recovery engine: runs a kind's repair actions in order for each classified error.

Per error id the engine moves through Idle -> Recovering -> Resolved or
Exhausted. An in-flight set keyed by error id prevents two recovery sequences
for the same instance from running at once; distinct instances recover
independently and concurrently.
"""
import asyncio
import logging
import threading
from typing import Any, Optional

from .actions.catalogue import ActionCatalogue
from .classification.categories import ClassifiedError
from .classification.strategies import RecoveryStrategy, StrategyRegistry
from .events import Event, EventBus, EventType
from .exceptions import (
    AutohealError,
    ErrorNotFoundError,
    RecoveryExhaustedError,
    RecoveryInProgressError,
)
from .persistence.memory import ErrorHistoryStore, RecoveryActionLog
from .types import ActionType, RecoveryAction, RecoveryState

logger = logging.getLogger(__name__)


class RecoveryEngine:
    """Consumes classified errors and drives their recovery strategies."""

    def __init__(
        self,
        history: ErrorHistoryStore,
        registry: StrategyRegistry,
        catalogue: ActionCatalogue,
        action_log: Optional[RecoveryActionLog] = None,
        bus: Optional[EventBus] = None,
        action_timeout: Optional[float] = None
    ):
        self.history = history
        self.registry = registry
        self.catalogue = catalogue
        self.action_log = action_log or RecoveryActionLog()
        self.bus = bus
        self.action_timeout = action_timeout

        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._states: dict[str, RecoveryState] = {}
        self._tasks: set[asyncio.Task] = set()
        self._subscription: Optional[str] = None

    # Wiring

    def attach(self) -> None:
        """Start reacting to error-detected events."""
        if self.bus is None:
            raise AutohealError("RecoveryEngine.attach needs an event bus")
        self._subscription = self.bus.subscribe(EventType.ERROR_DETECTED, self._on_error_detected)

    def detach(self) -> None:
        if self.bus is not None and self._subscription:
            self.bus.unsubscribe(self._subscription)
            self._subscription = None

    def _on_error_detected(self, event: Event) -> None:
        error: ClassifiedError = event.payload["error"]
        if not error.auto_recoverable:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, skipping automatic recovery of {error.id}")
            return
        task = loop.create_task(self.attempt_recovery(error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for every recovery started from events to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # State

    def state_of(self, error_id: str) -> RecoveryState:
        with self._lock:
            return self._states.get(error_id, RecoveryState.IDLE)

    def active_recoveries(self) -> list[str]:
        with self._lock:
            return sorted(self._in_flight)

    def is_in_flight(self, error_id: str) -> bool:
        with self._lock:
            return error_id in self._in_flight

    def should_recover(self, error: ClassifiedError) -> bool:
        """Whether the automatic path may start a recovery for this error."""
        if not error.auto_recoverable or error.resolved:
            return False
        if self.state_of(error.id) != RecoveryState.IDLE:
            return False
        strategy = self.registry.lookup(error.kind)
        if strategy is not None and error.recovery_attempts >= strategy.max_attempts:
            return False
        return True

    # Entry points

    async def attempt_recovery(self, error: ClassifiedError) -> bool:
        """Automatic recovery for a freshly classified error.

        Returns:
            True if an action resolved the error

        """
        current = self.history.get(error.id)
        if current is None:
            logger.warning(f"{error.id} is not in history, skipping recovery")
            return False
        if not self.should_recover(current):
            return False
        return await self._recover(current)

    async def retry(self, error_id: str) -> bool:
        """Manually run another recovery attempt for an error.

        Raises:
            ErrorNotFoundError: unknown id
            RecoveryInProgressError: a recovery for this id is running
            RecoveryExhaustedError: the attempt budget is spent
            StrategyNotFoundError: no strategy for the error's kind

        """
        error = self.history.get(error_id)
        if error is None:
            raise ErrorNotFoundError(error_id)
        if error.resolved:
            raise AutohealError(f"{error_id} is already resolved", error.kind)
        if self.is_in_flight(error_id):
            raise RecoveryInProgressError(error_id)
        strategy = self.registry.require(error.kind)
        if error.recovery_attempts >= strategy.max_attempts:
            raise RecoveryExhaustedError(error_id, error.recovery_attempts)
        return await self._recover(error)

    # Recovery sequence

    async def _recover(self, error: ClassifiedError) -> bool:
        with self._lock:
            if error.id in self._in_flight:
                logger.debug(f"Recovery already in flight for {error.id}")
                return False
            self._in_flight.add(error.id)
            self._states[error.id] = RecoveryState.RECOVERING

        try:
            strategy = self.registry.lookup(error.kind)
            if strategy is None:
                logger.warning(f"No recovery strategy for {error.kind.value}, giving up on {error.id}")
                self._finish(error.id, RecoveryState.EXHAUSTED)
                self._publish(EventType.RECOVERY_FAILED, error=self._latest(error),
                              reason="no strategy defined")
                return False

            return await self._run_strategy(error, strategy)
        finally:
            with self._lock:
                self._in_flight.discard(error.id)

    async def _run_strategy(self, error: ClassifiedError, strategy: RecoveryStrategy) -> bool:
        current = self.history.get(error.id) or error
        if current.resolved or current.recovery_attempts >= strategy.max_attempts:
            self._finish(error.id, RecoveryState.RESOLVED if current.resolved else RecoveryState.EXHAUSTED)
            return current.resolved

        attempt = self.history.increment_attempts(error.id)
        logger.info(
            f"Recovering {error.id} ({error.kind.value}), attempt {attempt}/{strategy.max_attempts}"
        )
        self._publish(EventType.RECOVERY_STARTED, error=self._latest(error), attempt=attempt)

        last_index = len(strategy.actions) - 1
        for index, action_type in enumerate(strategy.actions):
            success, details = await self._execute(action_type, error)
            self._record(error.id, action_type, success, details)

            if success:
                self.history.mark_resolved(error.id)
                self._finish(error.id, RecoveryState.RESOLVED)
                logger.info(f"{error.id} resolved by {action_type.value}")
                self._publish(EventType.RECOVERY_SUCCESS, error=self._latest(error),
                              action_type=action_type.value)
                return True

            logger.warning(f"{action_type.value} did not resolve {error.id}")
            if index < last_index and strategy.retry_delay > 0:
                await asyncio.sleep(strategy.retry_delay)

        self._finish(error.id, RecoveryState.EXHAUSTED)
        logger.error(f"All recovery actions failed for {error.id} ({error.kind.value})")
        self._publish(EventType.RECOVERY_FAILED, error=self._latest(error), attempt=attempt)
        return False

    async def _execute(self, action_type: ActionType, error: ClassifiedError) -> tuple[bool, Optional[str]]:
        action = self.catalogue.get(action_type)
        if action is None:
            logger.warning(f"No executor registered for {action_type.value}")
            return False, "no executor registered"

        try:
            if self.action_timeout:
                success = await asyncio.wait_for(action.execute(error.copy()), timeout=self.action_timeout)
            else:
                success = await action.execute(error.copy())
            return bool(success), None
        except asyncio.TimeoutError:
            logger.warning(f"{action_type.value} timed out after {self.action_timeout}s")
            return False, f"timed out after {self.action_timeout}s"
        except Exception as e:
            logger.error(f"{action_type.value} raised for {error.id}: {e}")
            return False, f"{type(e).__name__}: {e}"

    def _record(self, error_id: str, action_type: ActionType, success: bool, details: Optional[str]) -> None:
        action = RecoveryAction(
            error_id=error_id,
            action_type=action_type.value,
            success=success,
            details=details
        )
        self.action_log.record(action)
        self._publish(EventType.RECOVERY_ACTION, action=action)

    def _finish(self, error_id: str, state: RecoveryState) -> None:
        with self._lock:
            self._states[error_id] = state
            if len(self._states) > self.history.capacity * 2:
                self._prune_states()

    def _prune_states(self) -> None:
        # Caller holds the lock
        for error_id in list(self._states):
            if error_id not in self._in_flight and self.history.get(error_id) is None:
                del self._states[error_id]

    def _latest(self, error: ClassifiedError) -> ClassifiedError:
        return self.history.get(error.id) or error

    def _publish(self, event_type: EventType, **payload: Any) -> None:
        if self.bus is not None:
            self.bus.publish(event_type, **payload)

    # Queries

    def recent_actions(self, limit: int = 50) -> list[RecoveryAction]:
        return self.action_log.recent(limit)

    def recovery_stats(self) -> dict[str, Any]:
        stats = self.action_log.stats()
        with self._lock:
            by_state: dict[str, int] = {}
            for state in self._states.values():
                by_state[state.value] = by_state.get(state.value, 0) + 1
            stats["active"] = len(self._in_flight)
        stats["by_state"] = by_state
        return stats
