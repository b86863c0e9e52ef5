"""
Publish/subscribe event bus.

Subsystems publish lifecycle events (errors detected and resolved, recovery
outcomes, health transitions) and any number of subscribers attach to them.
Subscription and unsubscription are safe from any thread. Coroutine handlers
are scheduled on the running event loop and tracked so callers can wait for
them with ``drain()``.
"""
import asyncio
import inspect
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Events published by the autoheal system."""
    ERROR_DETECTED = "error-detected"
    ERROR_RESOLVED = "error-resolved"
    RECOVERY_STARTED = "recovery-started"
    RECOVERY_ACTION = "recovery-action"
    RECOVERY_SUCCESS = "recovery-success"
    RECOVERY_FAILED = "recovery-failed"
    HEALTH_CHECK = "health-check"
    HEALTH_DEGRADED = "health-degraded"
    HEALTH_CRITICAL = "health-critical"
    HEALTH_RESTORED = "health-restored"
    NETWORK_DEGRADED = "network-degraded"
    NETWORK_CRITICAL = "network-critical"
    NETWORK_RESTORED = "network-restored"
    PORT_ALTERNATIVE_FOUND = "port-alternative-found"


@dataclass
class Event:
    """Event data container."""
    type: EventType
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        payload = {}
        for key, value in self.payload.items():
            payload[key] = value.to_dict() if hasattr(value, "to_dict") else value
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "payload": payload,
        }


Handler = Callable[[Event], Any]


class EventBus:
    """Thread-safe publish/subscribe bus."""

    def __init__(self):
        self._handlers: dict[Optional[EventType], dict[str, Handler]] = {}
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: Handler) -> str:
        """Subscribe a handler to one event type.

        Returns:
            Subscription id for ``unsubscribe``.
        """
        sub_id = uuid.uuid4().hex
        with self._lock:
            self._handlers.setdefault(event_type, {})[sub_id] = handler
        logger.debug(f"Subscribed {sub_id} to {event_type.value}")
        return sub_id

    def subscribe_all(self, handler: Handler) -> str:
        """Subscribe a handler to every event type."""
        sub_id = uuid.uuid4().hex
        with self._lock:
            self._handlers.setdefault(None, {})[sub_id] = handler
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        with self._lock:
            for handlers in self._handlers.values():
                if handlers.pop(sub_id, None) is not None:
                    return True
        return False

    def subscriber_count(self, event_type: EventType) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, {})) + len(self._handlers.get(None, {}))

    def publish(self, event_type: EventType, **payload: Any) -> Event:
        """Deliver an event to all subscribers.

        Handler exceptions are logged and never reach the publisher.
        """
        event = Event(type=event_type, payload=payload)
        with self._lock:
            handlers = list(self._handlers.get(event_type, {}).values())
            handlers.extend(self._handlers.get(None, {}).values())

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event)
            except Exception as e:
                logger.error(f"Event handler for {event_type.value} failed: {e}")
        return event

    def _schedule(self, awaitable, event: Event) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping async handler for {event.type.value}")
            awaitable.close()
            return

        task = loop.create_task(self._run_handler(awaitable, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_handler(self, awaitable, event: Event) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.error(f"Async event handler for {event.type.value} failed: {e}")

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class EventLogger:
    """Subscriber that writes one log line per event."""

    LEVELS = {
        EventType.RECOVERY_FAILED: logging.ERROR,
        EventType.HEALTH_CRITICAL: logging.ERROR,
        EventType.HEALTH_DEGRADED: logging.WARNING,
        EventType.NETWORK_CRITICAL: logging.ERROR,
        EventType.NETWORK_DEGRADED: logging.WARNING,
        EventType.ERROR_DETECTED: logging.WARNING,
        EventType.HEALTH_CHECK: logging.DEBUG,
        EventType.RECOVERY_ACTION: logging.DEBUG,
    }

    def __init__(self, bus: EventBus):
        self.bus = bus
        self.sub_id: Optional[str] = None

    def attach(self) -> None:
        self.sub_id = self.bus.subscribe_all(self)

    def detach(self) -> None:
        if self.sub_id:
            self.bus.unsubscribe(self.sub_id)
            self.sub_id = None

    def __call__(self, event: Event) -> None:
        level = self.LEVELS.get(event.type, logging.INFO)
        logger.log(level, f"[{event.type.value}] {self._summarize(event.payload)}")

    @staticmethod
    def _summarize(payload: dict[str, Any]) -> str:
        parts = []
        for key, value in payload.items():
            if hasattr(value, "kind") and hasattr(value, "id"):
                parts.append(f"{key}={value.id}({value.kind.value})")
            elif hasattr(value, "service") and hasattr(value, "is_healthy"):
                parts.append(f"{key}={value.service}(healthy={value.is_healthy})")
            else:
                parts.append(f"{key}={value}")
        return " ".join(parts)
