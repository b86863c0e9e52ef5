"""Main error classifier implementation."""
import logging
from typing import Any, Optional

from ..events import EventBus, EventType
from ..types import ErrorKind
from .categories import ClassifiedError, ErrorPattern
from .patterns import ALL_PATTERNS, UNKNOWN_SEVERITY

logger = logging.getLogger(__name__)


class ErrorClassifier:
    """Turns raw diagnostic text into classified error records.

    Every call records the result in the history store (when one is attached)
    and publishes ``error-detected``, whether or not the error is
    auto-recoverable.
    """

    def __init__(
        self,
        history=None,
        bus: Optional[EventBus] = None,
        custom_patterns: Optional[list[ErrorPattern]] = None
    ):
        """Initialize classifier with patterns.

        Args:
            history: ErrorHistoryStore receiving every classified error
            bus: Event bus for error-detected notifications
            custom_patterns: Extra patterns checked after the built-in ones

        """
        self.history = history
        self.bus = bus
        self.patterns = ALL_PATTERNS.copy()
        if custom_patterns:
            self.patterns.extend(custom_patterns)
        self._counts: dict[str, int] = {}

    def match(self, text: str) -> Optional[ErrorPattern]:
        """Return the first pattern matching the text, in precedence order."""
        for pattern in self.patterns:
            try:
                if pattern.matches(text):
                    return pattern
            except Exception as e:
                logger.error(f"Pattern check for {pattern.kind.value} failed: {e}")
        return None

    def classify(self, text: str, context: Optional[dict[str, Any]] = None) -> ClassifiedError:
        """Classify diagnostic text.

        Args:
            text: Raw diagnostic text (log line, command stderr, probe failure)
            context: Caller-supplied context such as container_name or operation

        Returns:
            The classified error. Unmatched text yields an Unknown record.

        """
        text = text if isinstance(text, str) else str(text)
        caller_context = dict(context or {})
        pattern = self.match(text)

        if pattern is None:
            error = ClassifiedError(
                kind=ErrorKind.UNKNOWN,
                severity=UNKNOWN_SEVERITY,
                message=text,
                context=caller_context,
                auto_recoverable=False
            )
        else:
            extracted: dict[str, Any] = {}
            if pattern.extractor is not None:
                try:
                    extracted = pattern.extractor(text, caller_context)
                except Exception as e:
                    logger.error(f"Context extraction for {pattern.kind.value} failed: {e}")
            error = ClassifiedError(
                kind=pattern.kind,
                severity=pattern.severity,
                message=text,
                context={**caller_context, **extracted},
                auto_recoverable=pattern.auto_recoverable
            )

        self._counts[error.kind.value] = self._counts.get(error.kind.value, 0) + 1
        logger.debug(f"Classified '{text[:120]}' as {error.kind.value} ({error.id})")

        if self.history is not None:
            self.history.record(error)
        if self.bus is not None:
            self.bus.publish(EventType.ERROR_DETECTED, error=error)

        return error

    def add_pattern(self, pattern: ErrorPattern, first: bool = False) -> None:
        """Add a custom pattern, either ahead of or after the built-in ones."""
        if first:
            self.patterns.insert(0, pattern)
        else:
            self.patterns.append(pattern)

    def get_statistics(self) -> dict[str, Any]:
        """Get classification statistics."""
        total = sum(self._counts.values())
        return {
            "total_classifications": total,
            "by_kind": dict(self._counts),
            "unknown_rate": self._counts.get(ErrorKind.UNKNOWN.value, 0) / total if total else 0.0,
            "patterns_loaded": len(self.patterns),
        }
