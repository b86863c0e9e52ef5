"""Error pattern definitions and classified error records."""
import copy
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Optional

from ..types import ErrorKind, ErrorSeverity

ContextExtractor = Callable[[str, dict[str, Any]], dict[str, Any]]


@dataclass
class ErrorPattern:
    """Pattern definition for matching diagnostic text to an error kind."""

    kind: ErrorKind
    patterns: list[str]  # Regular expressions, matched case-insensitively
    severity: ErrorSeverity
    auto_recoverable: bool
    extractor: Optional[ContextExtractor] = None
    _compiled: list[re.Pattern] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        if self.kind == ErrorKind.UNKNOWN and self.auto_recoverable:
            raise ValueError("Unknown errors cannot be auto-recoverable")
        self._compiled = [re.compile(p, re.IGNORECASE) for p in self.patterns]

    def matches(self, text: str) -> bool:
        """Check whether any of the patterns occur in the text."""
        return any(regex.search(text) for regex in self._compiled)


@dataclass
class ClassifiedError:
    """Structured record produced from raw diagnostic text."""

    kind: ErrorKind
    severity: ErrorSeverity
    message: str
    context: dict[str, Any]
    auto_recoverable: bool
    id: str = field(default_factory=lambda: f"err_{uuid.uuid4().hex}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    recovery_attempts: int = 0
    resolved: bool = False

    def __post_init__(self):
        if self.kind == ErrorKind.UNKNOWN:
            self.auto_recoverable = False

    @property
    def container_name(self) -> Optional[str]:
        return self.context.get("container_name")

    def copy(self) -> "ClassifiedError":
        """Point-in-time copy that shares no mutable state with the original."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "context": self.context,
            "auto_recoverable": self.auto_recoverable,
            "recovery_attempts": self.recovery_attempts,
            "resolved": self.resolved,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClassifiedError":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            kind=ErrorKind(data["kind"]),
            severity=ErrorSeverity(data["severity"]),
            message=data["message"],
            context=dict(data.get("context") or {}),
            auto_recoverable=data["auto_recoverable"],
            recovery_attempts=data.get("recovery_attempts", 0),
            resolved=data.get("resolved", False),
        )
