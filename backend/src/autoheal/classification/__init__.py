"""Error classification system for recovery."""
from .categories import ClassifiedError, ErrorPattern
from .classifier import ErrorClassifier
from .patterns import ALL_PATTERNS
from .strategies import RecoveryStrategy, StrategyRegistry

__all__ = [
    "ALL_PATTERNS",
    "ClassifiedError",
    "ErrorClassifier",
    "ErrorPattern",
    "RecoveryStrategy",
    "StrategyRegistry",
]
