"""
Error classification, recovery orchestration and health polling for the
platform's containerized services.
"""
# Core types and errors
from .types import (
    ActionType,
    CommandResult,
    CommandRunner,
    ErrorKind,
    ErrorSeverity,
    RecoveryAction,
    RecoveryState
)
from .exceptions import (
    AutohealError,
    CommandTimeoutError,
    ConfigurationError,
    ErrorNotFoundError,
    RecoveryExhaustedError,
    RecoveryInProgressError,
    StrategyNotFoundError
)
from .config import AutohealConfig
from .events import Event, EventBus, EventLogger, EventType

# Classification and recovery
from .classification import ClassifiedError, ErrorClassifier, RecoveryStrategy, StrategyRegistry
from .engine import RecoveryEngine
from .persistence import ErrorHistoryStore, RecoveryActionLog

# Monitoring and composition
from .health import BaseHealthPoller, HealthSnapshot
from .logwatch import LogWatcher
from .runner import ShellCommandRunner
from .supervisor import AutohealSupervisor


__all__ = [
    # Types
    'ActionType',
    'CommandResult',
    'CommandRunner',
    'ErrorKind',
    'ErrorSeverity',
    'RecoveryAction',
    'RecoveryState',

    # Exceptions
    'AutohealError',
    'CommandTimeoutError',
    'ConfigurationError',
    'ErrorNotFoundError',
    'RecoveryExhaustedError',
    'RecoveryInProgressError',
    'StrategyNotFoundError',

    # Wiring
    'AutohealConfig',
    'Event',
    'EventBus',
    'EventLogger',
    'EventType',

    # Classification and recovery
    'ClassifiedError',
    'ErrorClassifier',
    'ErrorHistoryStore',
    'RecoveryActionLog',
    'RecoveryEngine',
    'RecoveryStrategy',
    'StrategyRegistry',

    # Monitoring
    'AutohealSupervisor',
    'BaseHealthPoller',
    'HealthSnapshot',
    'LogWatcher',
    'ShellCommandRunner',
]
