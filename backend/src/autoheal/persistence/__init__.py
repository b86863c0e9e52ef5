"""
History stores and archive implementations.
"""
from .base import BaseArchive
from .memory import ErrorHistoryStore, MemoryArchive, RecoveryActionLog
from .sqlalchemy_persistence import SQLAlchemyArchive

__all__ = ['BaseArchive', 'ErrorHistoryStore', 'MemoryArchive', 'RecoveryActionLog', 'SQLAlchemyArchive']
