"""SQLAlchemy-based archive for classified errors and recovery history."""
import asyncio
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..classification.categories import ClassifiedError
from ..types import RecoveryAction
from .base import BaseArchive
from .repository import HistoryRepository


class SQLAlchemyArchive(BaseArchive):
    """SQLAlchemy-based archive implementation."""

    def __init__(self, database_url: str | None = None):
        """Initialize the SQLAlchemy archive.

        Args:
            database_url: SQLAlchemy database URL. Defaults to SQLite in the user data dir.

        """
        super().__init__()
        if database_url is None:
            data_dir = Path.home() / ".autoheal" / "data"
            data_dir.mkdir(parents=True, exist_ok=True)
            database_url = f"sqlite+aiosqlite:///{data_dir / 'history.db'}"

        self.database_url = database_url
        self.engine = create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
        )
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        self._init_lock = asyncio.Lock()

    async def _ensure_initialized(self):
        """Ensure database tables are created."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            from .models import Base

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._initialized = True

    async def _setup(self) -> None:
        await self._ensure_initialized()

    async def save_error(self, error: ClassifiedError) -> None:
        await self._ensure_initialized()

        async with self.session_factory() as session:
            await HistoryRepository(session).save_error(error)

    async def save_action(self, action: RecoveryAction) -> None:
        await self._ensure_initialized()

        async with self.session_factory() as session:
            await HistoryRepository(session).save_action(action)

    async def save_snapshot(self, snapshot: Any) -> None:
        await self._ensure_initialized()

        async with self.session_factory() as session:
            await HistoryRepository(session).save_snapshot(snapshot.to_dict())

    async def get_error(self, error_id: str) -> ClassifiedError | None:
        await self._ensure_initialized()

        async with self.session_factory() as session:
            return await HistoryRepository(session).get_error(error_id)

    async def recent_errors(self, limit: int = 50) -> list[ClassifiedError]:
        await self._ensure_initialized()

        async with self.session_factory() as session:
            return await HistoryRepository(session).recent_errors(limit)

    async def recent_actions(self, limit: int = 50) -> list[RecoveryAction]:
        await self._ensure_initialized()

        async with self.session_factory() as session:
            return await HistoryRepository(session).recent_actions(limit)

    async def get_stats(self) -> dict[str, Any]:
        """Get archive statistics."""
        await self._ensure_initialized()

        async with self.session_factory() as session:
            repository = HistoryRepository(session)
            return {
                "type": "sqlalchemy",
                "database_url": self.database_url,
                "total_errors": await repository.count_errors(),
                "total_actions": await repository.count_actions(),
            }

    async def cleanup_old(self, days: int = 30) -> int:
        """Delete archived history older than ``days``."""
        await self._ensure_initialized()

        async with self.session_factory() as session:
            return await HistoryRepository(session).cleanup_old(days=days)

    async def close(self):
        """Close database connections."""
        await self.engine.dispose()
