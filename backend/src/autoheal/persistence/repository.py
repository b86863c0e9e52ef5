"""Repository pattern implementation for the history archive."""
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..classification.categories import ClassifiedError
from ..types import ErrorKind, ErrorSeverity, RecoveryAction
from .models import ClassifiedErrorModel, HealthSnapshotModel, RecoveryActionModel

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class HistoryRepository:
    """Repository for archived errors, recovery actions and health snapshots."""

    def __init__(self, session: AsyncSession):
        """Initialize with async database session."""
        self.session = session

    async def save_error(self, error: ClassifiedError) -> None:
        """Insert a classified error, or update its mutable fields if already archived."""
        try:
            existing = await self.session.get(ClassifiedErrorModel, error.id)
            if existing:
                # Saves can land out of order; neither field moves backwards
                existing.recovery_attempts = max(existing.recovery_attempts, error.recovery_attempts)
                existing.resolved = existing.resolved or error.resolved
                existing.context = json.dumps(error.context, default=str)
            else:
                self.session.add(ClassifiedErrorModel(
                    id=error.id,
                    kind=error.kind.value,
                    severity=error.severity.value,
                    message=error.message,
                    context=json.dumps(error.context, default=str),
                    auto_recoverable=error.auto_recoverable,
                    recovery_attempts=error.recovery_attempts,
                    resolved=error.resolved,
                    timestamp=error.timestamp
                ))

            await self.session.commit()
            logger.debug(f"Archived error {error.id}")

        except Exception as e:
            await self.session.rollback()
            logger.error(f"Failed to archive error {error.id}: {e}")
            raise

    async def save_action(self, action: RecoveryAction) -> None:
        try:
            self.session.add(RecoveryActionModel(
                id=action.id,
                error_id=action.error_id,
                action_type=action.action_type,
                success=action.success,
                details=action.details,
                timestamp=action.timestamp
            ))
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.error(f"Failed to archive action {action.id}: {e}")
            raise

    async def save_snapshot(self, snapshot: dict[str, Any]) -> None:
        try:
            self.session.add(HealthSnapshotModel(
                service=snapshot["service"],
                is_healthy=snapshot["is_healthy"],
                checks=json.dumps(snapshot.get("checks", {})),
                errors=json.dumps(snapshot.get("errors", [])),
                warnings=json.dumps(snapshot.get("warnings", [])),
                performance=json.dumps(snapshot.get("performance", {})),
                timestamp=datetime.fromisoformat(snapshot["timestamp"])
            ))
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.error(f"Failed to archive snapshot for {snapshot.get('service')}: {e}")
            raise

    async def get_error(self, error_id: str) -> ClassifiedError | None:
        model = await self.session.get(ClassifiedErrorModel, error_id)
        return self._model_to_error(model) if model else None

    async def recent_errors(self, limit: int = 50) -> list[ClassifiedError]:
        stmt = select(ClassifiedErrorModel).order_by(desc(ClassifiedErrorModel.timestamp)).limit(limit)
        result = await self.session.execute(stmt)
        return [self._model_to_error(m) for m in result.scalars().all()]

    async def recent_actions(self, limit: int = 50) -> list[RecoveryAction]:
        stmt = select(RecoveryActionModel).order_by(desc(RecoveryActionModel.timestamp)).limit(limit)
        result = await self.session.execute(stmt)
        return [self._model_to_action(m) for m in result.scalars().all()]

    async def actions_for_error(self, error_id: str) -> list[RecoveryAction]:
        stmt = (
            select(RecoveryActionModel)
            .where(RecoveryActionModel.error_id == error_id)
            .order_by(RecoveryActionModel.timestamp)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_action(m) for m in result.scalars().all()]

    async def snapshots_for_service(self, service: str, limit: int = 100) -> list[dict[str, Any]]:
        stmt = (
            select(HealthSnapshotModel)
            .where(HealthSnapshotModel.service == service)
            .order_by(desc(HealthSnapshotModel.timestamp))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            {
                "service": m.service,
                "is_healthy": m.is_healthy,
                "checks": json.loads(m.checks),
                "errors": json.loads(m.errors),
                "warnings": json.loads(m.warnings),
                "performance": json.loads(m.performance),
                "timestamp": _aware(m.timestamp).isoformat(),
            }
            for m in result.scalars().all()
        ]

    async def count_errors(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(ClassifiedErrorModel))
        return result.scalar_one()

    async def count_actions(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(RecoveryActionModel))
        return result.scalar_one()

    async def cleanup_old(self, days: int = 30) -> int:
        """Delete archived rows older than the given number of days.

        Returns:
            Number of deleted error records

        """
        cutoff = datetime.now(UTC) - timedelta(days=days)
        try:
            result = await self.session.execute(
                delete(ClassifiedErrorModel).where(ClassifiedErrorModel.timestamp < cutoff)
            )
            await self.session.execute(
                delete(RecoveryActionModel).where(RecoveryActionModel.timestamp < cutoff)
            )
            await self.session.execute(
                delete(HealthSnapshotModel).where(HealthSnapshotModel.timestamp < cutoff)
            )
            await self.session.commit()
            deleted = result.rowcount or 0
            logger.info(f"Cleaned up {deleted} archived errors older than {days} days")
            return deleted

        except Exception as e:
            await self.session.rollback()
            logger.error(f"Failed to clean up archive: {e}")
            raise

    def _model_to_error(self, model: ClassifiedErrorModel) -> ClassifiedError:
        return ClassifiedError(
            id=model.id,
            timestamp=_aware(model.timestamp),
            kind=ErrorKind(model.kind),
            severity=ErrorSeverity(model.severity),
            message=model.message,
            context=json.loads(model.context) if model.context else {},
            auto_recoverable=model.auto_recoverable,
            recovery_attempts=model.recovery_attempts,
            resolved=model.resolved
        )

    def _model_to_action(self, model: RecoveryActionModel) -> RecoveryAction:
        return RecoveryAction(
            id=model.id,
            error_id=model.error_id,
            action_type=model.action_type,
            success=model.success,
            details=model.details,
            timestamp=_aware(model.timestamp)
        )
