"""SQLAlchemy models for the error and recovery archive."""
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ClassifiedErrorModel(Base):
    """Classified errors with their latest recovery state."""

    __tablename__ = 'classified_errors'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[str] = mapped_column(Text, nullable=False, default='{}')  # JSON serialized
    auto_recoverable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recovery_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<ClassifiedErrorModel(id='{self.id}', kind='{self.kind}', "
            f"attempts={self.recovery_attempts}, resolved={self.resolved})>"
        )


class RecoveryActionModel(Base):
    """Executed recovery actions, append-only."""

    __tablename__ = 'recovery_actions'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    error_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True
    )

    def __repr__(self) -> str:
        return (
            f"<RecoveryActionModel(error_id='{self.error_id}', "
            f"action_type='{self.action_type}', success={self.success})>"
        )


class HealthSnapshotModel(Base):
    """Per-service health poll results."""

    __tablename__ = 'health_snapshots'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_healthy: Mapped[bool] = mapped_column(Boolean, nullable=False)
    checks: Mapped[str] = mapped_column(Text, nullable=False, default='{}')  # JSON serialized
    errors: Mapped[str] = mapped_column(Text, nullable=False, default='[]')
    warnings: Mapped[str] = mapped_column(Text, nullable=False, default='[]')
    performance: Mapped[str] = mapped_column(Text, nullable=False, default='{}')
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True
    )
