"""Domain operations for the lifecycle event ledger."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.base import utcnow
from app.models.lifecycle_event import EventSource, LifecycleEvent


class EventLedgerOperations(BaseOperations[LifecycleEvent]):
    """
    Append-only ledger of lifecycle events.

    Rows are never updated or deleted. Uniqueness of external_event_id and of
    the per-code redemption marker is enforced by the database; a duplicate
    insert raises IntegrityError at flush for the caller to resolve.
    """

    def __init__(self) -> None:
        super().__init__(LifecycleEvent)

    async def get_by_external_id(
        self,
        db: AsyncSession,
        external_event_id: str,
    ) -> LifecycleEvent | None:
        """Look up an event by its vendor-supplied idempotency key."""
        statement = select(LifecycleEvent).where(
            LifecycleEvent.external_event_id == external_event_id  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def record(
        self,
        db: AsyncSession,
        event_type: str,
        code: str,
        external_event_id: str | None = None,
        device_id: str | None = None,
        source: EventSource = EventSource.SDK,
        timestamp: datetime | None = None,
    ) -> LifecycleEvent:
        """Append one event to the ledger."""
        return await self.create(
            db,
            {
                "event_type": event_type,
                "code": code,
                "external_event_id": external_event_id,
                "device_id": device_id,
                "source": source.value,
                "timestamp": timestamp or utcnow(),
            },
        )

    async def has_event(
        self,
        db: AsyncSession,
        code: str,
        event_type: str,
    ) -> bool:
        """Whether any event of this type was recorded for the code."""
        statement = (
            select(func.count())
            .select_from(LifecycleEvent)
            .where(
                LifecycleEvent.code == code,  # type: ignore[arg-type]
                LifecycleEvent.event_type == event_type,  # type: ignore[arg-type]
            )
        )
        result = await db.execute(statement)
        return bool(result.scalar())


# Singleton instance
event_ledger_ops = EventLedgerOperations()
