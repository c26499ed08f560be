"""PaymentEvent repository for Renzo backend.

Provides duplicate detection for webhook deliveries. The unique
external_event_id is the deduplication key: the first delivery to insert it
owns the event.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from renzo.core.timezone import utc_now
from renzo.models.payment_event import PaymentEvent, PaymentEventStatus
from renzo.repositories.upsert import dialect_insert


class PaymentEventRepository:
    """Repository for PaymentEvent entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def claim(self, external_event_id: str, event_type: str, raw_payload: dict) -> bool:
        """Insert a 'received' row for the event unless one already exists.

        Query:
            INSERT INTO payment_events (...) VALUES (...)
            ON CONFLICT (external_event_id) DO NOTHING

        Args:
            external_event_id: Provider event id (deduplication key)
            event_type: Provider event type
            raw_payload: Full parsed payload, kept for audit and replay

        Returns:
            True if this call created the row, False if the event was already known
        """
        now = utc_now()
        insert = dialect_insert(self.session)
        result = await self.session.execute(
            insert(PaymentEvent)
            .values(
                id=uuid4(),
                external_event_id=external_event_id,
                event_type=event_type,
                status=PaymentEventStatus.RECEIVED,
                attempts=1,
                raw_payload=raw_payload,
                received_at=now,
                claimed_at=now,
            )
            .on_conflict_do_nothing(index_elements=["external_event_id"])
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def get_by_external_id(self, external_event_id: str) -> PaymentEvent | None:
        """Retrieve payment event by provider event id."""
        result = await self.session.execute(
            select(PaymentEvent).where(PaymentEvent.external_event_id == external_event_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, event_id: UUID) -> PaymentEvent | None:
        """Retrieve payment event by UUID."""
        result = await self.session.execute(select(PaymentEvent).where(PaymentEvent.id == event_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def reclaim(self, event_id: UUID, stale_before: datetime) -> bool:
        """Take over a failed event, or a received one whose claim has gone stale.

        Query:
            UPDATE payment_events
            SET status = 'received', attempts = attempts + 1, claimed_at = now()
            WHERE id = :event_id
              AND (status = 'failed' OR (status = 'received' AND claimed_at < :stale_before))

        Args:
            event_id: Payment event UUID
            stale_before: Claims started before this instant are considered abandoned

        Returns:
            True if this call now owns the event
        """
        result = await self.session.execute(
            update(PaymentEvent)
            .where(
                PaymentEvent.id == event_id,  # type: ignore[arg-type]
                or_(
                    PaymentEvent.status == PaymentEventStatus.FAILED,  # type: ignore[arg-type]
                    and_(
                        PaymentEvent.status == PaymentEventStatus.RECEIVED,  # type: ignore[arg-type]
                        PaymentEvent.claimed_at < stale_before,  # type: ignore[arg-type]
                    ),
                ),
            )
            .values(
                status=PaymentEventStatus.RECEIVED,
                attempts=PaymentEvent.attempts + 1,
                claimed_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_processed(self, event_id: UUID) -> None:
        """Record successful handling of an event."""
        await self.session.execute(
            update(PaymentEvent)
            .where(PaymentEvent.id == event_id)  # type: ignore[arg-type]
            .values(
                status=PaymentEventStatus.PROCESSED,
                processed_at=utc_now(),
                error_detail=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def mark_failed(self, event_id: UUID, error_detail: str) -> None:
        """Record a handler failure so a later delivery or replay can retry."""
        await self.session.execute(
            update(PaymentEvent)
            .where(
                PaymentEvent.id == event_id,  # type: ignore[arg-type]
                PaymentEvent.status != PaymentEventStatus.PROCESSED,  # type: ignore[arg-type]
            )
            .values(status=PaymentEventStatus.FAILED, error_detail=error_detail[:2000])
            .execution_options(synchronize_session=False)
        )

    async def list_failed(self, limit: int = 50) -> list[PaymentEvent]:
        """Retrieve failed events, oldest first."""
        result = await self.session.execute(
            select(PaymentEvent)
            .where(PaymentEvent.status == PaymentEventStatus.FAILED)  # type: ignore[arg-type]
            .order_by(PaymentEvent.received_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
