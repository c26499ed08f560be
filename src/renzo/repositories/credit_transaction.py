"""CreditTransaction repository for Renzo backend.

Provides data access methods for the append-only credit ledger. Inserts use
ON CONFLICT DO NOTHING so that the unique job and payment-event references
decide which of several concurrent writers wins.
"""

from datetime import datetime
from typing import NamedTuple
from uuid import UUID

from sqlalchemy import case, exists, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from renzo.models.credit_transaction import CreditTransaction, CreditTransactionType
from renzo.repositories.upsert import dialect_insert


class LedgerStats(NamedTuple):
    """Aggregated ledger figures for one user."""

    balance: int
    total_purchased: int
    total_consumed: int
    total_refunded: int
    last_transaction_at: datetime | None


class CreditTransactionRepository:
    """Repository for CreditTransaction entities.

    Rows are only ever inserted. There are no update or delete methods.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def lock_user(self, user_id: str) -> None:
        """Serialize ledger writes for one user until the transaction ends.

        Uses a transaction-scoped advisory lock on PostgreSQL. SQLite already
        allows a single writer at a time, so nothing is needed there.
        """
        if self.session.get_bind().dialect.name != "postgresql":
            return
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:user_id))"), {"user_id": user_id}
        )

    async def insert_unique(self, entry: CreditTransaction) -> bool:
        """Insert a ledger entry unless its job or payment-event reference is taken.

        Query:
            INSERT INTO credit_transactions (...) VALUES (...)
            ON CONFLICT DO NOTHING

        Args:
            entry: Entry to append

        Returns:
            True if the row was written, False if an entry with the same
            reference already exists
        """
        insert = dialect_insert(self.session)
        result = await self.session.execute(
            insert(CreditTransaction).values(**entry.model_dump()).on_conflict_do_nothing()
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def exists_for_job(self, job_id: UUID) -> bool:
        """Check if a ledger entry already references this job."""
        result = await self.session.execute(
            select(exists().where(CreditTransaction.related_job_id == job_id))  # type: ignore[arg-type]
        )
        return bool(result.scalar())

    async def exists_for_payment_event(self, payment_event_id: UUID) -> bool:
        """Check if a ledger entry already references this payment event."""
        result = await self.session.execute(
            select(
                exists().where(CreditTransaction.related_payment_event_id == payment_event_id)  # type: ignore[arg-type]
            )
        )
        return bool(result.scalar())

    async def sum_for_user(self, user_id: str) -> int:
        """Return the user's balance (sum of all amounts, 0 when empty)."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.user_id == user_id  # type: ignore[arg-type]
            )
        )
        return int(result.scalar_one())

    async def list_for_user(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> list[CreditTransaction]:
        """Retrieve a user's entries, newest first."""
        result = await self.session.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)  # type: ignore[arg-type]
            .order_by(CreditTransaction.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_purchase_by_payment_intent(
        self, payment_intent_id: str
    ) -> CreditTransaction | None:
        """Find the purchase entry created for a Stripe payment intent."""
        result = await self.session.execute(
            select(CreditTransaction)
            .where(
                CreditTransaction.stripe_payment_intent_id == payment_intent_id,  # type: ignore[arg-type]
                CreditTransaction.type == CreditTransactionType.PURCHASE,  # type: ignore[arg-type]
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def exists_purchase_for_checkout_session(self, checkout_session_id: str) -> bool:
        """Check if the webhook already credited a checkout session."""
        result = await self.session.execute(
            select(
                exists().where(
                    CreditTransaction.stripe_checkout_session_id == checkout_session_id,  # type: ignore[arg-type]
                    CreditTransaction.type == CreditTransactionType.PURCHASE,  # type: ignore[arg-type]
                )
            )
        )
        return bool(result.scalar())

    async def exists_refund_for_payment_intent(self, payment_intent_id: str) -> bool:
        """Check if a refund was already booked against a Stripe payment intent."""
        result = await self.session.execute(
            select(
                exists().where(
                    CreditTransaction.stripe_payment_intent_id == payment_intent_id,  # type: ignore[arg-type]
                    CreditTransaction.type == CreditTransactionType.REFUND,  # type: ignore[arg-type]
                )
            )
        )
        return bool(result.scalar())

    async def stats_for_user(self, user_id: str) -> LedgerStats:
        """Aggregate balance and per-type totals for a user in one query."""
        amount = CreditTransaction.amount
        kind = CreditTransaction.type
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(amount), 0),
                func.coalesce(
                    func.sum(case((kind == CreditTransactionType.PURCHASE, amount), else_=0)), 0
                ),
                func.coalesce(
                    func.sum(case((kind == CreditTransactionType.USAGE, -amount), else_=0)), 0
                ),
                func.coalesce(
                    func.sum(case((kind == CreditTransactionType.REFUND, -amount), else_=0)), 0
                ),
                func.max(CreditTransaction.created_at),
            ).where(CreditTransaction.user_id == user_id)  # type: ignore[arg-type]
        )
        balance, purchased, consumed, refunded, last_at = result.one()
        return LedgerStats(
            balance=int(balance),
            total_purchased=int(purchased),
            total_consumed=int(consumed),
            total_refunded=int(refunded),
            last_transaction_at=last_at,
        )
