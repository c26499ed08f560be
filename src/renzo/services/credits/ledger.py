"""Credit ledger: append-only credit movements with a derived balance.

The balance is never stored. It is the sum of a user's entries. Each entry
carries ``balance_after`` for display, computed while the user's ledger is
locked. Job debits and payment credits are deduplicated by unique references,
so replaying the same job or payment event never writes a second entry.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog

from renzo.models.credit_transaction import CreditTransaction, CreditTransactionType
from renzo.models.job import Job
from renzo.services.exceptions import InsufficientCreditsError
from renzo.uow import UnitOfWork

logger = structlog.get_logger(__name__)

MAX_CREDIT_ADDITION = 10_000

# Entry types allowed to take the balance below zero
NEGATIVE_BALANCE_ALLOWED = frozenset({CreditTransactionType.REFUND})


@dataclass
class CreditStats:
    """Summary of a user's ledger."""

    balance: int
    total_purchased: int
    total_consumed: int
    total_refunded: int
    last_transaction_at: datetime | None


class CreditLedger:
    """Ledger operations bound to one unit of work.

    All writes happen inside the caller's transaction and commit with it.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    async def get_balance(self, user_id: str) -> int:
        """Current balance (sum of all entries)."""
        return await self.uow.credit_transactions.sum_for_user(user_id)

    async def get_available(self, user_id: str) -> int:
        """Balance minus the cost of the user's unfinished jobs."""
        balance = await self.get_balance(user_id)
        return balance - await self.uow.jobs.reserved_credits(user_id)

    async def ensure_available(self, user_id: str, required: int) -> int:
        """Lock the user's ledger and check that a new job of this cost fits.

        The lock is held until the caller's transaction ends, so the job the
        caller inserts next is counted by any concurrent check.

        Returns:
            Credits available before the new job

        Raises:
            InsufficientCreditsError: If available credits do not cover the cost
        """
        await self.uow.credit_transactions.lock_user(user_id)
        available = await self.get_available(user_id)
        if available < required:
            raise InsufficientCreditsError(balance=available, required=required)
        return available

    async def get_stats(self, user_id: str) -> CreditStats:
        stats = await self.uow.credit_transactions.stats_for_user(user_id)
        return CreditStats(**stats._asdict())

    async def list_transactions(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> list[CreditTransaction]:
        return await self.uow.credit_transactions.list_for_user(user_id, limit, offset)

    async def record(
        self,
        user_id: str,
        amount: int,
        type: CreditTransactionType,
        *,
        related_job_id: UUID | None = None,
        related_payment_event_id: UUID | None = None,
        description: str | None = None,
        credit_pack_id: str | None = None,
        stripe_payment_intent_id: str | None = None,
        stripe_checkout_session_id: str | None = None,
    ) -> CreditTransaction | None:
        """Append one entry for a user.

        Args:
            user_id: Ledger owner
            amount: Signed credit delta (non-zero)
            type: Entry kind
            related_job_id: Job this entry pays for (at most one entry per job)
            related_payment_event_id: Payment event this entry books (at most one per event)

        Returns:
            The written entry, or None if the job or payment event was already booked

        Raises:
            ValueError: If amount is zero, both references are given, or the
                addition exceeds the per-entry limit
            InsufficientCreditsError: If the entry would make the balance negative
        """
        if amount == 0:
            raise ValueError("Ledger entries must move a non-zero amount")
        if related_job_id is not None and related_payment_event_id is not None:
            raise ValueError("An entry references a job or a payment event, not both")
        if amount > MAX_CREDIT_ADDITION:
            raise ValueError(f"Cannot add more than {MAX_CREDIT_ADDITION} credits at once")

        repo = self.uow.credit_transactions
        await repo.lock_user(user_id)

        balance = await repo.sum_for_user(user_id)
        balance_after = balance + amount
        if balance_after < 0 and type not in NEGATIVE_BALANCE_ALLOWED:
            raise InsufficientCreditsError(balance=balance, required=-amount)

        entry = CreditTransaction(
            user_id=user_id,
            amount=amount,
            type=type,
            related_job_id=related_job_id,
            related_payment_event_id=related_payment_event_id,
            balance_after=balance_after,
            description=description,
            credit_pack_id=credit_pack_id,
            stripe_payment_intent_id=stripe_payment_intent_id,
            stripe_checkout_session_id=stripe_checkout_session_id,
        )
        if not await repo.insert_unique(entry):
            logger.info(
                "ledger.duplicate_reference",
                user_id=user_id,
                related_job_id=str(related_job_id) if related_job_id else None,
                related_payment_event_id=(
                    str(related_payment_event_id) if related_payment_event_id else None
                ),
            )
            return None

        logger.info(
            "ledger.entry_recorded",
            user_id=user_id,
            amount=amount,
            type=type.value,
            balance_after=balance_after,
        )
        return entry

    async def debit_for_job(self, job: Job) -> CreditTransaction | None:
        """Charge a completed job's credit cost, at most once per job.

        Returns:
            The usage entry, or None if the job was already charged or is free
        """
        if job.credit_cost <= 0:
            return None
        if await self.uow.credit_transactions.exists_for_job(job.id):
            logger.info("ledger.job_already_debited", job_id=str(job.id))
            return None
        return await self.record(
            job.user_id,
            -job.credit_cost,
            CreditTransactionType.USAGE,
            related_job_id=job.id,
            description=f"Image transformation ({job.transformation_type})",
        )

    async def credit_purchase(
        self,
        user_id: str,
        credits: int,
        *,
        payment_event_id: UUID,
        credit_pack_id: str | None = None,
        stripe_payment_intent_id: str | None = None,
        stripe_checkout_session_id: str | None = None,
        description: str | None = None,
    ) -> CreditTransaction | None:
        """Add purchased credits, at most once per payment event."""
        if credits <= 0:
            raise ValueError("Purchased credits must be positive")
        if await self.uow.credit_transactions.exists_for_payment_event(payment_event_id):
            logger.info("ledger.payment_already_credited", payment_event_id=str(payment_event_id))
            return None
        return await self.record(
            user_id,
            credits,
            CreditTransactionType.PURCHASE,
            related_payment_event_id=payment_event_id,
            credit_pack_id=credit_pack_id,
            stripe_payment_intent_id=stripe_payment_intent_id,
            stripe_checkout_session_id=stripe_checkout_session_id,
            description=description,
        )

    async def refund_purchase(
        self,
        purchase: CreditTransaction,
        *,
        payment_event_id: UUID,
        description: str | None = None,
    ) -> CreditTransaction | None:
        """Claw back the credits of a refunded purchase.

        The balance may go negative: credits already spent are not given back.
        """
        if await self.uow.credit_transactions.exists_for_payment_event(payment_event_id):
            return None
        return await self.record(
            purchase.user_id,
            -purchase.amount,
            CreditTransactionType.REFUND,
            related_payment_event_id=payment_event_id,
            credit_pack_id=purchase.credit_pack_id,
            stripe_payment_intent_id=purchase.stripe_payment_intent_id,
            description=description or "Refund",
        )
