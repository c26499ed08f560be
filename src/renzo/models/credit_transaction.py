"""CreditTransaction entity - append-only ledger of credit movements."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

from renzo.core.timezone import UtcDateTime, utc_now


class CreditTransactionType(str, Enum):
    """Kind of ledger entry."""

    USAGE = "usage"
    PURCHASE = "purchase"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class CreditTransaction(SQLModel, table=True):
    """CreditTransaction is one signed movement of credits for a user.

    A user's balance is the sum of their amounts. A job or a payment event can
    be referenced by at most one entry.
    """

    __tablename__ = "credit_transactions"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint(
            "related_job_id IS NULL OR related_payment_event_id IS NULL",
            name="ck_credit_transactions_single_reference",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    amount: int
    type: CreditTransactionType = Field(index=True)
    related_job_id: Optional[UUID] = Field(default=None, unique=True, foreign_key="image_jobs.id")
    related_payment_event_id: Optional[UUID] = Field(
        default=None, unique=True, foreign_key="payment_events.id"
    )
    balance_after: int = Field(default=0)
    description: Optional[str] = Field(default=None, max_length=500)
    credit_pack_id: Optional[str] = Field(default=None, max_length=64)
    stripe_payment_intent_id: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_checkout_session_id: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime, index=True)
