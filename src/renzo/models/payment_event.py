"""PaymentEvent entity - Stripe webhook deliveries for deduplication and replay."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from renzo.core.timezone import UtcDateTime, utc_now


class PaymentEventStatus(str, Enum):
    """Processing status of a payment event."""

    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


class PaymentEvent(SQLModel, table=True):
    """PaymentEvent records every verified webhook, keyed by the provider's event id.

    Rows are never deleted. The raw payload is kept for audit and replay.
    """

    __tablename__ = "payment_events"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    external_event_id: str = Field(max_length=255, unique=True, index=True)
    event_type: str = Field(max_length=100)
    status: PaymentEventStatus = Field(default=PaymentEventStatus.RECEIVED, index=True)
    attempts: int = Field(default=1, ge=0)
    error_detail: Optional[str] = Field(default=None, max_length=2000)
    raw_payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    received_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
    # Start of the current processing attempt
    claimed_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
    processed_at: Optional[datetime] = Field(default=None, sa_type=UtcDateTime)
