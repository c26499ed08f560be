"""CreditPack entity - purchasable bundles of credits."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from renzo.core.timezone import UtcDateTime, utc_now


class CreditPack(SQLModel, table=True):
    """CreditPack maps a Stripe price to the number of credits it grants."""

    __tablename__ = "credit_packs"  # type: ignore[assignment]

    id: str = Field(primary_key=True, max_length=64)
    name: str = Field(max_length=100)
    credits: int = Field(gt=0)
    price_cents: int = Field(ge=0)
    currency: str = Field(default="eur", max_length=3)
    stripe_price_id: str = Field(max_length=255)
    is_active: bool = Field(default=True)
    display_order: int = Field(default=0)
    popular: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
