"""Credit balance and history API endpoints.

- GET /api/credits/balance - Current balance
- GET /api/credits/stats - Balance with purchase, usage and refund totals
- GET /api/credits/transactions - Paginated ledger entries, newest first
- GET /api/credits/packs - Credit packs available for purchase

Per-user reads are cached for a short time. Every ledger write invalidates
the affected user's entries.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from renzo.api.dependencies import get_cache, get_current_user_id, get_uow_factory
from renzo.services.cache import (
    QueryCache,
    credit_balance_key,
    credit_stats_key,
    credit_transactions_key,
)
from renzo.services.credits.ledger import CreditLedger

logger = structlog.get_logger()
router = APIRouter(prefix="/api/credits", tags=["credits"])


# Response Models


class BalanceResponse(BaseModel):
    """Response model for balance queries."""

    balance: int = Field(..., description="Current credit balance (may be negative after refunds)")


class StatsResponse(BaseModel):
    """Response model for ledger statistics."""

    balance: int = Field(..., description="Current credit balance")
    total_purchased: int = Field(..., description="Credits bought over the account's lifetime")
    total_consumed: int = Field(..., description="Credits spent on completed jobs")
    total_refunded: int = Field(..., description="Credits clawed back by payment refunds")
    last_transaction_at: Optional[datetime] = Field(
        default=None, description="Time of the most recent entry (UTC)"
    )


class TransactionDTO(BaseModel):
    """Data Transfer Object for ledger entries in API responses."""

    id: UUID = Field(..., description="Entry ID")
    amount: int = Field(..., description="Signed credit amount")
    type: str = Field(..., description="Entry type (usage, purchase, refund, adjustment)")
    balance_after: int = Field(..., description="Balance right after this entry")
    description: Optional[str] = Field(default=None, description="Human-readable description")
    related_job_id: Optional[UUID] = Field(default=None, description="Job that was charged")
    credit_pack_id: Optional[str] = Field(default=None, description="Pack that was purchased")
    created_at: datetime = Field(..., description="Entry time (UTC)")


class TransactionsResponse(BaseModel):
    """Response model for paginated ledger entries."""

    transactions: list[TransactionDTO] = Field(..., description="Entries, newest first")
    limit: int = Field(..., description="Page size used")
    offset: int = Field(..., description="Number of entries skipped")


class CreditPackDTO(BaseModel):
    """Data Transfer Object for purchasable credit packs."""

    id: str = Field(..., description="Pack ID, passed to checkout")
    name: str = Field(..., description="Display name")
    credits: int = Field(..., description="Credits granted by the pack")
    price_cents: int = Field(..., description="Price in the smallest currency unit")
    currency: str = Field(..., description="ISO currency code")
    popular: bool = Field(..., description="Highlighted in the pricing table")


class CreditPacksResponse(BaseModel):
    """Response model for the pack catalogue."""

    packs: list[CreditPackDTO] = Field(..., description="Active packs in display order")


# Endpoints


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    cache: QueryCache = Depends(get_cache),
) -> BalanceResponse:
    """Get the caller's current balance."""
    key = credit_balance_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    async with await uow_factory() as uow:
        balance = await CreditLedger(uow).get_balance(user_id)

    response = BalanceResponse(balance=balance)
    cache.set(key, response)
    return response


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    cache: QueryCache = Depends(get_cache),
) -> StatsResponse:
    """Get the caller's ledger statistics."""
    key = credit_stats_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    async with await uow_factory() as uow:
        stats = await CreditLedger(uow).get_stats(user_id)

    response = StatsResponse(
        balance=stats.balance,
        total_purchased=stats.total_purchased,
        total_consumed=stats.total_consumed,
        total_refunded=stats.total_refunded,
        last_transaction_at=stats.last_transaction_at,
    )
    cache.set(key, response)
    return response


@router.get("/transactions", response_model=TransactionsResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=100, description="Maximum entries to return (1-100)"),
    offset: int = Query(0, ge=0, description="Number of entries to skip"),
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    cache: QueryCache = Depends(get_cache),
) -> TransactionsResponse:
    """Get the caller's ledger entries, newest first."""
    key = credit_transactions_key(user_id) + (limit, offset)
    cached = cache.get(key)
    if cached is not None:
        return cached

    async with await uow_factory() as uow:
        entries = await CreditLedger(uow).list_transactions(user_id, limit=limit, offset=offset)

    response = TransactionsResponse(
        transactions=[
            TransactionDTO(
                id=entry.id,
                amount=entry.amount,
                type=entry.type.value,
                balance_after=entry.balance_after,
                description=entry.description,
                related_job_id=entry.related_job_id,
                credit_pack_id=entry.credit_pack_id,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
        limit=limit,
        offset=offset,
    )
    cache.set(key, response)
    return response


@router.get("/packs", response_model=CreditPacksResponse)
async def list_packs(uow_factory=Depends(get_uow_factory)) -> CreditPacksResponse:
    """List active credit packs. No authentication needed."""
    async with await uow_factory() as uow:
        packs = await uow.credit_packs.list_active()

    return CreditPacksResponse(
        packs=[
            CreditPackDTO(
                id=pack.id,
                name=pack.name,
                credits=pack.credits,
                price_cents=pack.price_cents,
                currency=pack.currency,
                popular=pack.popular,
            )
            for pack in packs
        ]
    )
