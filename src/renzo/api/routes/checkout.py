"""Stripe checkout API endpoints.

POST /api/stripe/checkout creates a hosted checkout page for a credit pack.
POST /api/stripe/verify-session tells the success page whether it was paid.
Credits are granted later, when the checkout.session.completed webhook
arrives, never by these endpoints.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from renzo.api.dependencies import (
    get_current_user_id,
    get_payment_client,
    get_settings,
    get_uow_factory,
)
from renzo.core.config import Settings
from renzo.services.exceptions import PaymentProviderError
from renzo.services.payments.handlers import PAID_STATUSES
from renzo.services.payments.stripe_client import StripePaymentClient

logger = structlog.get_logger()
router = APIRouter(prefix="/api/stripe", tags=["payments"])


class CheckoutRequest(BaseModel):
    """Request model for starting a credit pack purchase."""

    credit_pack_id: str = Field(..., description="ID of the pack to buy", min_length=1)
    email: Optional[str] = Field(
        default=None, description="Prefills the customer email on the checkout page"
    )


class CheckoutResponse(BaseModel):
    """Response model with the checkout page to redirect to."""

    session_id: str = Field(..., description="Stripe checkout session ID")
    url: str = Field(..., description="Hosted checkout page URL")


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    payment_client: StripePaymentClient = Depends(get_payment_client),
    settings: Settings = Depends(get_settings),
) -> CheckoutResponse:
    """Create a checkout session for an active credit pack.

    Raises:
        HTTPException 404: Pack does not exist or is no longer sold
        HTTPException 502: Stripe rejected the request
    """
    async with await uow_factory() as uow:
        pack = await uow.credit_packs.get_active_by_id(request.credit_pack_id)

    if pack is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Credit pack not found")

    base_url = settings.app_url.rstrip("/")
    try:
        session = await payment_client.create_checkout_session(
            user_id=user_id,
            user_email=request.email,
            pack=pack,
            success_url=f"{base_url}/dashboard/credits/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/dashboard/credits",
        )
    except PaymentProviderError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return CheckoutResponse(session_id=session.session_id, url=session.redirect_url)


class VerifySessionRequest(BaseModel):
    """Request model for the checkout success page."""

    session_id: str = Field(..., description="Stripe checkout session ID", min_length=1)


class VerifySessionResponse(BaseModel):
    """Payment state of a checkout session."""

    success: bool = Field(..., description="True once Stripe reports the session paid")
    session_id: str
    payment_status: str = Field(..., description="Stripe payment_status of the session")
    credits: int = Field(default=0, description="Credits granted by the purchased pack")
    credited: bool = Field(
        default=False, description="True once the webhook has added the credits to the ledger"
    )


@router.post("/verify-session", response_model=VerifySessionResponse)
async def verify_session(
    request: VerifySessionRequest,
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    payment_client: StripePaymentClient = Depends(get_payment_client),
) -> VerifySessionResponse:
    """Report whether a checkout session was paid.

    Read-only: credits are only ever added by the webhook, so a client
    polling this endpoint cannot grant itself credits.

    Raises:
        HTTPException 400: Stripe does not know the session
        HTTPException 404: Session belongs to another user
    """
    try:
        session = await payment_client.retrieve_checkout_session(request.session_id)
    except PaymentProviderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if session.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    if session.payment_status not in PAID_STATUSES:
        return VerifySessionResponse(
            success=False, session_id=session.session_id, payment_status=session.payment_status
        )

    async with await uow_factory() as uow:
        pack = (
            await uow.credit_packs.get_by_id(session.credit_pack_id)
            if session.credit_pack_id
            else None
        )
        credited = await uow.credit_transactions.exists_purchase_for_checkout_session(
            session.session_id
        )

    logger.info(
        "checkout.verified",
        session_id=session.session_id,
        user_id=user_id,
        credited=credited,
    )
    return VerifySessionResponse(
        success=True,
        session_id=session.session_id,
        payment_status=session.payment_status,
        credits=pack.credits if pack else 0,
        credited=credited,
    )
