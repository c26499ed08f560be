"""Per-event-type handlers for verified Stripe webhook events.

Each handler runs inside the unit of work that also marks the event
processed, so its ledger writes and the processed flag commit together.
Handlers return the id of the user whose credits changed, or None.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from renzo.services.credits.ledger import CreditLedger
from renzo.services.exceptions import CreditPackNotFoundError, PurchaseNotFoundError
from renzo.uow import UnitOfWork

logger = structlog.get_logger(__name__)

PAID_STATUSES = ("paid", "no_payment_required")


@dataclass
class EventContext:
    """What a handler needs to know about the event it is processing."""

    payment_event_id: UUID
    external_event_id: str
    event_type: str
    data_object: dict


Handler = Callable[[UnitOfWork, EventContext], Awaitable[Optional[str]]]


async def handle_checkout_completed(uow: UnitOfWork, ctx: EventContext) -> Optional[str]:
    """Credit the purchased pack to the buyer.

    Raises:
        ValueError: Session metadata lacks the user or pack id
        CreditPackNotFoundError: Pack id is unknown
    """
    session = ctx.data_object
    if session.get("payment_status") not in PAID_STATUSES:
        logger.info(
            "payment.checkout_unpaid",
            event_id=ctx.external_event_id,
            payment_status=session.get("payment_status"),
        )
        return None

    metadata = session.get("metadata") or {}
    user_id = metadata.get("userId") or session.get("client_reference_id")
    pack_id = metadata.get("creditPackId")
    if not user_id or not pack_id:
        raise ValueError("Checkout session is missing userId or creditPackId metadata")

    pack = await uow.credit_packs.get_by_id(pack_id)
    if pack is None:
        raise CreditPackNotFoundError(f"Credit pack {pack_id} not found")

    entry = await CreditLedger(uow).credit_purchase(
        user_id,
        pack.credits,
        payment_event_id=ctx.payment_event_id,
        credit_pack_id=pack.id,
        stripe_payment_intent_id=session.get("payment_intent"),
        stripe_checkout_session_id=session.get("id"),
        description=f"Purchase: {pack.name}",
    )
    logger.info(
        "payment.credits_added",
        event_id=ctx.external_event_id,
        user_id=user_id,
        pack_id=pack.id,
        credits=pack.credits,
        applied=entry is not None,
    )
    return user_id


async def handle_payment_failed(uow: UnitOfWork, ctx: EventContext) -> Optional[str]:
    """Record a failed payment attempt. No ledger effect."""
    intent = ctx.data_object
    error = intent.get("last_payment_error") or {}
    logger.warning(
        "payment.intent_failed",
        event_id=ctx.external_event_id,
        payment_intent_id=intent.get("id"),
        error_code=error.get("code"),
        error_message=error.get("message"),
    )
    return None


async def handle_charge_refunded(uow: UnitOfWork, ctx: EventContext) -> Optional[str]:
    """Claw back the credits granted by the refunded purchase.

    Raises:
        ValueError: Charge has no payment intent
        PurchaseNotFoundError: No purchase was booked for the payment intent
    """
    charge = ctx.data_object
    payment_intent_id = charge.get("payment_intent")
    if not payment_intent_id:
        raise ValueError("Refunded charge has no payment_intent")

    purchase = await uow.credit_transactions.get_purchase_by_payment_intent(payment_intent_id)
    if purchase is None:
        raise PurchaseNotFoundError(f"No purchase found for payment intent {payment_intent_id}")

    if await uow.credit_transactions.exists_refund_for_payment_intent(payment_intent_id):
        logger.info(
            "payment.refund_already_applied",
            event_id=ctx.external_event_id,
            payment_intent_id=payment_intent_id,
        )
        return None

    await CreditLedger(uow).refund_purchase(
        purchase,
        payment_event_id=ctx.payment_event_id,
        description=f"Refund of charge {charge.get('id')}",
    )
    logger.info(
        "payment.refunded",
        event_id=ctx.external_event_id,
        user_id=purchase.user_id,
        credits=purchase.amount,
    )
    return purchase.user_id


EVENT_HANDLERS: dict[str, Handler] = {
    "checkout.session.completed": handle_checkout_completed,
    "payment_intent.payment_failed": handle_payment_failed,
    "charge.refunded": handle_charge_refunded,
}
