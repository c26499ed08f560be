"""Stripe client for checkout sessions (create and look up) and webhook verification."""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import stripe
import structlog

from renzo.models.credit_pack import CreditPack
from renzo.services.exceptions import InvalidSignatureError, PaymentProviderError
from renzo.services.payments.stripe_signature import validate_stripe_signature

logger = structlog.get_logger(__name__)


@dataclass
class CheckoutSession:
    """Hosted checkout page created for a credit pack purchase."""

    session_id: str
    redirect_url: str


@dataclass
class CheckoutSessionStatus:
    """Payment state of an existing checkout session."""

    session_id: str
    payment_status: str
    user_id: str | None
    credit_pack_id: str | None


class StripePaymentClient:
    """Thin wrapper over the Stripe SDK.

    The SDK is synchronous, so API calls run in a worker thread.
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        *,
        webhook_tolerance: int = 300,
        checkout_ttl_minutes: int = 30,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance
        self.checkout_ttl_minutes = checkout_ttl_minutes

    async def create_checkout_session(
        self,
        user_id: str,
        user_email: str | None,
        pack: CreditPack,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Create a one-off payment checkout for a credit pack.

        The user and pack ids travel in the session metadata and come back in
        the ``checkout.session.completed`` webhook.

        Raises:
            PaymentProviderError: If Stripe rejects the request
        """
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=self.checkout_ttl_minutes)
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{"price": pack.stripe_price_id, "quantity": 1}],
            "client_reference_id": user_id,
            "metadata": {"userId": user_id, "creditPackId": pack.id},
            "success_url": success_url,
            "cancel_url": cancel_url,
            "allow_promotion_codes": True,
            "expires_at": int(expires_at.timestamp()),
        }
        if user_email:
            params["customer_email"] = user_email

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create, api_key=self.secret_key, **params
            )
        except stripe.StripeError as e:
            logger.error("checkout.create_failed", error=str(e), error_type=type(e).__name__)
            raise PaymentProviderError(f"Stripe checkout failed: {e}") from e

        logger.info("checkout.created", session_id=session.id, user_id=user_id, pack_id=pack.id)
        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionStatus:
        """Fetch a checkout session to report whether it was paid.

        Raises:
            PaymentProviderError: If Stripe does not know the session or fails
        """
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve, session_id, api_key=self.secret_key
            )
        except stripe.StripeError as e:
            logger.warning(
                "checkout.retrieve_failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentProviderError(f"Stripe session lookup failed: {e}") from e

        metadata = session.metadata or {}
        return CheckoutSessionStatus(
            session_id=session.id,
            payment_status=session.payment_status,
            user_id=metadata.get("userId") or session.client_reference_id,
            credit_pack_id=metadata.get("creditPackId"),
        )

    def verify_webhook_signature(self, raw_body: bytes, signature_header: str | None) -> dict:
        """Verify a webhook and return the parsed event.

        The body is parsed only after the signature verifies.

        Raises:
            InvalidSignatureError: Missing or invalid signature
            ValueError: Verified body is not a JSON object
        """
        if not signature_header:
            raise InvalidSignatureError("Missing Stripe-Signature header")

        if not validate_stripe_signature(
            raw_body, signature_header, self.webhook_secret, self.webhook_tolerance
        ):
            raise InvalidSignatureError("Invalid webhook signature")

        event = json.loads(raw_body)
        if not isinstance(event, dict):
            raise ValueError("Webhook payload is not a JSON object")
        return event
