"""Stripe webhook endpoint for payment event processing.

Status codes tell Stripe whether to retry:
    200: Event processed, or already processed (duplicate delivery)
    400: Missing or invalid signature (never retried successfully)
    500: Handler failed, the event is recorded as failed and Stripe retries
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse

from renzo.api.dependencies import get_payment_processor
from renzo.services.payments.processor import PaymentEventProcessor

logger = structlog.get_logger()
router = APIRouter()


@router.post("/payment-events")
async def receive_payment_event(
    request: Request,
    stripe_signature: Annotated[str | None, Header()] = None,
    processor: PaymentEventProcessor = Depends(get_payment_processor),
) -> JSONResponse:
    """Receive a Stripe webhook delivery.

    The raw body is passed through untouched: the signature covers the exact
    bytes Stripe sent.

    Example:
        POST /webhook/payment-events
        Stripe-Signature: t=1700000000,v1=5257a869...

        Response 200:
        {"received": true}
    """
    raw_body = await request.body()

    try:
        result = await processor.handle_webhook(raw_body, stripe_signature)
    except Exception as e:
        logger.error(
            "webhook.processing_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    return JSONResponse(status_code=result.http_status, content=result.body)
