"""Payment event processor: verify, deduplicate, dispatch, record.

Workflow for one webhook delivery:
1. Verify the signature. Failure -> 400, nothing stored, no handler runs.
2. Claim the event id in its own transaction. The unique external_event_id
   decides which delivery owns the event:
   - new id: this delivery owns it
   - already processed: acknowledge as duplicate (200)
   - failed, or received with a stale claim: take it over and reprocess
   - received and recently claimed: another delivery is working on it (200)
3. Dispatch to the handler for the event type. Unknown types are logged and
   still marked processed.
4. Commit the handler's effects together with the processed flag. If the
   handler raises, everything it did rolls back, the event is marked failed in
   a separate transaction, and the caller answers 500 so the provider retries.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

from renzo.core.timezone import utc_now
from renzo.models.payment_event import PaymentEvent, PaymentEventStatus
from renzo.services.cache import QueryCache, credit_keys
from renzo.services.exceptions import InvalidSignatureError
from renzo.services.payments.handlers import EVENT_HANDLERS, EventContext, Handler
from renzo.services.payments.stripe_client import StripePaymentClient
from renzo.uow import UnitOfWork

logger = structlog.get_logger(__name__)

UowFactory = Callable[[], Awaitable[UnitOfWork]]


class ClaimOutcome(str, Enum):
    """Result of trying to take ownership of an event id."""

    NEW = "new"
    RETRY = "retry"
    DUPLICATE = "duplicate"
    IN_PROGRESS = "in_progress"


@dataclass
class WebhookResult:
    """What to answer the webhook sender."""

    accepted: bool
    http_status: int
    body: dict = field(default_factory=dict)
    duplicate: bool = False


class PaymentEventProcessor:
    """Idempotent processing of payment provider webhooks."""

    def __init__(
        self,
        uow_factory: UowFactory,
        payment_client: StripePaymentClient,
        *,
        claim_ttl_seconds: int = 300,
        cache: Optional[QueryCache] = None,
        handlers: Optional[dict[str, Handler]] = None,
    ):
        self.uow_factory = uow_factory
        self.payment_client = payment_client
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)
        self.cache = cache
        self.handlers = handlers if handlers is not None else EVENT_HANDLERS

    async def handle_webhook(self, raw_body: bytes, signature_header: str | None) -> WebhookResult:
        """Process one webhook delivery end to end.

        Raises:
            ValueError: The body verified but is not a usable event (no id or type)
        """
        try:
            event = self.payment_client.verify_webhook_signature(raw_body, signature_header)
        except InvalidSignatureError as e:
            logger.warning("webhook.signature_invalid", error=str(e))
            return WebhookResult(accepted=False, http_status=400, body={"error": str(e)})

        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise ValueError("Webhook event is missing id or type")

        logger.info("webhook.received", event_id=event_id, event_type=event_type)
        return await self.process_event(event)

    async def process_event(self, event: dict) -> WebhookResult:
        """Claim, dispatch and record an already verified event.

        Also used to replay stored payloads of failed events.
        """
        event_id = event["id"]
        event_type = event["type"]

        outcome, payment_event = await self._claim(event_id, event_type, event)

        if outcome == ClaimOutcome.DUPLICATE:
            logger.info("webhook.duplicate", event_id=event_id, event_type=event_type)
            return WebhookResult(
                accepted=True, http_status=200, body={"received": True}, duplicate=True
            )

        if outcome == ClaimOutcome.IN_PROGRESS:
            logger.info("webhook.in_progress_elsewhere", event_id=event_id)
            return WebhookResult(
                accepted=True, http_status=200, body={"received": True}, duplicate=True
            )

        if outcome == ClaimOutcome.RETRY:
            logger.info(
                "webhook.reprocessing",
                event_id=event_id,
                attempt=payment_event.attempts + 1,
            )

        return await self._dispatch(payment_event, event)

    async def _claim(
        self, event_id: str, event_type: str, event: dict
    ) -> tuple[ClaimOutcome, PaymentEvent]:
        async with await self.uow_factory() as uow:
            created = await uow.payment_events.claim(event_id, event_type, event)
            payment_event = await uow.payment_events.get_by_external_id(event_id)
            if payment_event is None:
                raise RuntimeError(f"Payment event {event_id} vanished after claim")

            if created:
                return ClaimOutcome.NEW, payment_event

            if payment_event.status == PaymentEventStatus.PROCESSED:
                return ClaimOutcome.DUPLICATE, payment_event

            stale_before = utc_now() - self.claim_ttl
            if await uow.payment_events.reclaim(payment_event.id, stale_before):
                return ClaimOutcome.RETRY, payment_event

            return ClaimOutcome.IN_PROGRESS, payment_event

    async def _dispatch(self, payment_event: PaymentEvent, event: dict) -> WebhookResult:
        event_id = payment_event.external_event_id
        event_type = payment_event.event_type
        handler = self.handlers.get(event_type)
        data_object = (event.get("data") or {}).get("object") or {}
        ctx = EventContext(
            payment_event_id=payment_event.id,
            external_event_id=event_id,
            event_type=event_type,
            data_object=data_object,
        )

        affected_user: Optional[str] = None
        try:
            async with await self.uow_factory() as uow:
                if handler is None:
                    logger.info("webhook.unhandled_type", event_id=event_id, event_type=event_type)
                else:
                    affected_user = await handler(uow, ctx)
                await uow.payment_events.mark_processed(payment_event.id)
        except Exception as e:
            logger.error(
                "webhook.handler_failed",
                event_id=event_id,
                event_type=event_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            async with await self.uow_factory() as uow:
                await uow.payment_events.mark_failed(
                    payment_event.id, f"{type(e).__name__}: {e}"
                )
            return WebhookResult(
                accepted=False,
                http_status=500,
                body={"error": "Webhook handler failed"},
            )

        if affected_user and self.cache is not None:
            self.cache.invalidate(*credit_keys(affected_user))

        logger.info("webhook.processed", event_id=event_id, event_type=event_type)
        return WebhookResult(accepted=True, http_status=200, body={"received": True})
