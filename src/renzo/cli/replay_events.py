"""CLI command for replaying payment events whose handler failed.

Stored payloads are re-dispatched through the same claim/dispatch/record path
as live webhooks, minus signature verification (the payload was verified when
it was first received). Events already processed are reported as duplicates
and left alone.

Usage:
    python -m renzo.cli.replay_events [OPTIONS]

Examples:
    # Replay up to 50 failed events, oldest first
    python -m renzo.cli.replay_events

    # Replay one specific Stripe event
    python -m renzo.cli.replay_events --event-id evt_1P2x3y4z

    # Show what would be replayed
    python -m renzo.cli.replay_events --dry-run
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from renzo.core import timezone  # noqa: F401
from renzo.core.config import Settings, configure_logging
from renzo.core.database import setup_db_session
from renzo.services.payments.processor import PaymentEventProcessor
from renzo.services.payments.stripe_client import StripePaymentClient
from renzo.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Replay payment events whose processing failed")

    parser.add_argument(
        "--event-id",
        type=str,
        help="Replay a single event by its Stripe event id",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of failed events to replay (default: 50)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the events without replaying them",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (all replayed), 1 (error), 2 (some events failed again)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        async with await uow_factory() as uow:
            if args.event_id:
                event = await uow.payment_events.get_by_external_id(args.event_id)
                if event is None:
                    logger.error("replay_events.not_found", event_id=args.event_id)
                    return 1
                events = [event]
            else:
                events = await uow.payment_events.list_failed(limit=args.limit)

        logger.info("replay_events.loaded", event_count=len(events), dry_run=args.dry_run)

        if args.dry_run:
            for event in events:
                logger.info(
                    "replay_events.dry_run_event",
                    event_id=event.external_event_id,
                    event_type=event.event_type,
                    status=event.status.value,
                    attempts=event.attempts,
                    error_detail=event.error_detail,
                )
            logger.info(
                "replay_events.dry_run_complete", message="DRY RUN COMPLETE - No changes made"
            )
            return 0

        processor = PaymentEventProcessor(
            uow_factory,
            StripePaymentClient(
                secret_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
            ),
            claim_ttl_seconds=settings.payment_event_claim_ttl_seconds,
        )

        failed = 0
        for event in events:
            result = await processor.process_event(event.raw_payload)
            if not result.accepted:
                failed += 1
            logger.info(
                "replay_events.replayed",
                event_id=event.external_event_id,
                http_status=result.http_status,
                duplicate=result.duplicate,
            )

        logger.info("replay_events.complete", replayed=len(events) - failed, failed=failed)
        return 2 if failed else 0

    except KeyboardInterrupt:
        logger.warning("replay_events.interrupted", message="Replay interrupted by user")
        return 2

    except Exception as e:
        logger.error("replay_events.fatal_error", error=str(e), exc_info=True)
        return 1


def main() -> int:
    """Synchronous wrapper for async main."""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
