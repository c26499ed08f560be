"""CLI command for synchronizing unfinished image jobs with the AI provider.

Runs one sync session in the foreground over every job that is still pending
or processing with a provider task handle, and waits until the session ends.

Usage:
    python -m renzo.cli.sync_jobs [OPTIONS]

Examples:
    # Sync all unfinished jobs with the configured interval and budgets
    python -m renzo.cli.sync_jobs

    # Faster polling, fewer checks per job
    python -m renzo.cli.sync_jobs --interval 2 --max-attempts 30

    # List the jobs that would be synchronized
    python -m renzo.cli.sync_jobs --dry-run
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from collections import Counter

import structlog

from renzo.core import timezone  # noqa: F401
from renzo.core.config import Settings, configure_logging
from renzo.core.database import setup_db_session
from renzo.services.image_generation.base import build_provider
from renzo.services.jobs.synchronizer import JobStatusSynchronizer
from renzo.services.storage.result_store import build_result_store
from renzo.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Synchronize unfinished image jobs with the AI provider")

    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between status checks (default: POLL_INTERVAL_SECONDS)",
    )

    parser.add_argument(
        "--max-attempts",
        type=int,
        help="Status checks per job before it is failed (default: MAX_POLL_ATTEMPTS_PER_JOB)",
    )

    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of jobs to load (default: SYNC_BATCH_SIZE)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the jobs without contacting the provider",
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
        Exit code: 0 (success), 1 (error), 2 (interrupted)
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
            jobs = await uow.jobs.get_pollable(limit=args.limit or settings.sync_batch_size)

        logger.info("sync_jobs.loaded", job_count=len(jobs), dry_run=args.dry_run)

        if args.dry_run:
            for job in jobs:
                logger.info(
                    "sync_jobs.dry_run_job",
                    job_id=str(job.id),
                    status=job.status.value,
                    external_task_id=job.external_task_id,
                    poll_attempts=job.poll_attempts,
                    created_at=job.created_at.isoformat(),
                )
            logger.info("sync_jobs.dry_run_complete", message="DRY RUN COMPLETE - No changes made")
            return 0

        if not jobs:
            logger.info("sync_jobs.complete", message="No unfinished jobs")
            return 0

        synchronizer = JobStatusSynchronizer(
            uow_factory,
            build_provider(settings),
            interval=(
                args.interval if args.interval is not None else settings.poll_interval_seconds
            ),
            max_attempts=args.max_attempts or settings.max_poll_attempts_per_job,
            max_duration=settings.max_poll_duration_seconds,
            result_store=build_result_store(settings),
        )
        synchronizer.start_sync(jobs)
        await synchronizer.wait_closed()

        async with await uow_factory() as uow:
            final = await uow.jobs.get_many([job.id for job in jobs])

        summary = Counter(job.status.value for job in final)
        logger.info(
            "sync_jobs.complete",
            total=len(final),
            budget_exhausted=synchronizer.exhausted,
            **dict(summary),
        )
        return 0

    except KeyboardInterrupt:
        logger.warning("sync_jobs.interrupted", message="Sync interrupted by user")
        return 2

    except Exception as e:
        logger.error("sync_jobs.fatal_error", error=str(e), exc_info=True)
        return 1


def main() -> int:
    """Synchronous wrapper for async main."""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
