"""Background worker that keeps image jobs synchronized with the AI provider.

Every discovery interval the worker loads pollable jobs (non-terminal, with a
provider task handle) and feeds them into the current sync session. Feeding a
running session is an idempotent merge. When a session has ended, because all
its jobs settled or its time budget ran out, the next discovery starts a fresh
one. Jobs left processing by a previous run of the application are picked up
by the first discovery after startup.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from renzo.core.config import Settings
from renzo.models.job import Job
from renzo.services.cache import QueryCache
from renzo.services.image_generation.base import ImageGenerationProvider
from renzo.services.jobs.synchronizer import JobStatusSynchronizer
from renzo.services.storage.result_store import ResultStore
from renzo.uow import UnitOfWork

logger = structlog.get_logger(__name__)

ERROR_BACKOFF_SECONDS = 5


class JobSyncScheduler:
    """Owns the current sync session and starts new ones as needed."""

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        provider: ImageGenerationProvider,
        settings: Settings,
        cache: Optional[QueryCache] = None,
        result_store: Optional[ResultStore] = None,
    ):
        self.uow_factory = uow_factory
        self.provider = provider
        self.settings = settings
        self.cache = cache
        self.result_store = result_store
        self.session: Optional[JobStatusSynchronizer] = None

    def _new_session(self) -> JobStatusSynchronizer:
        return JobStatusSynchronizer(
            self.uow_factory,
            self.provider,
            interval=self.settings.poll_interval_seconds,
            max_attempts=self.settings.max_poll_attempts_per_job,
            max_duration=self.settings.max_poll_duration_seconds,
            cache=self.cache,
            result_store=self.result_store,
        )

    def track(self, jobs: Iterable[Job]) -> int:
        """Hand jobs to the running session, or to a new one if none is running.

        Returns:
            Number of jobs newly tracked
        """
        pollable = [job for job in jobs if not job.is_terminal and job.external_task_id]
        if not pollable:
            return 0
        if self.session is None or not self.session.is_running:
            self.session = self._new_session()
        return self.session.start_sync(pollable)

    async def discover_once(self) -> int:
        """Load pollable jobs from storage and track them."""
        async with await self.uow_factory() as uow:
            jobs = await uow.jobs.get_pollable(limit=self.settings.sync_batch_size)

        added = self.track(jobs)
        if added:
            logger.info("job.sync.discovered", pollable=len(jobs), newly_tracked=added)
        return added

    async def stop(self) -> None:
        """Stop the current session and wait for it to wind down."""
        if self.session is not None:
            self.session.stop_sync()
            await self.session.wait_closed()

    async def run(self) -> None:
        """Main worker loop.

        Handles CancelledError for graceful shutdown and logs-and-continues on
        any other error.
        """
        logger.info(
            "worker.started",
            worker="job_sync",
            discovery_interval=self.settings.sync_discovery_interval_seconds,
            poll_interval=self.settings.poll_interval_seconds,
        )

        try:
            while True:
                try:
                    await self.discover_once()
                    await asyncio.sleep(self.settings.sync_discovery_interval_seconds)

                except asyncio.CancelledError:
                    # Propagate cancellation for graceful shutdown
                    raise

                except Exception as e:
                    logger.error(
                        "worker.error",
                        worker="job_sync",
                        error_type=type(e).__name__,
                        error_message=str(e),
                        exc_info=True,
                    )
                    await asyncio.sleep(ERROR_BACKOFF_SECONDS)

        except asyncio.CancelledError:
            await self.stop()
            logger.info("worker.stopped", worker="job_sync")
            raise
