"""Job status synchronizer: drives image jobs to a terminal state by polling the provider.

One JobStatusSynchronizer is one sync session. It owns the set of tracked
jobs, a per-job attempt counter, the set of checks in flight, and the session
clock. Start a fresh instance for every session.

Cycle:
    tick immediately, then every ``interval`` seconds, awaiting all checks of a
    tick before sleeping. A job leaves the session when it reaches a terminal
    state or uses up ``max_attempts`` checks (it is then marked failed). The
    whole cycle stops once ``max_duration`` seconds have passed since the first
    tick. Jobs still in flight then stay as they are in storage and the next
    session picks them up with their persisted attempt count.

Exactly-once effects:
    The terminal transition is a conditional update in storage. Only the
    checker whose update matched debits credits and invalidates caches, so
    overlapping sessions or a manual check racing the loop cannot double-charge.
"""

import asyncio
import time
from typing import Awaitable, Callable, Iterable, Optional
from uuid import UUID

import structlog

from renzo.models.job import Job, JobStatus
from renzo.services.cache import QueryCache, credit_keys, project_images_key
from renzo.services.credits.ledger import CreditLedger
from renzo.services.exceptions import InsufficientCreditsError, JobNotFoundError
from renzo.services.image_generation.base import ImageGenerationProvider
from renzo.services.storage.result_store import ResultStore
from renzo.uow import UnitOfWork

logger = structlog.get_logger(__name__)

UowFactory = Callable[[], Awaitable[UnitOfWork]]

DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_ATTEMPTS = 180
DEFAULT_MAX_DURATION_SECONDS = 15 * 60


def timeout_message(attempts: int) -> str:
    return f"Timed out waiting for generation after {attempts} status checks"


class JobStatusSynchronizer:
    """Bounded polling session for a set of image jobs."""

    def __init__(
        self,
        uow_factory: UowFactory,
        provider: ImageGenerationProvider,
        *,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_duration: float = DEFAULT_MAX_DURATION_SECONDS,
        cache: Optional[QueryCache] = None,
        result_store: Optional[ResultStore] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.uow_factory = uow_factory
        self.provider = provider
        self.interval = interval
        self.max_attempts = max_attempts
        self.max_duration = max_duration
        self.cache = cache
        self.result_store = result_store
        self._clock = clock
        self._sleep = sleep

        self._tracked: dict[UUID, Job] = {}
        self._attempts: dict[UUID, int] = {}
        self._in_flight: set[UUID] = set()
        self._task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None
        self.exhausted = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tracked_job_ids(self) -> set[UUID]:
        return set(self._tracked)

    def attempts_for(self, job_id: UUID) -> int:
        return self._attempts.get(job_id, 0)

    def start_sync(self, jobs: Iterable[Job], interval: Optional[float] = None) -> int:
        """Track jobs and start the polling cycle if it is not running.

        Safe to call repeatedly with overlapping job sets. A job is never polled
        by two cycles of the same session. Terminal jobs and jobs without a
        provider task handle are ignored.

        Args:
            jobs: Jobs to track
            interval: Seconds between ticks (keeps the current value when omitted)

        Returns:
            Number of newly tracked jobs
        """
        if interval is not None:
            self.interval = interval

        added = 0
        for job in jobs:
            if job.is_terminal or not job.external_task_id:
                continue
            if job.id not in self._tracked:
                added += 1
                self._tracked[job.id] = job
            self._attempts.setdefault(job.id, job.poll_attempts)

        if self._tracked and not self.is_running and not self.exhausted:
            self._task = asyncio.create_task(self._run())
            logger.info(
                "job.sync.started",
                tracked=len(self._tracked),
                interval=self.interval,
                max_attempts=self.max_attempts,
            )
        elif added:
            logger.debug("job.sync.tracking", added=added, tracked=len(self._tracked))
        return added

    def stop_sync(self) -> None:
        """Cancel the polling cycle. Does nothing if it is not running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait for the polling cycle to end (after completion or stop_sync)."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()
        try:
            while self._tracked:
                elapsed = self._clock() - self._started_at
                if elapsed > self.max_duration:
                    self.exhausted = True
                    logger.warning(
                        "job.sync.duration_exhausted",
                        elapsed_seconds=round(elapsed, 1),
                        remaining_jobs=len(self._tracked),
                    )
                    break

                await self.run_tick()

                if self._tracked:
                    await self._sleep(self.interval)
        except asyncio.CancelledError:
            logger.info("job.sync.cancelled", remaining_jobs=len(self._tracked))
            raise

        logger.info("job.sync.finished", remaining_jobs=len(self._tracked))

    async def run_tick(self) -> None:
        """Check every tracked job once, concurrently, and wait for all checks."""
        jobs = [job for job_id, job in self._tracked.items() if job_id not in self._in_flight]
        if not jobs:
            return

        logger.debug("job.sync.tick", jobs=len(jobs))
        results = await asyncio.gather(*(self._poll(job) for job in jobs), return_exceptions=True)

        for job, result in zip(jobs, results):
            if isinstance(result, Exception):
                logger.error(
                    "job.sync.poll_error",
                    job_id=str(job.id),
                    error=str(result),
                    error_type=type(result).__name__,
                )

    async def _poll(self, job: Job) -> None:
        self._in_flight.add(job.id)
        try:
            attempts = self._attempts.get(job.id, 0) + 1
            self._attempts[job.id] = attempts

            try:
                current = await self.check_one(job)
            except JobNotFoundError:
                logger.warning("job.sync.job_deleted", job_id=str(job.id))
                self._drop(job.id)
                return
            except Exception as e:
                # Transport failures are retried on the next tick
                logger.warning(
                    "job.sync.check_failed",
                    job_id=str(job.id),
                    attempt=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                current = job

            if current.is_terminal:
                self._drop(job.id)
                return

            self._tracked[job.id] = current
            if attempts >= self.max_attempts:
                await self._fail_timed_out(current, attempts)
                self._drop(job.id)
                return

            async with await self.uow_factory() as uow:
                await uow.jobs.record_poll_attempt(job.id, attempts)
        finally:
            self._in_flight.discard(job.id)

    def _drop(self, job_id: UUID) -> None:
        self._tracked.pop(job_id, None)

    async def _fail_timed_out(self, job: Job, attempts: int) -> None:
        message = timeout_message(attempts)
        async with await self.uow_factory() as uow:
            await uow.jobs.record_poll_attempt(job.id, attempts)
            applied = await uow.jobs.transition(job.id, JobStatus.FAILED, error_message=message)

        if applied:
            logger.warning("job.timed_out", job_id=str(job.id), attempts=attempts)
            self._invalidate(job.project_id, job.user_id, completed=False)

    async def check_one(self, job: Job) -> Job:
        """Check a single job with the provider and apply its status.

        Terminal jobs and jobs without a task handle are returned untouched.
        A completed result is copied to permanent storage first when a result
        store is configured. Provider and storage errors propagate to the caller.

        Returns:
            The job as stored after the check

        Raises:
            ServiceError: Provider could not be reached or answered unusably,
                or the result could not be stored
            JobNotFoundError: Job no longer exists
        """
        if job.is_terminal or not job.external_task_id:
            return job

        status = await self.provider.check_status(job.external_task_id)
        output_url = status.output_url
        if status.status == JobStatus.COMPLETED and output_url and self.result_store is not None:
            output_url = await self.result_store.rehost(job, output_url)

        applied = False
        async with await self.uow_factory() as uow:
            current = await uow.jobs.get_by_id(job.id)
            if current is None:
                raise JobNotFoundError(f"Job {job.id} not found")
            if current.is_terminal:
                return current

            if status.status == JobStatus.COMPLETED:
                applied = await uow.jobs.transition(
                    current.id, JobStatus.COMPLETED, output_url=output_url
                )
                await uow.jobs.refresh(current)
                if applied:
                    await self._debit(uow, current)
            elif status.status == JobStatus.FAILED:
                applied = await uow.jobs.transition(
                    current.id, JobStatus.FAILED, error_message=status.error_message
                )
                await uow.jobs.refresh(current)
            elif status.status == JobStatus.PROCESSING and current.status == JobStatus.PENDING:
                if await uow.jobs.transition(current.id, JobStatus.PROCESSING):
                    await uow.jobs.refresh(current)

        if applied:
            logger.info(
                "job.terminal",
                job_id=str(current.id),
                status=current.status.value,
                error_message=current.error_message,
            )
            self._invalidate(
                current.project_id, current.user_id, completed=current.status == JobStatus.COMPLETED
            )
        return current

    async def _debit(self, uow: UnitOfWork, job: Job) -> None:
        try:
            await CreditLedger(uow).debit_for_job(job)
        except InsufficientCreditsError as e:
            # Completion stands; the balance is never taken below zero
            logger.warning(
                "job.debit_skipped",
                job_id=str(job.id),
                user_id=job.user_id,
                balance=e.balance,
                required=e.required,
            )

    def _invalidate(self, project_id: str, user_id: str, completed: bool) -> None:
        if self.cache is None:
            return
        keys = [project_images_key(project_id)]
        if completed:
            keys.extend(credit_keys(user_id))
        self.cache.invalidate(*keys)
