"""Job repository for Renzo backend.

Provides data access methods for Job entities. Status changes go through
conditional updates so that concurrent checkers cannot move a job backwards
or apply the same terminal transition twice.
"""

from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from renzo.core.timezone import utc_now
from renzo.models.job import ALLOWED_SOURCE_STATUSES, Job, JobStatus


class JobRepository:
    """Repository for Job entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: Job) -> Job:
        """Persist new job to database.

        Args:
            job: Job entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> Job | None:
        """Retrieve job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            Job if found, None otherwise
        """
        result = await self.session.execute(select(Job).where(Job.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_many(self, job_ids: Iterable[UUID]) -> list[Job]:
        """Retrieve jobs by a set of UUIDs (missing ids are skipped)."""
        ids = list(job_ids)
        if not ids:
            return []
        result = await self.session.execute(select(Job).where(Job.id.in_(ids)))  # type: ignore[attr-defined]
        return list(result.scalars().all())

    async def list_by_project(self, project_id: str, user_id: str | None = None) -> list[Job]:
        """Retrieve all jobs of a project, newest first.

        Args:
            project_id: Owning project identifier
            user_id: Restrict to jobs of this user when provided

        Returns:
            List of jobs ordered by creation time (newest first)
        """
        query = select(Job).where(Job.project_id == project_id)  # type: ignore[arg-type]
        if user_id is not None:
            query = query.where(Job.user_id == user_id)  # type: ignore[arg-type]
        result = await self.session.execute(
            query.order_by(Job.created_at.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def reserved_credits(self, user_id: str) -> int:
        """Sum the credit cost of a user's jobs that have not finished yet.

        These jobs are debited on completion, so their cost is already spoken for.
        """
        result = await self.session.execute(
            select(func.coalesce(func.sum(Job.credit_cost), 0)).where(
                Job.user_id == user_id,  # type: ignore[arg-type]
                Job.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]),  # type: ignore[attr-defined]
            )
        )
        return int(result.scalar_one())

    async def get_pollable(self, limit: int = 100) -> list[Job]:
        """Retrieve non-terminal jobs that have a provider task handle.

        Query explanation:
        - WHERE status IN ('pending', 'processing'): Only jobs that can still change
        - AND external_task_id IS NOT NULL: Nothing to ask the provider about otherwise
        - ORDER BY created_at ASC: Oldest first

        Args:
            limit: Maximum number of jobs to retrieve (default: 100)

        Returns:
            List of pollable jobs
        """
        result = await self.session.execute(
            select(Job)
            .where(
                Job.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]),  # type: ignore[attr-defined]
                Job.external_task_id.is_not(None),  # type: ignore[union-attr]
            )
            .order_by(Job.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def transition(
        self,
        job_id: UUID,
        status: JobStatus,
        *,
        output_url: str | None = None,
        error_message: str | None = None,
        external_task_id: str | None = None,
    ) -> bool:
        """Move a job to ``status`` only if it is currently in an allowed source state.

        Query:
            UPDATE image_jobs
            SET status = :status, ...
            WHERE id = :job_id AND status IN (:allowed_sources)

        Exactly one of any number of concurrent callers observes ``True`` for a
        given terminal transition. Everyone else gets ``False`` and must not
        apply side effects tied to the transition.

        Args:
            job_id: Job's unique identifier
            status: Target status (processing, completed or failed)
            output_url: Result image URL (completed only)
            error_message: Failure reason (failed only)
            external_task_id: Provider task handle, stored when given

        Returns:
            True if this call performed the transition, False otherwise

        Raises:
            ValueError: If the target status cannot be reached through a transition
        """
        if status not in ALLOWED_SOURCE_STATUSES:
            raise ValueError(f"{status.value} is not a transition target")

        now = utc_now()
        values: dict = {"status": status}
        if external_task_id:
            values["external_task_id"] = external_task_id
        if status == JobStatus.PROCESSING:
            values["processing_started_at"] = now
        elif status == JobStatus.COMPLETED:
            if not output_url:
                raise ValueError("output_url is required to complete a job")
            values["output_url"] = output_url
            values["completed_at"] = now
        else:
            values["error_message"] = (error_message or "Generation failed")[:1000]
            values["completed_at"] = now

        result = await self.session.execute(
            update(Job)
            .where(
                Job.id == job_id,  # type: ignore[arg-type]
                Job.status.in_(list(ALLOWED_SOURCE_STATUSES[status])),  # type: ignore[attr-defined]
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def record_poll_attempt(self, job_id: UUID, attempts: int) -> None:
        """Persist the monitoring counter for a job that is still in flight.

        Only non-terminal jobs are touched. The counter never decreases.
        """
        await self.session.execute(
            update(Job)
            .where(
                Job.id == job_id,  # type: ignore[arg-type]
                Job.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]),  # type: ignore[attr-defined]
                Job.poll_attempts < attempts,  # type: ignore[arg-type]
            )
            .values(poll_attempts=attempts)
            .execution_options(synchronize_session=False)
        )

    async def refresh(self, job: Job) -> Job:
        """Reload a job's columns after a conditional update."""
        await self.session.refresh(job)
        return job
