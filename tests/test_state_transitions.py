"""State transition tests for the Job model and its repository.

Tests focus on validating the job lifecycle state machine:
- Valid transitions between states
- Invalid transitions are rejected with clear error messages
- Terminal states are absorbing, in memory and in storage
"""

import pytest

from renzo.models.job import InvalidStateTransition, Job, JobStatus


def _job(status: JobStatus = JobStatus.PENDING) -> Job:
    return Job(
        user_id="user-1",
        project_id="project-1",
        transformation_type="renovation",
        original_url="https://cdn.example.com/photos/kitchen.jpg",
        status=status,
    )


def test_valid_state_transitions():
    """Happy path: pending → processing → completed."""
    job = _job()

    job.mark_processing("task-42")
    assert job.status == JobStatus.PROCESSING
    assert job.external_task_id == "task-42"
    assert job.processing_started_at is not None

    job.mark_completed("https://cdn.example.com/results/kitchen.jpg")
    assert job.status == JobStatus.COMPLETED
    assert job.output_url == "https://cdn.example.com/results/kitchen.jpg"
    assert job.completed_at is not None
    assert job.is_terminal


def test_failed_reachable_from_non_terminal_states():
    """Failed is reachable from pending and from processing."""
    for status in (JobStatus.PENDING, JobStatus.PROCESSING):
        job = _job(status)
        job.mark_failed("Generation failed")
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Generation failed"


def test_terminal_states_are_absorbing():
    """No transition leaves completed or failed."""
    done = _job(JobStatus.COMPLETED)
    with pytest.raises(InvalidStateTransition, match="terminal state completed"):
        done.mark_failed("late failure")
    with pytest.raises(InvalidStateTransition, match="terminal state completed"):
        done.mark_completed("https://cdn.example.com/other.jpg")

    broken = _job(JobStatus.FAILED)
    with pytest.raises(InvalidStateTransition, match="terminal state failed"):
        broken.mark_completed("https://cdn.example.com/late.jpg")


def test_mark_processing_requires_pending():
    job = _job(JobStatus.PROCESSING)
    with pytest.raises(InvalidStateTransition, match="Job must be in pending state"):
        job.mark_processing("task-2")


def test_completion_requires_output_url():
    job = _job(JobStatus.PROCESSING)
    with pytest.raises(ValueError, match="output_url is required"):
        job.mark_completed("")
    assert job.status == JobStatus.PROCESSING


def test_error_message_is_truncated():
    job = _job(JobStatus.PROCESSING)
    job.mark_failed("x" * 5000)
    assert len(job.error_message) == 1000


class TestConditionalTransition:
    """Transitions applied in storage through JobRepository.transition."""

    @pytest.mark.asyncio
    async def test_transition_applies_once(self, make_job, uow_factory):
        """Only the first completion matches; the second sees a terminal job."""
        # Arrange
        job = await make_job()

        # Act
        async with await uow_factory() as uow:
            first = await uow.jobs.transition(
                job.id, JobStatus.COMPLETED, output_url="https://cdn.example.com/a.jpg"
            )
        async with await uow_factory() as uow:
            second = await uow.jobs.transition(
                job.id, JobStatus.COMPLETED, output_url="https://cdn.example.com/b.jpg"
            )

        # Assert
        assert first is True
        assert second is False
        async with await uow_factory() as uow:
            stored = await uow.jobs.get_by_id(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.output_url == "https://cdn.example.com/a.jpg"

    @pytest.mark.asyncio
    async def test_failed_job_cannot_complete(self, make_job, uow_factory):
        job = await make_job(status=JobStatus.FAILED, error_message="Generation failed")

        async with await uow_factory() as uow:
            applied = await uow.jobs.transition(
                job.id, JobStatus.COMPLETED, output_url="https://cdn.example.com/a.jpg"
            )

        assert applied is False
        async with await uow_factory() as uow:
            stored = await uow.jobs.get_by_id(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.output_url is None

    @pytest.mark.asyncio
    async def test_processing_never_moves_back_to_pending_or_processing(
        self, make_job, uow_factory
    ):
        job = await make_job(status=JobStatus.PROCESSING)

        async with await uow_factory() as uow:
            assert await uow.jobs.transition(job.id, JobStatus.PROCESSING) is False
            with pytest.raises(ValueError, match="not a transition target"):
                await uow.jobs.transition(job.id, JobStatus.PENDING)

    @pytest.mark.asyncio
    async def test_pending_to_processing_stores_task_handle(self, make_job, uow_factory):
        job = await make_job(status=JobStatus.PENDING, external_task_id=None)

        async with await uow_factory() as uow:
            applied = await uow.jobs.transition(
                job.id, JobStatus.PROCESSING, external_task_id="task-99"
            )

        assert applied is True
        async with await uow_factory() as uow:
            stored = await uow.jobs.get_by_id(job.id)
        assert stored.status == JobStatus.PROCESSING
        assert stored.external_task_id == "task-99"
        assert stored.processing_started_at is not None

    @pytest.mark.asyncio
    async def test_failure_without_message_gets_default(self, make_job, uow_factory):
        job = await make_job()

        async with await uow_factory() as uow:
            await uow.jobs.transition(job.id, JobStatus.FAILED)
            stored = await uow.jobs.get_by_id(job.id)

        assert stored.status == JobStatus.FAILED
        assert stored.error_message == "Generation failed"
        assert stored.completed_at is not None
