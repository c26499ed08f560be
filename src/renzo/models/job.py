"""Job entity - AI image transformation request with lifecycle status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from renzo.core.timezone import UtcDateTime, utc_now


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Source states a job may be in for each target state. Transitions only move forward.
ALLOWED_SOURCE_STATUSES: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PROCESSING: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset({JobStatus.PENDING, JobStatus.PROCESSING}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING, JobStatus.PROCESSING}),
}


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class Job(SQLModel, table=True):
    """Job tracks one image transformation handed to an external AI provider."""

    __tablename__ = "image_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    project_id: str = Field(max_length=255, index=True)
    provider: str = Field(default="nanobanana", max_length=50)
    external_task_id: Optional[str] = Field(default=None, max_length=255, index=True)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)

    transformation_type: str = Field(max_length=50)
    original_url: str
    prompt: Optional[str] = Field(default=None, max_length=2000)
    input_metadata: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    output_url: Optional[str] = Field(default=None)
    error_message: Optional[str] = Field(default=None, max_length=1000)
    credit_cost: int = Field(default=1, ge=0)
    poll_attempts: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
    processing_started_at: Optional[datetime] = Field(default=None, sa_type=UtcDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UtcDateTime)

    @property
    def is_terminal(self) -> bool:
        """True once the job is completed or failed."""
        return self.status in TERMINAL_STATUSES

    def mark_processing(self, external_task_id: str) -> None:
        """Transition from pending to processing.

        Args:
            external_task_id: Task handle returned by the AI provider

        Raises:
            InvalidStateTransition: If current status is not pending
            ValueError: If external_task_id is empty
        """
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Job must be in pending state."
            )
        if not external_task_id:
            raise ValueError("external_task_id is required")
        self.external_task_id = external_task_id
        self.processing_started_at = utc_now()
        self.status = JobStatus.PROCESSING

    def mark_completed(self, output_url: str) -> None:
        """Transition from pending/processing to completed.

        Raises:
            InvalidStateTransition: If current status is already terminal
            ValueError: If output_url is empty
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark completed from terminal state {self.status.value}."
            )
        if not output_url:
            raise ValueError("output_url is required")
        self.output_url = output_url
        self.completed_at = utc_now()
        self.status = JobStatus.COMPLETED

    def mark_failed(self, error_message: str) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.error_message = error_message[:1000]
        self.completed_at = utc_now()
        self.status = JobStatus.FAILED
