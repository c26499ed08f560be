"""Job submission: check the balance, then hand the image to the AI provider.

Credits are only debited when a job completes. Until then the cost of every
unfinished job is held back from the balance, so a user cannot start more
work than they can pay for.
"""

from typing import Awaitable, Callable, Optional

import structlog

from renzo.models.job import Job, JobStatus
from renzo.services.cache import QueryCache, credit_keys, project_images_key
from renzo.services.credits.ledger import CreditLedger
from renzo.services.exceptions import InsufficientCreditsError, JobNotFoundError, ServiceError
from renzo.services.image_generation.base import GenerationRequest, ImageGenerationProvider
from renzo.services.image_generation.prompts import build_prompt
from renzo.services.storage.result_store import ResultStore
from renzo.uow import UnitOfWork

logger = structlog.get_logger(__name__)

UowFactory = Callable[[], Awaitable[UnitOfWork]]


async def submit_job(
    uow_factory: UowFactory,
    provider: ImageGenerationProvider,
    *,
    user_id: str,
    project_id: str,
    transformation_type: str,
    original_url: str,
    custom_prompt: Optional[str] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    credit_cost: int = 1,
    cache: Optional[QueryCache] = None,
    result_store: Optional[ResultStore] = None,
) -> Job:
    """Create a job and submit it to the AI provider.

    Outcomes:
        - provider returns a task handle -> job is processing
        - provider returns the image directly -> job is completed and debited
          (the image is re-hosted first when a result store is given)
        - provider call fails -> job is failed and the error is re-raised

    Raises:
        ValueError: Invalid transformation type or prompt
        InsufficientCreditsError: Balance minus unfinished jobs does not cover the cost
        ServiceError: Provider call failed (job is already marked failed)
    """
    prompt = build_prompt(transformation_type, custom_prompt)

    async with await uow_factory() as uow:
        await CreditLedger(uow).ensure_available(user_id, credit_cost)

        job = Job(
            user_id=user_id,
            project_id=project_id,
            provider=provider.name,
            transformation_type=transformation_type,
            original_url=original_url,
            prompt=custom_prompt,
            input_metadata={"width": width, "height": height} if width and height else None,
            credit_cost=credit_cost,
        )
        await uow.jobs.add(job)

    logger.info(
        "job.submitted",
        job_id=str(job.id),
        user_id=user_id,
        project_id=project_id,
        transformation_type=transformation_type,
        provider=provider.name,
    )

    request = GenerationRequest(prompt=prompt, image_url=original_url, width=width, height=height)
    try:
        ticket = await provider.generate(request)
    except ServiceError as e:
        async with await uow_factory() as uow:
            await uow.jobs.transition(job.id, JobStatus.FAILED, error_message=str(e))
        logger.error(
            "job.submit_failed",
            job_id=str(job.id),
            error=str(e),
            error_type=type(e).__name__,
        )
        if cache is not None:
            cache.invalidate(project_images_key(project_id))
        raise

    output_url = ticket.output_url
    if output_url and result_store is not None:
        try:
            output_url = await result_store.rehost(job, output_url)
        except ServiceError as e:
            # The job still completes, with the provider URL
            logger.warning("job.rehost_failed", job_id=str(job.id), error=str(e))

    async with await uow_factory() as uow:
        if output_url:
            if await uow.jobs.transition(
                job.id,
                JobStatus.COMPLETED,
                output_url=output_url,
                external_task_id=ticket.external_task_id,
            ):
                completed = await uow.jobs.get_by_id(job.id)
                if completed is not None:
                    try:
                        await CreditLedger(uow).debit_for_job(completed)
                    except InsufficientCreditsError as e:
                        logger.warning(
                            "job.debit_skipped",
                            job_id=str(job.id),
                            balance=e.balance,
                            required=e.required,
                        )
        else:
            await uow.jobs.transition(
                job.id, JobStatus.PROCESSING, external_task_id=ticket.external_task_id
            )
        stored = await uow.jobs.get_by_id(job.id)

    if stored is None:
        raise JobNotFoundError(f"Job {job.id} not found")

    logger.info(
        "job.provider_accepted",
        job_id=str(stored.id),
        status=stored.status.value,
        external_task_id=stored.external_task_id,
    )
    if cache is not None:
        keys = [project_images_key(project_id)]
        if stored.status == JobStatus.COMPLETED:
            keys.extend(credit_keys(user_id))
        cache.invalidate(*keys)
    return stored
