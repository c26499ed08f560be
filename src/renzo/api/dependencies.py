"""FastAPI dependencies for request context and shared services.

Shared services (unit of work factory, cache, provider clients, payment
processor) are created in the application lifespan and stored on app.state.
Tests inject their own instances the same way.
"""

from typing import Annotated, Callable, Optional

from fastapi import Header, HTTPException, Request, status

from renzo.core.config import Settings
from renzo.services.cache import QueryCache
from renzo.services.image_generation.base import ImageGenerationProvider
from renzo.services.payments.processor import PaymentEventProcessor
from renzo.services.payments.stripe_client import StripePaymentClient
from renzo.services.storage.result_store import ResultStore
from renzo.uow import UnitOfWork
from renzo.workers.job_sync_worker import JobSyncScheduler


def get_settings(request: Request) -> Settings:
    """Get application settings (from app.state, or loaded from environment variables)."""
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        settings = Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars
        request.app.state.settings = settings
    return settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_cache(request: Request) -> QueryCache:
    """Get the shared query cache, creating an empty one on first use."""
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        cache = QueryCache()
        request.app.state.cache = cache
    return cache


def get_image_provider(request: Request) -> ImageGenerationProvider:
    return request.app.state.image_provider


def get_result_store(request: Request) -> Optional[ResultStore]:
    """Permanent storage for generated images, if configured."""
    return getattr(request.app.state, "result_store", None)


def get_payment_client(request: Request) -> StripePaymentClient:
    return request.app.state.payment_client


def get_payment_processor(request: Request) -> PaymentEventProcessor:
    return request.app.state.payment_processor


def get_job_sync_scheduler(request: Request) -> Optional[JobSyncScheduler]:
    """Background scheduler, if the job sync worker is running in this process."""
    return getattr(request.app.state, "job_sync_scheduler", None)


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Identify the caller from the X-User-Id header.

    Authentication happens upstream (gateway or frontend session); this
    service trusts the forwarded user id.

    Raises:
        HTTPException: 401 Unauthorized if the header is missing
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header"
        )
    return x_user_id
