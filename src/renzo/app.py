"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from renzo.api.routes import checkout, credits, jobs, webhooks
from renzo.core import timezone  # noqa: F401
from renzo.core.config import Settings, configure_logging
from renzo.core.database import create_all_tables, setup_db_session
from renzo.services.cache import QueryCache
from renzo.services.image_generation.base import build_provider
from renzo.services.payments.processor import PaymentEventProcessor
from renzo.services.payments.stripe_client import StripePaymentClient
from renzo.services.storage.result_store import build_result_store
from renzo.uow import create_uow_factory
from renzo.workers.job_sync_worker import JobSyncScheduler

logger = structlog.get_logger()


class WorkerHandle:
    """Tracks the current task of a restartable worker."""

    def __init__(self, worker_name: str):
        self.worker_name = worker_name
        self.task: asyncio.Task | None = None
        self.restart_task: asyncio.Task | None = None
        self.restarts = 0

    async def stop(self) -> None:
        """Cancel the pending restart and the current task, and wait for both."""
        pending = [t for t in (self.restart_task, self.task) if t is not None]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


def create_resilient_worker(
    coro_func, worker_name: str, shutdown_event: asyncio.Event
) -> WorkerHandle:
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Zero-argument coroutine function running the worker loop
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Handle whose ``task`` always points at the latest incarnation
    """
    handle = WorkerHandle(worker_name)
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        # Check if shutdown was requested
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        # Check if task was cancelled (normal shutdown)
        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker stopped cleanly (unexpected for infinite loop workers)
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            handle.restarts += 1
            handle.task = asyncio.create_task(coro_func())
            handle.task.add_done_callback(on_worker_done)

        handle.restart_task = asyncio.create_task(restart_worker())

    handle.task = asyncio.create_task(coro_func())
    handle.task.add_done_callback(on_worker_done)
    return handle


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, build the database and provider clients, start
      the job sync worker (which resumes jobs left processing by a previous run)
    - Shutdown: Stop the worker, dispose of the database engine
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    engine = session_factory.kw["bind"]
    if settings.database_url.startswith("sqlite"):
        # Local development without migrations
        await create_all_tables(engine)

    uow_factory = create_uow_factory(session_factory)
    cache = QueryCache(ttl_seconds=settings.cache_ttl_seconds)
    image_provider = build_provider(settings)
    payment_client = StripePaymentClient(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        webhook_tolerance=settings.stripe_webhook_tolerance_seconds,
        checkout_ttl_minutes=settings.checkout_session_ttl_minutes,
    )
    payment_processor = PaymentEventProcessor(
        uow_factory,
        payment_client,
        claim_ttl_seconds=settings.payment_event_claim_ttl_seconds,
        cache=cache,
    )
    result_store = build_result_store(settings)
    scheduler = JobSyncScheduler(
        uow_factory, image_provider, settings, cache=cache, result_store=result_store
    )

    # Store in app.state for access in routes
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.cache = cache
    app.state.image_provider = image_provider
    app.state.result_store = result_store
    app.state.payment_client = payment_client
    app.state.payment_processor = payment_processor
    app.state.job_sync_scheduler = scheduler

    shutdown_event = asyncio.Event()
    sync_worker = create_resilient_worker(scheduler.run, "job_sync", shutdown_event)

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        ai_provider=image_provider.name,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    await sync_worker.stop()
    await scheduler.stop()

    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Renzo Immobilier Backend API",
        description="AI photo transformations for real-estate listings, paid with credits",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register API routers
    app.include_router(jobs.router)
    app.include_router(credits.router)  # prefix="/api/credits" in definition
    app.include_router(checkout.router)  # prefix="/api/stripe" in definition
    app.include_router(webhooks.router, prefix="/webhook", tags=["webhooks"])

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
