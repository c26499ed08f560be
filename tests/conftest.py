"""pytest fixtures for Renzo backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- engine: Function-scoped SQLite database (one file per test) with all tables
- session_factory / session: Sessions bound to that database
- uow_factory: Function-scoped UnitOfWork factory
- make_job / make_pack: Factories for persisted test data
- FakeProvider: Scriptable image generation provider
- sign_stripe_payload: Builds a valid Stripe-Signature header

PostgreSQL-specific behaviour (advisory locks, migrations) is covered in
test_postgres_integration.py, which starts its own testcontainer.
"""

import hashlib
import hmac
import os
import time
from collections import defaultdict
from typing import AsyncGenerator, Optional

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_renzo.db")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from renzo.core.database import create_all_tables, create_db_engine  # noqa: E402
from renzo.models import CreditPack, Job, JobStatus  # noqa: E402
from renzo.services.image_generation.base import (  # noqa: E402
    GenerationRequest,
    GenerationStatus,
    GenerationTicket,
)
from renzo.uow import create_uow_factory  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests.

    Autouse fixture ensures TZ=UTC is set before any test runs.
    This prevents timezone-dependent behavior and ensures reproducible tests.
    """
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Provide a fresh SQLite database with every table created.

    A file database (not :memory:) so that several sessions can work on it
    concurrently, like connections to a real server.
    """
    db_engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'renzo.db'}")
    await create_all_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def make_job(uow_factory):
    """Persist a job and return it.

    Defaults describe a job that was accepted by the provider and is being
    generated. Override any column through keyword arguments.
    """

    async def _make_job(**overrides) -> Job:
        values = {
            "user_id": "user-1",
            "project_id": "project-1",
            "provider": "fake",
            "transformation_type": "home_staging",
            "original_url": "https://cdn.example.com/photos/living-room.jpg",
            "status": JobStatus.PROCESSING,
            "external_task_id": "task-1",
            "credit_cost": 1,
        }
        values.update(overrides)
        job = Job(**values)
        async with await uow_factory() as uow:
            await uow.jobs.add(job)
        return job

    return _make_job


@pytest.fixture
def make_pack(uow_factory):
    """Persist a credit pack and return it."""

    async def _make_pack(**overrides) -> CreditPack:
        values = {
            "id": "pack-10",
            "name": "10 credits",
            "credits": 10,
            "price_cents": 990,
            "stripe_price_id": "price_test_10",
        }
        values.update(overrides)
        pack = CreditPack(**values)
        async with await uow_factory() as uow:
            await uow.credit_packs.add(pack)
        return pack

    return _make_pack


class FakeProvider:
    """Image generation provider driven by per-task scripts.

    ``statuses[task_id]`` is a list of GenerationStatus (or exceptions) returned
    by successive check_status calls. The last element repeats once the list
    is used up. Tasks without a script stay processing.
    """

    name = "fake"

    def __init__(self):
        self.statuses: dict[str, list] = {}
        self.calls: dict[str, int] = defaultdict(int)
        self.submitted: list[GenerationRequest] = []
        self.ticket: GenerationTicket | Exception = GenerationTicket(external_task_id="task-new")

    def script(self, task_id: str, *steps) -> None:
        self.statuses[task_id] = list(steps)

    async def generate(self, request: GenerationRequest) -> GenerationTicket:
        self.submitted.append(request)
        if isinstance(self.ticket, Exception):
            raise self.ticket
        return self.ticket

    async def check_status(self, external_task_id: str) -> GenerationStatus:
        index = self.calls[external_task_id]
        self.calls[external_task_id] += 1
        steps = self.statuses.get(external_task_id)
        if not steps:
            return GenerationStatus(status=JobStatus.PROCESSING)
        step = steps[min(index, len(steps) - 1)]
        if isinstance(step, Exception):
            raise step
        return step


def completed(url: str = "https://cdn.example.com/results/staged.jpg") -> GenerationStatus:
    return GenerationStatus(status=JobStatus.COMPLETED, output_url=url)


def failed(message: str = "Generation failed") -> GenerationStatus:
    return GenerationStatus(status=JobStatus.FAILED, error_message=message)


def processing() -> GenerationStatus:
    return GenerationStatus(status=JobStatus.PROCESSING)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


def sign_stripe_payload(
    payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None
) -> str:
    """Build a Stripe-Signature header for a payload (t=...,v1=...)."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"
