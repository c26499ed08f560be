"""Tests for the sync_jobs and replay_events commands.

The commands build their own session factory from settings; the tests patch
it to the per-test database.
"""

import pytest
from conftest import completed

from renzo.cli import replay_events, sync_jobs
from renzo.models import JobStatus, PaymentEventStatus
from renzo.services.credits.ledger import CreditLedger


@pytest.fixture
def cli_database(monkeypatch, session_factory):
    """Point both commands at the test database."""
    for module in (sync_jobs, replay_events):
        monkeypatch.setattr(module, "setup_db_session", lambda *args, **kwargs: session_factory)
    return session_factory


def _checkout_payload(event_id: str, pack_id: str = "pack-10") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_cli",
                "payment_status": "paid",
                "payment_intent": "pi_cli",
                "metadata": {"userId": "user-1", "creditPackId": pack_id},
            }
        },
    }


async def _failed_event(uow_factory, event_id: str, pack_id: str = "pack-10"):
    payload = _checkout_payload(event_id, pack_id)
    async with await uow_factory() as uow:
        await uow.payment_events.claim(event_id, payload["type"], payload)
        event = await uow.payment_events.get_by_external_id(event_id)
    async with await uow_factory() as uow:
        await uow.payment_events.mark_failed(event.id, "CreditPackNotFoundError: pack-10")
    return event


class TestSyncJobsCommand:
    @pytest.mark.asyncio
    async def test_dry_run_leaves_jobs_alone(self, cli_database, make_job, provider, monkeypatch):
        await make_job()
        monkeypatch.setattr(sync_jobs, "build_provider", lambda settings: provider)

        exit_code = await sync_jobs.async_main(["--dry-run"])

        assert exit_code == 0
        assert provider.calls == {}

    @pytest.mark.asyncio
    async def test_syncs_unfinished_jobs(
        self, cli_database, make_job, provider, monkeypatch, uow_factory
    ):
        # Arrange
        job = await make_job()
        provider.script("task-1", completed())
        monkeypatch.setattr(sync_jobs, "build_provider", lambda settings: provider)

        # Act
        exit_code = await sync_jobs.async_main(["--interval", "0", "--max-attempts", "3"])

        # Assert
        assert exit_code == 0
        async with await uow_factory() as uow:
            assert (await uow.jobs.get_by_id(job.id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, cli_database, provider, monkeypatch):
        monkeypatch.setattr(sync_jobs, "build_provider", lambda settings: provider)

        assert await sync_jobs.async_main([]) == 0

    def test_parse_args(self):
        args = sync_jobs.parse_args(["--interval", "2.5", "--limit", "10", "-v"])

        assert args.interval == 2.5
        assert args.limit == 10
        assert args.verbose is True


class TestReplayEventsCommand:
    @pytest.mark.asyncio
    async def test_replays_failed_events(self, cli_database, uow_factory, make_pack):
        # Arrange: event failed because the pack was missing, pack now exists
        await _failed_event(uow_factory, "evt_cli_1")
        await make_pack(credits=10)

        # Act
        exit_code = await replay_events.async_main([])

        # Assert
        assert exit_code == 0
        async with await uow_factory() as uow:
            event = await uow.payment_events.get_by_external_id("evt_cli_1")
            balance = await CreditLedger(uow).get_balance("user-1")
        assert event.status == PaymentEventStatus.PROCESSED
        assert balance == 10

    @pytest.mark.asyncio
    async def test_replay_that_fails_again(self, cli_database, uow_factory):
        await _failed_event(uow_factory, "evt_cli_2", pack_id="pack-gone")

        exit_code = await replay_events.async_main(["--event-id", "evt_cli_2"])

        assert exit_code == 2
        async with await uow_factory() as uow:
            event = await uow.payment_events.get_by_external_id("evt_cli_2")
        assert event.status == PaymentEventStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_event_id(self, cli_database):
        assert await replay_events.async_main(["--event-id", "evt_missing"]) == 1

    @pytest.mark.asyncio
    async def test_dry_run(self, cli_database, uow_factory):
        await _failed_event(uow_factory, "evt_cli_3")

        assert await replay_events.async_main(["--dry-run"]) == 0

        async with await uow_factory() as uow:
            event = await uow.payment_events.get_by_external_id("evt_cli_3")
        assert event.status == PaymentEventStatus.FAILED
