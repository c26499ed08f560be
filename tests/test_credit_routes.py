"""Integration tests for credit and checkout API endpoints.

- GET /api/credits/balance, /stats, /transactions, /packs
- POST /api/stripe/checkout
- POST /api/stripe/verify-session
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from renzo.app import app
from renzo.models import CreditTransactionType
from renzo.services.cache import QueryCache
from renzo.services.credits.ledger import CreditLedger
from renzo.services.exceptions import PaymentProviderError
from renzo.services.payments.stripe_client import CheckoutSession, CheckoutSessionStatus

USER = {"X-User-Id": "user-1"}


class FakePaymentClient:
    """Records checkout requests instead of calling Stripe."""

    def __init__(self):
        self.requests = []
        self.error: Exception | None = None
        self.sessions: dict[str, CheckoutSessionStatus] = {}

    async def create_checkout_session(self, user_id, user_email, pack, success_url, cancel_url):
        if self.error is not None:
            raise self.error
        self.requests.append(
            {
                "user_id": user_id,
                "user_email": user_email,
                "pack_id": pack.id,
                "success_url": success_url,
                "cancel_url": cancel_url,
            }
        )
        return CheckoutSession(
            session_id="cs_test_123", redirect_url="https://checkout.stripe.com/c/pay/cs_test_123"
        )

    async def retrieve_checkout_session(self, session_id):
        if session_id not in self.sessions:
            raise PaymentProviderError(
                f"Stripe session lookup failed: No such session {session_id}"
            )
        return self.sessions[session_id]


@pytest.fixture
def payment_client() -> FakePaymentClient:
    return FakePaymentClient()


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache()


@pytest_asyncio.fixture
async def test_client(uow_factory, payment_client, cache):
    """Provide AsyncClient for testing API endpoints with database access."""
    app.state.uow_factory = uow_factory
    app.state.payment_client = payment_client
    app.state.cache = cache
    app.state.settings = None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def _record(uow_factory, amount: int, kind=CreditTransactionType.ADJUSTMENT) -> None:
    async with await uow_factory() as uow:
        await CreditLedger(uow).record("user-1", amount, kind)


@pytest.mark.asyncio
class TestBalanceEndpoints:
    async def test_balance_and_stats(self, test_client, uow_factory):
        # Arrange
        await _record(uow_factory, 20, CreditTransactionType.PURCHASE)
        await _record(uow_factory, -3, CreditTransactionType.USAGE)

        # Act
        balance = await test_client.get("/api/credits/balance", headers=USER)
        stats = await test_client.get("/api/credits/stats", headers=USER)

        # Assert
        assert balance.status_code == 200
        assert balance.json() == {"balance": 17}
        assert stats.json()["total_purchased"] == 20
        assert stats.json()["total_consumed"] == 3
        assert stats.json()["total_refunded"] == 0
        assert stats.json()["last_transaction_at"] is not None

    async def test_balance_is_cached_until_invalidated(self, test_client, uow_factory, cache):
        await _record(uow_factory, 5)
        first = await test_client.get("/api/credits/balance", headers=USER)

        # Write behind the cache's back: cached value still served
        await _record(uow_factory, 5)
        cached = await test_client.get("/api/credits/balance", headers=USER)

        cache.invalidate(("credit-balance", "user-1"))
        fresh = await test_client.get("/api/credits/balance", headers=USER)

        assert first.json()["balance"] == 5
        assert cached.json()["balance"] == 5
        assert fresh.json()["balance"] == 10

    async def test_transactions_paginated_newest_first(self, test_client, uow_factory):
        for amount in (1, 2, 3):
            await _record(uow_factory, amount)

        page = await test_client.get(
            "/api/credits/transactions", params={"limit": 2, "offset": 0}, headers=USER
        )
        rest = await test_client.get(
            "/api/credits/transactions", params={"limit": 2, "offset": 2}, headers=USER
        )

        assert page.status_code == 200
        data = page.json()
        assert data["limit"] == 2
        assert len(data["transactions"]) == 2
        assert data["transactions"][0]["type"] == "adjustment"
        assert data["transactions"][0]["balance_after"] == 6
        assert [t["amount"] for t in rest.json()["transactions"]] == [1]

    async def test_transactions_limit_validated(self, test_client):
        response = await test_client.get(
            "/api/credits/transactions", params={"limit": 500}, headers=USER
        )

        assert response.status_code == 422

    async def test_requires_user(self, test_client):
        response = await test_client.get("/api/credits/balance")

        assert response.status_code == 401


@pytest.mark.asyncio
class TestPacksAndCheckout:
    async def test_packs_listed_in_display_order(self, test_client, make_pack):
        await make_pack(id="pack-50", name="50 credits", credits=50, display_order=2)
        await make_pack(id="pack-10", name="10 credits", credits=10, display_order=1)
        await make_pack(id="pack-old", name="Legacy", credits=3, is_active=False)

        response = await test_client.get("/api/credits/packs")

        assert response.status_code == 200
        assert [p["id"] for p in response.json()["packs"]] == ["pack-10", "pack-50"]

    async def test_checkout_for_active_pack(self, test_client, make_pack, payment_client):
        # Arrange
        await make_pack(id="pack-10")

        # Act
        response = await test_client.post(
            "/api/stripe/checkout",
            json={"credit_pack_id": "pack-10", "email": "agent@example.com"},
            headers=USER,
        )

        # Assert
        assert response.status_code == 200
        assert response.json() == {
            "session_id": "cs_test_123",
            "url": "https://checkout.stripe.com/c/pay/cs_test_123",
        }
        request = payment_client.requests[0]
        assert request["user_id"] == "user-1"
        assert request["pack_id"] == "pack-10"
        assert request["success_url"].endswith(
            "/dashboard/credits/success?session_id={CHECKOUT_SESSION_ID}"
        )

    async def test_checkout_for_unknown_pack_returns_404(self, test_client, make_pack):
        await make_pack(id="pack-old", is_active=False)

        response = await test_client.post(
            "/api/stripe/checkout", json={"credit_pack_id": "pack-old"}, headers=USER
        )

        assert response.status_code == 404

    async def test_checkout_provider_error_returns_502(
        self, test_client, make_pack, payment_client
    ):
        await make_pack(id="pack-10")
        payment_client.error = PaymentProviderError("Stripe checkout failed: No such price")

        response = await test_client.post(
            "/api/stripe/checkout", json={"credit_pack_id": "pack-10"}, headers=USER
        )

        assert response.status_code == 502
        assert "No such price" in response.json()["detail"]


def _session(payment_status: str = "paid", user_id: str = "user-1") -> CheckoutSessionStatus:
    return CheckoutSessionStatus(
        session_id="cs_test_123",
        payment_status=payment_status,
        user_id=user_id,
        credit_pack_id="pack-10",
    )


@pytest.mark.asyncio
class TestVerifySession:
    """Test POST /api/stripe/verify-session."""

    async def test_paid_session_before_webhook(self, test_client, make_pack, payment_client):
        await make_pack(id="pack-10", credits=10)
        payment_client.sessions["cs_test_123"] = _session()

        response = await test_client.post(
            "/api/stripe/verify-session", json={"session_id": "cs_test_123"}, headers=USER
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "session_id": "cs_test_123",
            "payment_status": "paid",
            "credits": 10,
            "credited": False,
        }

    async def test_paid_session_after_webhook(
        self, test_client, make_pack, payment_client, uow_factory
    ):
        await make_pack(id="pack-10", credits=10)
        payment_client.sessions["cs_test_123"] = _session()
        async with await uow_factory() as uow:
            await CreditLedger(uow).record(
                "user-1",
                10,
                CreditTransactionType.PURCHASE,
                credit_pack_id="pack-10",
                stripe_checkout_session_id="cs_test_123",
            )

        response = await test_client.post(
            "/api/stripe/verify-session", json={"session_id": "cs_test_123"}, headers=USER
        )

        assert response.json()["credited"] is True

    async def test_unpaid_session(self, test_client, uow_factory, payment_client):
        payment_client.sessions["cs_test_123"] = _session(payment_status="unpaid")

        response = await test_client.post(
            "/api/stripe/verify-session", json={"session_id": "cs_test_123"}, headers=USER
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["credits"] == 0
        async with await uow_factory() as uow:
            assert await CreditLedger(uow).get_balance("user-1") == 0

    async def test_foreign_session_returns_404(self, test_client, payment_client):
        payment_client.sessions["cs_test_123"] = _session(user_id="user-2")

        response = await test_client.post(
            "/api/stripe/verify-session", json={"session_id": "cs_test_123"}, headers=USER
        )

        assert response.status_code == 404

    async def test_unknown_session_returns_400(self, test_client):
        response = await test_client.post(
            "/api/stripe/verify-session", json={"session_id": "cs_missing"}, headers=USER
        )

        assert response.status_code == 400
        assert "No such session" in response.json()["detail"]

    async def test_session_id_required(self, test_client):
        response = await test_client.post("/api/stripe/verify-session", json={}, headers=USER)

        assert response.status_code == 422
