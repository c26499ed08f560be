"""Tests for the in-process query cache."""

from renzo.services.cache import (
    QueryCache,
    credit_balance_key,
    credit_keys,
    credit_transactions_key,
    project_images_key,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = QueryCache(ttl_seconds=30, clock=clock)
    cache.set(credit_balance_key("user-1"), 7)

    clock.now += 29
    assert cache.get(credit_balance_key("user-1")) == 7

    clock.now += 1
    assert cache.get(credit_balance_key("user-1")) is None


def test_invalidate_by_prefix():
    cache = QueryCache()
    cache.set(credit_transactions_key("user-1") + (50, 0), ["page-1"])
    cache.set(credit_transactions_key("user-1") + (50, 50), ["page-2"])
    cache.set(credit_transactions_key("user-2") + (50, 0), ["other"])

    removed = cache.invalidate(credit_transactions_key("user-1"))

    assert removed == 2
    assert credit_transactions_key("user-2") + (50, 0) in cache


def test_credit_keys_cover_every_ledger_view():
    cache = QueryCache()
    cache.set(credit_balance_key("user-1"), 1)
    cache.set(credit_transactions_key("user-1") + (10, 0), [])
    cache.set(project_images_key("villa") + ("user-1",), [])

    cache.invalidate(*credit_keys("user-1"))

    assert credit_balance_key("user-1") not in cache
    assert credit_transactions_key("user-1") + (10, 0) not in cache
    assert project_images_key("villa") + ("user-1",) in cache


def test_invalidate_without_match_is_noop():
    cache = QueryCache()
    cache.set(credit_balance_key("user-1"), 1)

    assert cache.invalidate(project_images_key("villa")) == 0
    assert cache.get(credit_balance_key("user-1")) == 1


def test_expired_entries_are_swept_on_write():
    clock = FakeClock()
    cache = QueryCache(ttl_seconds=1, clock=clock)
    for n in range(1000):
        cache.set(credit_balance_key(f"user-{n}"), n)

    clock.now += 100
    cache.set(credit_balance_key("late"), 1)

    assert len(cache) == 1
    assert cache.get(credit_balance_key("late")) == 1


def test_oldest_entries_evicted_at_capacity():
    cache = QueryCache(max_entries=2)
    cache.set(credit_balance_key("user-1"), 1)
    cache.set(credit_balance_key("user-2"), 2)
    cache.set(credit_balance_key("user-1"), 11)

    cache.set(credit_balance_key("user-3"), 3)

    assert len(cache) == 2
    assert credit_balance_key("user-2") not in cache
    assert cache.get(credit_balance_key("user-1")) == 11
