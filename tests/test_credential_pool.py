"""Tests for credential selection, rotation and cooldown recovery."""
import threading

import pytest

from chat_gateway.errors import AllCredentialsExhaustedError
from chat_gateway.orchestration import CredentialPool


def make_pool(clock, count=3, cooldown=60.0):
    return CredentialPool({"openai": [f"sk-{i}" for i in range(count)]}, cooldown_seconds=cooldown, clock=clock)


def test_round_robin_across_distinct_tenants(clock):
    """N+1 new tenants use every credential once before any repeats."""
    pool = make_pool(clock, count=3)

    indexes = [pool.acquire(f"tenant-{i}", "openai").index for i in range(4)]

    assert sorted(indexes[:3]) == [0, 1, 2]
    assert indexes[3] == indexes[0]


def test_tenant_stays_on_bound_credential(clock):
    pool = make_pool(clock)
    handle = pool.acquire("t1", "openai")
    pool.report_success("t1", handle)

    pool.acquire("t2", "openai")
    pool.acquire("t3", "openai")

    assert pool.acquire("t1", "openai").index == handle.index
    assert pool.binding_for("t1", "openai") == handle.index


def test_unavailable_credential_is_skipped(clock):
    pool = make_pool(clock)
    first = pool.acquire("t1", "openai")
    pool.report_success("t1", first)
    pool.report_failure(first)

    rotated = pool.acquire("t1", "openai")

    assert rotated.index == (first.index + 1) % 3


def test_success_on_new_credential_moves_binding(clock):
    pool = make_pool(clock, count=2)
    first = pool.acquire("t1", "openai")
    pool.report_success("t1", first)
    pool.report_failure(first)

    second = pool.acquire("t1", "openai")
    pool.report_success("t1", second)

    assert pool.binding_for("t1", "openai") == 1


def test_exhaustion_raises_without_blocking(clock):
    pool = make_pool(clock, count=2)
    for index in range(2):
        pool.report_failure(pool.acquire(f"t{index}", "openai"))

    with pytest.raises(AllCredentialsExhaustedError) as exc_info:
        pool.acquire("t1", "openai")

    assert exc_info.value.retryable
    assert exc_info.value.provider == "openai"
    assert "try again later" in exc_info.value.user_message


def test_credential_recovers_exactly_at_cooldown(clock):
    pool = make_pool(clock, count=1, cooldown=60.0)
    handle = pool.acquire("t1", "openai")
    pool.report_failure(handle)

    failed_at = clock.now
    clock.now = failed_at + 59.5
    with pytest.raises(AllCredentialsExhaustedError):
        pool.acquire("t1", "openai")

    clock.now = failed_at + 60.0
    assert pool.acquire("t1", "openai").index == 0
    assert pool.snapshot()["openai"][0]["available"] is True


def test_cooled_down_credential_rejoins_rotation_while_others_are_usable(clock):
    pool = make_pool(clock, count=2)
    first = pool.acquire("t1", "openai")
    pool.report_failure(first)

    clock.advance(30)
    parked = [pool.acquire(f"early-{i}", "openai").index for i in range(3)]
    assert first.index not in parked

    clock.advance(90)
    indexes = [pool.acquire(f"late-{i}", "openai").index for i in range(4)]

    assert indexes.count(first.index) == 2
    assert pool.snapshot()["openai"][first.index]["available"] is True
    assert pool.recover_expired("openai") == 0


def test_unknown_provider_has_no_credentials(clock):
    pool = make_pool(clock)

    with pytest.raises(AllCredentialsExhaustedError):
        pool.acquire("t1", "anthropic")


def test_snapshot_reports_counts_without_secrets(clock):
    pool = make_pool(clock, count=2)
    handle = pool.acquire("t1", "openai")
    pool.report_success("t1", handle)
    pool.report_failure(handle, reason="rate_limit")
    clock.advance(5)

    entry = pool.snapshot()["openai"][0]

    assert entry == {
        "index": 0,
        "available": False,
        "failure_count": 1,
        "success_count": 1,
        "seconds_since_failure": 5.0,
        "last_failure_reason": "rate_limit",
    }
    assert "sk-0" not in repr(pool.snapshot())
    assert "sk-0" not in repr(handle)
    assert str(handle) == "openai#0"


def test_concurrent_acquire_keeps_round_robin_consistent(clock):
    pool = make_pool(clock, count=4)
    results = []

    def worker(start):
        for i in range(25):
            results.append(pool.acquire(f"tenant-{start}-{i}", "openai").index)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 100
    assert sorted(results.count(i) for i in range(4)) == [25, 25, 25, 25]
