"""Tests for usage recording and read-time aggregation."""
from datetime import datetime, timedelta, timezone

import pytest

from chat_gateway.finops import UsageLedger
from chat_gateway.models import UsageRecord, UsageStatus
from chat_gateway.providers import AnthropicAdapter, OpenAIAdapter, ProviderRegistry
from chat_gateway.storage import InMemoryUsageStore

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def record(provider="openai", model="gpt-4o", user_id="u1", status=UsageStatus.SUCCESS, hours=0, tokens=(1000, 1000)):
    return UsageRecord(
        tenant_id="t1",
        user_id=user_id,
        provider=provider,
        model=model,
        input_tokens=tokens[0],
        output_tokens=tokens[1],
        cost_estimate=99.0,
        status=status,
        timestamp=T0 + timedelta(hours=hours),
    )


@pytest.fixture
def ledger():
    registry = ProviderRegistry([OpenAIAdapter(), AnthropicAdapter()])
    return UsageLedger(InMemoryUsageStore(), price_lookup=registry.estimate_cost)


@pytest.mark.asyncio
async def test_aggregate_buckets_by_provider_model_and_user(ledger):
    await ledger.record(record())
    await ledger.record(record(user_id="u2"))
    await ledger.record(record(provider="anthropic", model="claude-3-haiku", tokens=(2000, 0)))

    summary = await ledger.aggregate("t1")

    assert summary.total_messages == 3
    assert summary.total_tokens == 6000
    assert summary.total_cost == pytest.approx(0.0125 * 2 + 0.0005)
    assert summary.by_provider["openai"].messages == 2
    assert summary.by_provider["anthropic"].tokens == 2000
    assert summary.by_model["gpt-4o"].cost == pytest.approx(0.025)
    assert summary.by_user["u1"].messages == 2
    assert summary.by_user["u2"].messages == 1


@pytest.mark.asyncio
async def test_cost_is_recomputed_from_current_pricing(ledger):
    """Stored estimates are ignored; the pricing table at read time wins."""
    await ledger.record(record())

    summary = await ledger.aggregate("t1")

    assert summary.total_cost == pytest.approx(0.0125)
    assert (await ledger.records("t1"))[0].cost_estimate == 99.0


@pytest.mark.asyncio
async def test_failed_records_are_excluded_by_default(ledger):
    await ledger.record(record())
    await ledger.record(record(status=UsageStatus.FAILED, tokens=(0, 0)))

    assert (await ledger.aggregate("t1")).total_messages == 1
    assert (await ledger.aggregate("t1", status=UsageStatus.FAILED)).total_messages == 1
    assert (await ledger.aggregate("t1", status=None)).total_messages == 2


@pytest.mark.asyncio
async def test_filters_by_time_user_and_provider(ledger):
    await ledger.record(record(hours=0))
    await ledger.record(record(hours=5, user_id="u2"))
    await ledger.record(record(hours=10, provider="anthropic", model="claude-3-haiku"))

    window = await ledger.aggregate("t1", start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=10))
    assert window.total_messages == 2

    assert (await ledger.aggregate("t1", user_id="u2")).total_messages == 1
    assert (await ledger.aggregate("t1", provider="anthropic")).total_messages == 1
    assert (await ledger.aggregate("other-tenant")).total_messages == 0


@pytest.mark.asyncio
async def test_unknown_provider_keeps_recorded_cost(ledger):
    await ledger.record(record(provider="legacy", model="old-model"))

    summary = await ledger.aggregate("t1")

    assert summary.total_cost == pytest.approx(99.0)


@pytest.mark.asyncio
async def test_unknown_model_prices_at_default_rate(ledger):
    await ledger.record(record(model="gpt-experimental", tokens=(500, 500)))

    summary = await ledger.aggregate("t1")

    assert summary.total_cost == pytest.approx(1.0)
