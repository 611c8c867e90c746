"""Accountable usage records and the tenant billing view built from them."""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..errors import UnsupportedProviderError
from ..models import UsageBucket, UsageRecord, UsageStatus, UsageSummary
from ..storage.usage_store import UsageStore

logger = logging.getLogger(__name__)

PriceLookup = Callable[[str, str, int, int], float]


class UsageLedger:
    """Append-only ledger of provider calls.

    Stored records keep the cost estimated at call time, but ``aggregate``
    prices every record again with ``price_lookup``, so totals always
    reflect the pricing table in effect when the report is built.
    """

    def __init__(self, store: UsageStore, price_lookup: PriceLookup):
        self.store = store
        self.price_lookup = price_lookup
        self._unpriced: Set[Tuple[str, str]] = set()

    async def record(self, record: UsageRecord) -> None:
        await self.store.add(record)
        logger.debug(
            f"Usage recorded for {record.tenant_id}: {record.provider}/{record.model} "
            f"{record.total_tokens} tokens ({record.status.value})"
        )

    async def records(
        self, tenant_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[UsageRecord]:
        return await self.store.query(tenant_id, start, end)

    async def aggregate(
        self,
        tenant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[UsageStatus] = UsageStatus.SUCCESS,
        user_id: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> UsageSummary:
        """Summarize a tenant's usage. Pass ``status=None`` to include every status."""
        summary = UsageSummary()

        for record in await self.store.query(tenant_id, start, end):
            if status is not None and record.status != status:
                continue
            if user_id is not None and record.user_id != user_id:
                continue
            if provider is not None and record.provider != provider:
                continue

            tokens = record.total_tokens
            cost = self._price(record)

            summary.total_messages += 1
            summary.total_tokens += tokens
            summary.total_cost += cost

            self._add(summary.by_provider, record.provider, tokens, cost)
            self._add(summary.by_model, record.model, tokens, cost)
            self._add(summary.by_user, record.user_id or "anonymous", tokens, cost)

        summary.total_cost = round(summary.total_cost, 6)
        for buckets in (summary.by_provider, summary.by_model, summary.by_user):
            for bucket in buckets.values():
                bucket.cost = round(bucket.cost, 6)
        return summary

    def _price(self, record: UsageRecord) -> float:
        try:
            return self.price_lookup(record.provider, record.model, record.input_tokens, record.output_tokens)
        except UnsupportedProviderError:
            key = (record.provider, record.model)
            if key not in self._unpriced:
                self._unpriced.add(key)
                logger.warning(f"No pricing for {record.provider}/{record.model}; using recorded cost")
            return record.cost_estimate

    @staticmethod
    def _add(buckets: Dict[str, UsageBucket], key: str, tokens: int, cost: float) -> None:
        bucket = buckets.setdefault(key, UsageBucket())
        bucket.messages += 1
        bucket.tokens += tokens
        bucket.cost += cost
