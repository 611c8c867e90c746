"""Append-only persistence for usage records."""
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

import redis.asyncio as redis

from ..models import UsageRecord


class UsageStore(ABC):
    @abstractmethod
    async def add(self, record: UsageRecord) -> None:
        pass

    @abstractmethod
    async def query(
        self, tenant_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[UsageRecord]:
        """Records for a tenant with ``start <= timestamp <= end``, oldest first."""


class InMemoryUsageStore(UsageStore):
    def __init__(self):
        self._records: Dict[str, List[UsageRecord]] = defaultdict(list)

    async def add(self, record: UsageRecord) -> None:
        self._records[record.tenant_id].append(record)

    async def query(
        self, tenant_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[UsageRecord]:
        return [
            record
            for record in self._records.get(tenant_id, [])
            if (start is None or record.timestamp >= start) and (end is None or record.timestamp <= end)
        ]


class RedisUsageStore(UsageStore):
    """Records live in a per-tenant sorted set scored by timestamp."""

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis = client or redis.from_url(redis_url, decode_responses=True)

    @staticmethod
    def _key(tenant_id: str) -> str:
        return f"usage:{tenant_id}"

    async def add(self, record: UsageRecord) -> None:
        await self.redis.zadd(self._key(record.tenant_id), {record.model_dump_json(): record.timestamp.timestamp()})

    async def query(
        self, tenant_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[UsageRecord]:
        low = start.timestamp() if start else "-inf"
        high = end.timestamp() if end else "+inf"
        raw = await self.redis.zrangebyscore(self._key(tenant_id), low, high)
        return [UsageRecord.model_validate_json(item) for item in raw]

    async def close(self):
        await self.redis.close()
