"""Persistent conversation turn storage (the source of truth behind the context window)."""
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis

from ..models import ConversationTurn


class ConversationStore(ABC):
    @abstractmethod
    async def append(self, tenant_id: str, conversation_id: str, turn: ConversationTurn) -> None:
        """Persist one turn. Error artifacts are turns flagged ``is_error``."""

    @abstractmethod
    async def load_recent(self, tenant_id: str, conversation_id: str, limit: int) -> List[ConversationTurn]:
        """Return up to ``limit`` most recent turns, newest first."""


class InMemoryConversationStore(ConversationStore):
    def __init__(self):
        self._turns: Dict[Tuple[str, str], List[ConversationTurn]] = defaultdict(list)

    async def append(self, tenant_id: str, conversation_id: str, turn: ConversationTurn) -> None:
        self._turns[(tenant_id, conversation_id)].append(turn)

    async def load_recent(self, tenant_id: str, conversation_id: str, limit: int) -> List[ConversationTurn]:
        turns = self._turns.get((tenant_id, conversation_id), [])
        return list(reversed(turns[-limit:])) if limit > 0 else []

    def all_turns(self, tenant_id: str, conversation_id: str) -> List[ConversationTurn]:
        return list(self._turns.get((tenant_id, conversation_id), []))


class RedisConversationStore(ConversationStore):
    def __init__(self, redis_url: str, ttl: Optional[int] = None, client: Optional[redis.Redis] = None):
        self.redis = client or redis.from_url(redis_url, decode_responses=True)
        self.ttl = ttl

    @staticmethod
    def _key(tenant_id: str, conversation_id: str) -> str:
        return f"conversation:{tenant_id}:{conversation_id}"

    async def append(self, tenant_id: str, conversation_id: str, turn: ConversationTurn) -> None:
        key = self._key(tenant_id, conversation_id)
        await self.redis.rpush(key, turn.model_dump_json())
        if self.ttl:
            await self.redis.expire(key, self.ttl)

    async def load_recent(self, tenant_id: str, conversation_id: str, limit: int) -> List[ConversationTurn]:
        if limit <= 0:
            return []
        raw = await self.redis.lrange(self._key(tenant_id, conversation_id), -limit, -1)
        return [ConversationTurn.model_validate_json(item) for item in reversed(raw)]

    async def close(self):
        await self.redis.close()
