"""Bounded per-conversation message history with a persistent-store fallback."""
import asyncio
import logging
import weakref
from collections import OrderedDict, deque
from typing import Deque, List, Tuple

from ..models import ConversationTurn
from ..storage.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

ConversationKey = Tuple[str, str]

ERROR_MESSAGE_TEMPLATE = "Sorry, an error occurred while generating the AI response: {error}"


class ContextWindowStore:
    """In-process cache of the most recent turns of each conversation.

    The cache holds at most ``max_turns`` turns per conversation, evicting
    the oldest first, and at most ``max_conversations`` conversations, evicting
    the least recently used. A cache miss reloads from the persistent store,
    which stays the source of truth.
    """

    def __init__(
        self,
        store: ConversationStore,
        max_turns: int = 12,
        fetch_multiplier: int = 2,
        max_conversations: int = 10000,
    ):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if max_conversations < 1:
            raise ValueError("max_conversations must be at least 1")
        self.store = store
        self.max_turns = max_turns
        self.fetch_multiplier = max(1, fetch_multiplier)
        self.max_conversations = max_conversations
        self._cache: "OrderedDict[ConversationKey, Deque[ConversationTurn]]" = OrderedDict()
        # Per-conversation locks, dropped once no coroutine holds or awaits them.
        self._locks: "weakref.WeakValueDictionary[ConversationKey, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: ConversationKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, tenant_id: str, conversation_id: str) -> List[ConversationTurn]:
        key = (tenant_id, conversation_id)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return list(cached)
        async with self._lock_for(key):
            return list(await self._load_locked(key))

    async def append(self, tenant_id: str, conversation_id: str, turn: ConversationTurn) -> None:
        key = (tenant_id, conversation_id)
        async with self._lock_for(key):
            window = await self._load_locked(key)
            await self.store.append(tenant_id, conversation_id, turn)
            if self._is_context_turn(turn):
                window.append(turn)

    async def record_error(self, tenant_id: str, conversation_id: str, error: str) -> ConversationTurn:
        """Persist a visible error artifact that never enters the model context."""
        turn = ConversationTurn(
            role="system",
            content=ERROR_MESSAGE_TEMPLATE.format(error=error),
            is_error=True,
            author_name="System",
        )
        await self.store.append(tenant_id, conversation_id, turn)
        return turn

    def invalidate(self, tenant_id: str, conversation_id: str) -> None:
        self._cache.pop((tenant_id, conversation_id), None)

    async def _load_locked(self, key: ConversationKey) -> Deque[ConversationTurn]:
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        tenant_id, conversation_id = key
        # Over-fetch so filtered error artifacts do not shrink the window.
        stored = await self.store.load_recent(tenant_id, conversation_id, self.max_turns * self.fetch_multiplier)
        turns = [turn for turn in stored if self._is_context_turn(turn)]
        turns.reverse()

        window: Deque[ConversationTurn] = deque(turns[-self.max_turns:], maxlen=self.max_turns)
        self._cache[key] = window
        while len(self._cache) > self.max_conversations:
            self._cache.popitem(last=False)
        logger.debug(f"Seeded context window for {tenant_id}/{conversation_id} with {len(window)} turns")
        return window

    @staticmethod
    def _is_context_turn(turn: ConversationTurn) -> bool:
        return not turn.is_error and turn.role in ("user", "assistant") and bool(turn.content)
