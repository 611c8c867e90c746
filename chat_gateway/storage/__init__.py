from .conversation_store import ConversationStore, InMemoryConversationStore, RedisConversationStore
from .usage_store import InMemoryUsageStore, RedisUsageStore, UsageStore

__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "RedisConversationStore",
    "UsageStore",
    "InMemoryUsageStore",
    "RedisUsageStore",
]
