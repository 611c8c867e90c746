"""Construction root: wires settings into one orchestrator and its collaborators."""
import logging
import time
from typing import Callable, Dict, Optional

from .attachments.normalizer import AttachmentNormalizer, Fetcher
from .cache.context_window import ContextWindowStore
from .config import Settings, get_settings
from .finops.usage_ledger import UsageLedger
from .logging_config import configure_logging
from .orchestration.chat_orchestrator import ChatOrchestrator
from .orchestration.credential_pool import CredentialPool
from .providers.base_provider import ClientFactory
from .providers.registry import build_registry
from .storage.conversation_store import ConversationStore, InMemoryConversationStore, RedisConversationStore
from .storage.usage_store import InMemoryUsageStore, RedisUsageStore, UsageStore

logger = logging.getLogger(__name__)


def build_stores(settings: Settings):
    if settings.redis_url:
        logger.info("Using Redis conversation and usage stores")
        conversation_store: ConversationStore = RedisConversationStore(settings.redis_url)
        usage_store: UsageStore = RedisUsageStore(settings.redis_url)
    else:
        logger.info("No redis_url configured; using in-memory stores")
        conversation_store = InMemoryConversationStore()
        usage_store = InMemoryUsageStore()
    return conversation_store, usage_store


def build_gateway(
    settings: Optional[Settings] = None,
    client_factories: Optional[Dict[str, ClientFactory]] = None,
    fetcher: Optional[Fetcher] = None,
    conversation_store: Optional[ConversationStore] = None,
    usage_store: Optional[UsageStore] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ChatOrchestrator:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if conversation_store is None or usage_store is None:
        default_conversations, default_usage = build_stores(settings)
        conversation_store = conversation_store or default_conversations
        usage_store = usage_store or default_usage

    registry = build_registry(settings, client_factories)
    credential_pool = CredentialPool(
        {name: settings.credentials_for(name) for name in registry.names},
        cooldown_seconds=settings.credential_cooldown_seconds,
        clock=clock,
    )
    context_store = ContextWindowStore(
        conversation_store,
        max_turns=settings.context_window_size,
        fetch_multiplier=settings.context_history_fetch_multiplier,
        max_conversations=settings.context_cache_max_conversations,
    )
    normalizer = AttachmentNormalizer(
        fetcher=fetcher,
        text_char_budget=settings.text_attachment_char_budget,
        pdf_char_budget=settings.pdf_attachment_char_budget,
        max_bytes=settings.max_attachment_bytes,
        fetch_timeout=settings.attachment_fetch_timeout_seconds,
    )
    ledger = UsageLedger(usage_store, price_lookup=registry.estimate_cost)

    logger.info(f"Chat gateway ready with providers: {', '.join(credential_pool.providers)}")
    return ChatOrchestrator(
        registry=registry,
        credential_pool=credential_pool,
        context_store=context_store,
        normalizer=normalizer,
        ledger=ledger,
        assistant_name=settings.assistant_name,
        default_system_prompt=settings.default_system_prompt,
        provider_timeout=settings.provider_timeout_seconds,
        max_output_tokens=settings.max_output_tokens,
        temperature=settings.temperature,
    )
