"""Shared fixtures: a controllable clock, a scripted provider and in-memory stores."""
import asyncio
from types import SimpleNamespace

import pytest

from chat_gateway.attachments import AttachmentNormalizer
from chat_gateway.cache import ContextWindowStore
from chat_gateway.finops import UsageLedger
from chat_gateway.orchestration import ChatOrchestrator, CredentialPool
from chat_gateway.providers import OpenAIAdapter, ProviderRegistry
from chat_gateway.storage import InMemoryConversationStore, InMemoryUsageStore


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedAdapter(OpenAIAdapter):
    """OpenAI adapter whose upstream calls replay a script instead of the network.

    Each script step is consumed by one dispatch and is either an exception to
    raise, a wire response dict, a list of stream chunks (exceptions allowed
    inside), or an async callable whose result is returned.
    """

    def __init__(self, script=None, **kwargs):
        super().__init__(client_factory=lambda secret, timeout: secret, **kwargs)
        self.script = list(script or [])
        self.calls = []
        self.streams_closed = 0

    @property
    def secrets_used(self):
        return [secret for secret, _ in self.calls]

    def _next_step(self, client, wire_request):
        self.calls.append((client, wire_request))
        return self.script.pop(0)

    async def _complete(self, client, wire_request):
        step = self._next_step(client, wire_request)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step()
        return step

    async def _stream(self, client, wire_request):
        step = self._next_step(client, wire_request)
        try:
            if isinstance(step, BaseException):
                raise step
            for item in step:
                if isinstance(item, BaseException):
                    raise item
                yield item
                await asyncio.sleep(0)
        finally:
            self.streams_closed += 1


def completion(text="Hi there", prompt_tokens=12, completion_tokens=4, model="gpt-4o-2024-08-06"):
    """OpenAI chat completion body as returned by ``model_dump()``."""
    return {
        "id": "chatcmpl-test",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetched():
    """Attachment bodies served by the fake fetcher, keyed by URL."""
    return {}


@pytest.fixture
def gateway(clock, fetched):
    adapter = ScriptedAdapter()
    registry = ProviderRegistry([adapter])
    pool = CredentialPool({"openai": ["sk-0", "sk-1"]}, cooldown_seconds=60.0, clock=clock)
    conversations = InMemoryConversationStore()
    usage_store = InMemoryUsageStore()
    context = ContextWindowStore(conversations, max_turns=12)

    async def fetcher(attachment):
        body = fetched[attachment.url]
        if isinstance(body, BaseException):
            raise body
        return body

    normalizer = AttachmentNormalizer(fetcher=fetcher)
    ledger = UsageLedger(usage_store, price_lookup=registry.estimate_cost)
    orchestrator = ChatOrchestrator(
        registry=registry,
        credential_pool=pool,
        context_store=context,
        normalizer=normalizer,
        ledger=ledger,
        default_system_prompt="You are a helpful assistant.",
        provider_timeout=0.5,
    )
    return SimpleNamespace(
        orchestrator=orchestrator,
        adapter=adapter,
        pool=pool,
        conversations=conversations,
        usage_store=usage_store,
        context=context,
        ledger=ledger,
        clock=clock,
    )
