"""Lookup table from provider names to adapters."""

import logging
from typing import Dict, Iterable, List, Optional, Type

from ..config import Settings
from ..errors import UnsupportedProviderError
from .anthropic_adapter import AnthropicAdapter
from .base_provider import ClientFactory, ProviderAdapter
from .openai_adapter import OpenAIAdapter

logger = logging.getLogger(__name__)

ADAPTER_TYPES: Dict[str, Type[ProviderAdapter]] = {
    OpenAIAdapter.name: OpenAIAdapter,
    AnthropicAdapter.name: AnthropicAdapter,
}


class ProviderRegistry:
    def __init__(self, adapters: Iterable[ProviderAdapter]):
        self._adapters: Dict[str, ProviderAdapter] = {}
        self._aliases: Dict[str, str] = {}
        for adapter in adapters:
            self._adapters[adapter.name] = adapter
            for alias in adapter.aliases:
                self._aliases[alias] = adapter.name

    @property
    def names(self) -> List[str]:
        return list(self._adapters)

    def canonical_name(self, provider: str) -> str:
        key = (provider or "").strip().lower()
        key = self._aliases.get(key, key)
        if key not in self._adapters:
            raise UnsupportedProviderError(provider)
        return key

    def get(self, provider: str) -> ProviderAdapter:
        return self._adapters[self.canonical_name(provider)]

    def estimate_cost(self, provider: str, model: str, input_tokens: int, output_tokens: int) -> float:
        """Price a call with the current pricing table of the owning adapter."""
        return self.get(provider).estimate_cost(model, input_tokens, output_tokens)

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()


def build_registry(
    settings: Settings, client_factories: Optional[Dict[str, ClientFactory]] = None
) -> ProviderRegistry:
    client_factories = client_factories or {}
    adapters = []
    for name, adapter_type in ADAPTER_TYPES.items():
        adapters.append(
            adapter_type(
                pricing_overrides=settings.pricing_overrides.get(name),
                timeout=settings.provider_timeout_seconds,
                client_factory=client_factories.get(name),
            )
        )
    logger.info(f"Registered providers: {', '.join(ADAPTER_TYPES)}")
    return ProviderRegistry(adapters)
