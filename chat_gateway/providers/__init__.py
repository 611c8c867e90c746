from .base_provider import ModelSpec, ProviderAdapter
from .openai_adapter import OpenAIAdapter
from .anthropic_adapter import AnthropicAdapter
from .registry import ADAPTER_TYPES, ProviderRegistry, build_registry

__all__ = [
    "ModelSpec",
    "ProviderAdapter",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "ADAPTER_TYPES",
    "ProviderRegistry",
    "build_registry",
]
