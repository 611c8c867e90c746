"""Base interface for upstream provider adapters."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Union

from ..errors import GatewayError, ProviderTimeoutError, RateLimitedError, UpstreamError
from ..models import CanonicalRequest, CanonicalResponse, ConversationTurn, StreamChunk

if TYPE_CHECKING:
    from ..orchestration.credential_pool import CredentialHandle

logger = logging.getLogger(__name__)

WireRequest = Dict[str, Any]
WireResponse = Dict[str, Any]
ClientFactory = Callable[[str, float], Any]


@dataclass(frozen=True)
class ModelSpec:
    """Upstream model behind a logical model name."""

    upstream: str
    display_name: str
    multimodal: bool = False
    multimodal_fallback: Optional[str] = None
    reasoning: bool = False
    search: bool = False


class ProviderAdapter(ABC):
    """Translates canonical chat requests to one provider family and back.

    Model names, pricing and display names are owned by each subclass so a
    new provider is added without touching shared code.
    """

    name: str = ""
    aliases: Tuple[str, ...] = ()
    supports_native_documents: bool = False

    MODELS: Dict[str, ModelSpec] = {}
    # USD per 1K tokens, keyed by logical model name
    PRICING: Dict[str, Dict[str, float]] = {}
    DEFAULT_PRICING: Dict[str, float] = {"input": 1.0, "output": 1.0}

    def __init__(
        self,
        pricing_overrides: Optional[Dict[str, Dict[str, float]]] = None,
        timeout: float = 60.0,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.timeout = timeout
        self.pricing = {**self.PRICING, **(pricing_overrides or {})}
        self._client_factory = client_factory or self.create_client
        self._clients: Dict[str, Any] = {}
        self._upstream_to_logical = {spec.upstream: logical for logical, spec in self.MODELS.items()}
        self._unpriced_models: set = set()

    # Model indirection

    def logical_model(self, model: str) -> str:
        if model in self.MODELS:
            return model
        return self._upstream_to_logical.get(model, model)

    def model_spec(self, model: str) -> Optional[ModelSpec]:
        return self.MODELS.get(self.logical_model(model))

    def upstream_model(self, model: str) -> str:
        spec = self.model_spec(model)
        return spec.upstream if spec else model

    def display_name(self, model: str) -> str:
        spec = self.model_spec(model)
        return spec.display_name if spec else model

    def select_model(self, request: CanonicalRequest) -> str:
        """Return the logical model to call, upgrading to a multimodal sibling when needed."""
        model = self.logical_model(request.model)
        spec = self.MODELS.get(model)
        if spec is None or spec.multimodal or not request.has_multimodal_parts:
            return model

        fallback = spec.multimodal_fallback
        if fallback is None or fallback not in self.MODELS:
            raise UpstreamError(
                f"Model {model} cannot read images or documents and has no multimodal substitute",
                provider=self.name,
            )
        logger.info(f"Substituting {fallback} for {model}: request carries image or document parts")
        return fallback

    # Pricing

    def estimate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        logical = self.logical_model(model)
        pricing = self.pricing.get(logical) or self.pricing.get(model)
        if pricing is None:
            if logical not in self._unpriced_models:
                self._unpriced_models.add(logical)
                logger.warning(f"No {self.name} pricing for model {logical}; using default rate")
            pricing = self.DEFAULT_PRICING

        input_cost = (input_tokens / 1000) * pricing["input"]
        output_cost = (output_tokens / 1000) * pricing["output"]
        return round(input_cost + output_cost, 6)

    # Wire protocol

    @abstractmethod
    def translate(self, request: CanonicalRequest) -> WireRequest:
        """Build the provider request body."""

    @abstractmethod
    def parse(self, response: WireResponse, request: Optional[WireRequest] = None) -> CanonicalResponse:
        """Build a canonical response from the provider response body."""

    @abstractmethod
    def create_client(self, secret: str, timeout: float) -> Any:
        """Create an SDK client bound to one credential."""

    @abstractmethod
    async def _complete(self, client: Any, wire_request: WireRequest) -> WireResponse:
        pass

    @abstractmethod
    def _stream(self, client: Any, wire_request: WireRequest) -> AsyncIterator[StreamChunk]:
        pass

    @abstractmethod
    def _classify_sdk_error(self, exc: Exception) -> Optional[GatewayError]:
        """Map an SDK exception to the gateway taxonomy, or None when unrecognised."""

    async def execute(
        self, wire_request: WireRequest, credential: "CredentialHandle", streaming: bool = False
    ) -> Union[WireResponse, AsyncIterator[StreamChunk]]:
        client = self._client_for(credential)
        if streaming:
            return self._guarded_stream(client, wire_request)
        try:
            return await self._complete(client, wire_request)
        except GatewayError:
            raise
        except Exception as e:
            raise self.classify_error(e) from e

    def classify_error(self, exc: Exception) -> GatewayError:
        if isinstance(exc, GatewayError):
            return exc
        if isinstance(exc, asyncio.TimeoutError):
            return ProviderTimeoutError(f"{self.name} request timed out", provider=self.name)

        classified = self._classify_sdk_error(exc)
        if classified is not None:
            return classified

        message = str(exc)
        if "rate limit" in message.lower():
            return RateLimitedError(f"Rate limit exceeded for {self.name}: {message}", provider=self.name)
        return UpstreamError(f"Error calling {self.name}: {message}", provider=self.name)

    async def _guarded_stream(self, client: Any, wire_request: WireRequest) -> AsyncIterator[StreamChunk]:
        stream = self._stream(client, wire_request)
        try:
            async for chunk in stream:
                yield chunk
        except GatewayError:
            raise
        except Exception as e:
            raise self.classify_error(e) from e
        finally:
            await stream.aclose()

    def _client_for(self, credential: "CredentialHandle") -> Any:
        client = self._clients.get(credential.secret)
        if client is None:
            client = self._client_factory(credential.secret, self.timeout)
            self._clients[credential.secret] = client
        return client

    async def close(self) -> None:
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                await close()
        self._clients.clear()

    # Helpers shared by subclasses

    @staticmethod
    def history_messages(history: List[ConversationTurn]) -> List[Dict[str, Any]]:
        return [
            {"role": turn.role, "content": turn.content}
            for turn in history
            if turn.role in ("user", "assistant") and not turn.is_error and turn.content
        ]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name}, models={len(self.MODELS)})"
