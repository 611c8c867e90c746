"""OpenAI chat completions adapter."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import openai

from ..errors import GatewayError, ProviderTimeoutError, RateLimitedError, UpstreamError
from ..finops.token_estimator import estimate_message_tokens, estimate_tokens
from ..models import CanonicalRequest, CanonicalResponse, NormalizedPart, PartKind, StreamChunk
from .base_provider import ModelSpec, ProviderAdapter, WireRequest, WireResponse

logger = logging.getLogger(__name__)


class OpenAIAdapter(ProviderAdapter):
    """OpenAI family: the system prompt travels as the first message."""

    name = "openai"
    supports_native_documents = False

    MODELS = {
        "gpt-5": ModelSpec("gpt-5-2025-08-07", "GPT-5", multimodal=True, reasoning=True),
        "gpt-5-mini": ModelSpec("gpt-5-mini-2025-08-07", "GPT-5-mini", multimodal=True, reasoning=True),
        "gpt-5-nano": ModelSpec("gpt-5-nano-2025-08-07", "GPT-5-nano", multimodal=True, reasoning=True),
        "gpt-4.1": ModelSpec("gpt-4.1-2025-04-14", "GPT-4.1", multimodal=True),
        "gpt-4.1-mini": ModelSpec("gpt-4.1-mini-2025-04-14", "GPT-4.1-mini", multimodal=True),
        "gpt-4o": ModelSpec("gpt-4o-2024-08-06", "GPT-4o", multimodal=True),
        "gpt-4o-mini": ModelSpec("gpt-4o-mini-2024-07-18", "GPT-4o-mini", multimodal=True),
        "gpt-4o-search": ModelSpec(
            "gpt-4o-search-preview", "GPT-4o Search", multimodal_fallback="gpt-4o", search=True
        ),
        "gpt-4-turbo": ModelSpec("gpt-4-turbo-2024-04-09", "GPT-4 Turbo", multimodal=True),
        "gpt-4": ModelSpec("gpt-4", "GPT-4", multimodal_fallback="gpt-4-turbo"),
        "gpt-3.5-turbo": ModelSpec("gpt-3.5-turbo-0125", "GPT-3.5 Turbo", multimodal_fallback="gpt-4o-mini"),
    }

    PRICING = {
        "gpt-5": {"input": 0.00125, "output": 0.01},
        "gpt-5-mini": {"input": 0.00025, "output": 0.002},
        "gpt-5-nano": {"input": 0.00005, "output": 0.0004},
        "gpt-4.1": {"input": 0.002, "output": 0.008},
        "gpt-4.1-mini": {"input": 0.0004, "output": 0.0016},
        "gpt-4o": {"input": 0.0025, "output": 0.01},
        "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
        "gpt-4o-search": {"input": 0.0025, "output": 0.01},
        "gpt-4-turbo": {"input": 0.01, "output": 0.03},
        "gpt-4": {"input": 0.03, "output": 0.06},
        "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    }

    def create_client(self, secret: str, timeout: float) -> openai.AsyncOpenAI:
        # Retries belong to the gateway, which rotates credentials between attempts.
        return openai.AsyncOpenAI(api_key=secret, timeout=timeout, max_retries=0)

    def translate(self, request: CanonicalRequest) -> WireRequest:
        model = self.select_model(request)
        spec = self.model_spec(model)

        messages: List[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(self.history_messages(request.history))

        if request.attachments:
            content: List[Dict[str, Any]] = [{"type": "text", "text": request.new_message}]
            content.extend(self._convert_part(part) for part in request.attachments)
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": request.new_message})

        payload: WireRequest = {"model": self.upstream_model(model), "messages": messages}

        if spec is not None and spec.reasoning:
            payload["max_completion_tokens"] = request.max_tokens
        else:
            payload["max_tokens"] = request.max_tokens
            payload["temperature"] = request.temperature

        if request.enable_search:
            if spec is not None and spec.search:
                payload["web_search_options"] = {}
            else:
                logger.debug(f"Web search requested but {model} does not support it")

        return payload

    def _convert_part(self, part: NormalizedPart) -> Dict[str, Any]:
        if part.kind == PartKind.INLINE_IMAGE:
            return {
                "type": "image_url",
                "image_url": {"url": f"data:{part.mime_type};base64,{part.data}", "detail": "high"},
            }
        return {"type": "text", "text": part.text or ""}

    async def _complete(self, client: Any, wire_request: WireRequest) -> WireResponse:
        response = await client.chat.completions.create(**wire_request)
        return response.model_dump()

    async def _stream(self, client: Any, wire_request: WireRequest) -> AsyncIterator[StreamChunk]:
        stream = await client.chat.completions.create(
            **wire_request, stream=True, stream_options={"include_usage": True}
        )
        try:
            async for chunk in stream:
                if chunk.choices:
                    content = chunk.choices[0].delta.content
                    if content:
                        yield StreamChunk(delta=content)
                if getattr(chunk, "usage", None):
                    yield StreamChunk(
                        input_tokens=chunk.usage.prompt_tokens,
                        output_tokens=chunk.usage.completion_tokens,
                    )
        finally:
            await stream.close()

    def parse(self, response: WireResponse, request: Optional[WireRequest] = None) -> CanonicalResponse:
        choices = response.get("choices") or []
        text = ""
        if choices:
            text = (choices[0].get("message") or {}).get("content") or ""

        model = self.logical_model(response.get("model") or (request or {}).get("model", ""))
        usage = response.get("usage")
        if usage:
            input_tokens = usage.get("prompt_tokens", 0)
            output_tokens = usage.get("completion_tokens", 0)
            estimated = False
        else:
            input_tokens = estimate_message_tokens((request or {}).get("messages", []))
            output_tokens = estimate_tokens(text)
            estimated = True

        return CanonicalResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=self.estimate_cost(model, input_tokens, output_tokens),
            provider=self.name,
            model=model,
            usage_estimated=estimated,
        )

    def _classify_sdk_error(self, exc: Exception) -> Optional[GatewayError]:
        if isinstance(exc, openai.RateLimitError):
            return RateLimitedError(f"Rate limit exceeded for {self.name}: {exc}", provider=self.name)
        if isinstance(exc, openai.APITimeoutError):
            return ProviderTimeoutError(f"{self.name} request timed out", provider=self.name)
        if isinstance(exc, openai.APIStatusError):
            if exc.status_code == 429:
                return RateLimitedError(f"Rate limit exceeded for {self.name}: {exc}", provider=self.name)
            return UpstreamError(
                f"API error from {self.name}: {exc.status_code} {exc.message}",
                provider=self.name,
                status_code=exc.status_code,
            )
        if isinstance(exc, openai.APIError):
            return UpstreamError(f"API error from {self.name}: {exc}", provider=self.name)
        return None
