"""Anthropic messages adapter for Claude models."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import anthropic

from ..errors import GatewayError, ProviderTimeoutError, RateLimitedError, UpstreamError
from ..finops.token_estimator import estimate_message_tokens, estimate_tokens
from ..models import CanonicalRequest, CanonicalResponse, NormalizedPart, PartKind, StreamChunk
from .base_provider import ModelSpec, ProviderAdapter, WireRequest, WireResponse

logger = logging.getLogger(__name__)

EDITOR_TOOL = {
    "name": "str_replace_editor",
    "description": "Edit text files by replacing strings",
    "input_schema": {
        "type": "object",
        "properties": {
            "file_path": {"type": "string"},
            "old_str": {"type": "string"},
            "new_str": {"type": "string"},
        },
        "required": ["file_path", "old_str", "new_str"],
    },
}

WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 5}


class AnthropicAdapter(ProviderAdapter):
    """Claude family: the system prompt is a top-level field, apart from the messages."""

    name = "anthropic"
    aliases = ("claude",)
    supports_native_documents = True

    MODELS = {
        "claude-opus-4-1": ModelSpec("claude-opus-4-1-20250805", "Claude Opus 4.1", multimodal=True),
        "claude-opus-4": ModelSpec("claude-opus-4-20250514", "Claude Opus 4", multimodal=True),
        "claude-sonnet-4": ModelSpec("claude-sonnet-4-20250514", "Claude Sonnet 4", multimodal=True),
        "claude-3-7-sonnet": ModelSpec("claude-3-7-sonnet-20250219", "Claude Sonnet 3.7", multimodal=True),
        "claude-3-5-haiku": ModelSpec(
            "claude-3-5-haiku-20241022", "Claude Haiku 3.5", multimodal_fallback="claude-sonnet-4"
        ),
        "claude-3-haiku": ModelSpec("claude-3-haiku-20240307", "Claude Haiku 3", multimodal=True),
    }

    PRICING = {
        "claude-opus-4-1": {"input": 0.015, "output": 0.075},
        "claude-opus-4": {"input": 0.015, "output": 0.075},
        "claude-sonnet-4": {"input": 0.003, "output": 0.015},
        "claude-3-7-sonnet": {"input": 0.003, "output": 0.015},
        "claude-3-5-haiku": {"input": 0.0008, "output": 0.004},
        "claude-3-haiku": {"input": 0.00025, "output": 0.00125},
    }

    def create_client(self, secret: str, timeout: float) -> anthropic.AsyncAnthropic:
        return anthropic.AsyncAnthropic(api_key=secret, timeout=timeout, max_retries=0)

    def translate(self, request: CanonicalRequest) -> WireRequest:
        model = self.select_model(request)

        messages = self.history_messages(request.history)
        # The conversation must open with a user turn; the window may have evicted it.
        while messages and messages[0]["role"] != "user":
            messages.pop(0)

        if request.attachments:
            content: List[Dict[str, Any]] = [{"type": "text", "text": request.new_message}]
            content.extend(self._convert_part(part) for part in request.attachments)
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": request.new_message})

        payload: WireRequest = {
            "model": self.upstream_model(model),
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": messages,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt

        tools = []
        if request.enable_tools:
            tools.append(EDITOR_TOOL)
        if request.enable_search:
            tools.append(WEB_SEARCH_TOOL)
        if tools:
            payload["tools"] = tools

        return payload

    def _convert_part(self, part: NormalizedPart) -> Dict[str, Any]:
        if part.kind == PartKind.INLINE_IMAGE:
            return {"type": "image", "source": {"type": "base64", "media_type": part.mime_type, "data": part.data}}
        if part.kind == PartKind.INLINE_DOCUMENT:
            return {
                "type": "document",
                "source": {"type": "base64", "media_type": part.mime_type, "data": part.data},
            }
        return {"type": "text", "text": part.text or ""}

    async def _complete(self, client: Any, wire_request: WireRequest) -> WireResponse:
        response = await client.messages.create(**wire_request)
        return response.model_dump()

    async def _stream(self, client: Any, wire_request: WireRequest) -> AsyncIterator[StreamChunk]:
        stream = await client.messages.create(**wire_request, stream=True)
        try:
            async for event in stream:
                if event.type == "message_start":
                    yield StreamChunk(input_tokens=event.message.usage.input_tokens)
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta" and event.delta.text:
                        yield StreamChunk(delta=event.delta.text)
                elif event.type == "message_delta":
                    if event.usage is not None:
                        yield StreamChunk(output_tokens=event.usage.output_tokens)
        finally:
            await stream.close()

    def parse(self, response: WireResponse, request: Optional[WireRequest] = None) -> CanonicalResponse:
        text = "".join(
            block.get("text", "") for block in response.get("content") or [] if block.get("type") == "text"
        )
        if not text and response.get("content"):
            logger.warning(f"{self.name} response carried no text blocks")

        model = self.logical_model(response.get("model") or (request or {}).get("model", ""))
        usage = response.get("usage")
        if usage:
            input_tokens = usage.get("input_tokens", 0)
            output_tokens = usage.get("output_tokens", 0)
            estimated = False
        else:
            request = request or {}
            input_tokens = estimate_message_tokens(request.get("messages", []))
            if request.get("system"):
                input_tokens += estimate_tokens(request["system"])
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
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimitedError(f"Rate limit exceeded for {self.name}: {exc}", provider=self.name)
        if isinstance(exc, anthropic.APITimeoutError):
            return ProviderTimeoutError(f"{self.name} request timed out", provider=self.name)
        if isinstance(exc, anthropic.APIStatusError):
            if exc.status_code == 429:
                return RateLimitedError(f"Rate limit exceeded for {self.name}: {exc}", provider=self.name)
            return UpstreamError(
                f"API error from {self.name}: {exc.status_code} {exc.message}",
                provider=self.name,
                status_code=exc.status_code,
            )
        if isinstance(exc, anthropic.APIError):
            return UpstreamError(f"API error from {self.name}: {exc}", provider=self.name)
        return None
