"""Runs one chat turn end to end: context, attachments, dispatch, accounting."""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from ..attachments.normalizer import AttachmentNormalizer
from ..cache.context_window import ContextWindowStore
from ..errors import GatewayError, ProviderTimeoutError, RateLimitedError
from ..finops.token_estimator import estimate_message_tokens, estimate_tokens
from ..finops.usage_ledger import UsageLedger
from ..models import (
    Attachment,
    CanonicalRequest,
    CanonicalResponse,
    ChatOptions,
    ConversationTurn,
    StreamChunk,
    UsageRecord,
    UsageStatus,
)
from ..monitoring.metrics import credential_rotations, error_count, model_latency, record_usage
from ..providers.base_provider import ProviderAdapter, WireRequest
from ..providers.registry import ProviderRegistry
from ..streaming.stream_handle import EventType, StreamEvent, StreamHandle
from .credential_pool import CredentialHandle, CredentialPool

logger = logging.getLogger(__name__)

SEARCH_MARKERS = ("[web]", "[웹검색]")
TOOLS_MARKERS = ("[tools]", "[도구]")


class TurnState(str, Enum):
    BUILDING = "building"
    DISPATCHING = "dispatching"
    RATE_LIMITED = "rate_limited"
    SUCCESS = "success"
    TERMINAL = "terminal"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass
class ChatTurn:
    """Mutable bookkeeping for one request as it moves through the state machine."""

    tenant_id: str
    user_id: Optional[str]
    conversation_id: Optional[str]
    adapter: ProviderAdapter
    request: CanonicalRequest
    content: str = ""
    attachment_refs: List[Attachment] = field(default_factory=list)
    state: TurnState = TurnState.BUILDING
    attempts: int = 0
    credential: Optional[CredentialHandle] = None

    @property
    def provider(self) -> str:
        return self.adapter.name


def apply_inline_markers(content: str, options: ChatOptions) -> ChatOptions:
    """Turn on search or tools when the message carries an inline marker."""
    updates = {}
    if any(marker in content for marker in SEARCH_MARKERS):
        updates["enable_search"] = True
    if any(marker in content for marker in TOOLS_MARKERS):
        updates["enable_tools"] = True
    return options.model_copy(update=updates) if updates else options


class ChatOrchestrator:
    """Drives a chat turn through Building, Dispatching and Persisting.

    A rate-limited dispatch rotates to the next credential and is retried
    exactly once. Any other failure is terminal: it is recorded as a failed
    usage record, written to the conversation as an error artifact, and
    re-raised to the caller.
    """

    MAX_DISPATCH_ATTEMPTS = 2

    def __init__(
        self,
        registry: ProviderRegistry,
        credential_pool: CredentialPool,
        context_store: ContextWindowStore,
        normalizer: AttachmentNormalizer,
        ledger: UsageLedger,
        assistant_name: str = "Pulse AI",
        default_system_prompt: str = "",
        provider_timeout: float = 60.0,
        max_output_tokens: int = 2000,
        temperature: float = 0.7,
    ):
        self.registry = registry
        self.credential_pool = credential_pool
        self.context_store = context_store
        self.normalizer = normalizer
        self.ledger = ledger
        self.assistant_name = assistant_name
        self.default_system_prompt = default_system_prompt
        self.provider_timeout = provider_timeout
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    async def send_message(
        self,
        tenant_id: str,
        user_id: str,
        conversation_id: str,
        content: str,
        attachment_refs: Optional[List[Attachment]] = None,
        options: Optional[ChatOptions] = None,
    ) -> Union[CanonicalResponse, StreamHandle]:
        options = apply_inline_markers(content, options or ChatOptions())
        adapter = self.registry.get(options.provider)
        attachment_refs = list(attachment_refs or [])

        # Building
        history = await self.context_store.get(tenant_id, conversation_id)
        parts = await self.normalizer.normalize(attachment_refs, adapter)
        request = CanonicalRequest(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            system_prompt=options.system_prompt or self.default_system_prompt,
            history=history,
            new_message=content,
            attachments=parts,
            provider=adapter.name,
            model=options.model,
            streaming=options.stream,
            enable_tools=options.enable_tools,
            enable_search=options.enable_search,
            max_tokens=options.max_tokens or self.max_output_tokens,
            temperature=options.temperature if options.temperature is not None else self.temperature,
        )
        turn = ChatTurn(
            tenant_id=tenant_id,
            user_id=user_id,
            conversation_id=conversation_id,
            adapter=adapter,
            request=request,
            content=content,
            attachment_refs=attachment_refs,
        )
        logger.info(
            f"Built request for {tenant_id}/{conversation_id}: {adapter.name}/{options.model}, "
            f"{len(history)} context turns, {len(parts)} of {len(attachment_refs)} attachments"
        )

        if options.stream:
            return StreamHandle(self._stream_turn(turn))

        try:
            wire_request = adapter.translate(request)
            response = await self._with_rotation(turn, self._dispatch, wire_request)
        except GatewayError as e:
            await self._fail(turn, e)
            raise

        await self._persist(turn, response)
        return response

    async def send_direct(
        self,
        tenant_id: str,
        messages: List[Dict[str, Any]],
        model: str,
        provider: str,
        options: Optional[ChatOptions] = None,
        user_id: str = "api_user",
    ) -> CanonicalResponse:
        """Run a single call over caller-supplied messages, with no stored conversation."""
        options = options or ChatOptions()
        adapter = self.registry.get(provider)

        system_prompt = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        dialogue = [m for m in messages if m.get("role") in ("user", "assistant")]
        if not dialogue or dialogue[-1]["role"] != "user":
            raise ValueError("Direct messages must end with a user message")

        request = CanonicalRequest(
            tenant_id=tenant_id,
            system_prompt=system_prompt or options.system_prompt or "",
            history=[ConversationTurn(role=m["role"], content=m["content"]) for m in dialogue[:-1]],
            new_message=dialogue[-1]["content"],
            provider=adapter.name,
            model=model,
            enable_tools=options.enable_tools,
            enable_search=options.enable_search,
            max_tokens=options.max_tokens or self.max_output_tokens,
            temperature=options.temperature if options.temperature is not None else self.temperature,
        )
        turn = ChatTurn(tenant_id=tenant_id, user_id=user_id, conversation_id=None, adapter=adapter, request=request)

        try:
            wire_request = adapter.translate(request)
            response = await self._with_rotation(turn, self._dispatch, wire_request)
        except GatewayError as e:
            await self._fail(turn, e)
            raise

        self._transition(turn, TurnState.PERSISTING)
        await self._record_success(turn, response)
        self._transition(turn, TurnState.DONE)
        return response

    async def close(self) -> None:
        await self.registry.close()
        for store in (self.context_store.store, self.ledger.store):
            close = getattr(store, "close", None)
            if close is not None:
                await close()

    # Dispatching

    async def _with_rotation(self, turn: ChatTurn, operation: Callable[..., Awaitable[Any]], *args) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.MAX_DISPATCH_ATTEMPTS),
            retry=retry_if_exception_type(RateLimitedError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await operation(turn, *args)

    def _acquire(self, turn: ChatTurn) -> CredentialHandle:
        self._transition(turn, TurnState.DISPATCHING)
        turn.attempts += 1
        handle = self.credential_pool.acquire(turn.tenant_id, turn.provider)
        turn.credential = handle
        logger.info(f"Dispatch attempt {turn.attempts} for tenant {turn.tenant_id} using {handle}")
        return handle

    def _rate_limited(self, turn: ChatTurn, handle: CredentialHandle, error: RateLimitedError) -> None:
        self._transition(turn, TurnState.RATE_LIMITED)
        self.credential_pool.report_failure(handle, reason="rate_limit")
        if turn.attempts < self.MAX_DISPATCH_ATTEMPTS:
            credential_rotations.labels(provider=turn.provider).inc()
            logger.warning(f"Rate limited on {handle}; rotating credential and retrying once")
        else:
            logger.warning(f"Rate limited on {handle} after rotation; giving up: {error}")

    async def _dispatch(self, turn: ChatTurn, wire_request: WireRequest) -> CanonicalResponse:
        handle = self._acquire(turn)
        start_time = time.perf_counter()
        try:
            raw = await asyncio.wait_for(
                turn.adapter.execute(wire_request, handle, streaming=False), timeout=self.provider_timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"{turn.provider} did not respond within {self.provider_timeout}s", provider=turn.provider
            ) from e
        except RateLimitedError as e:
            self._rate_limited(turn, handle, e)
            raise

        response = turn.adapter.parse(raw, wire_request)
        self._succeeded(turn, handle, response.model, time.perf_counter() - start_time)
        return response

    def _succeeded(self, turn: ChatTurn, handle: CredentialHandle, model: str, duration: float) -> None:
        self._transition(turn, TurnState.SUCCESS)
        self.credential_pool.report_success(turn.tenant_id, handle)
        model_latency.labels(provider=turn.provider, model=model).observe(duration)

    # Streaming

    async def _open_stream(
        self, turn: ChatTurn, wire_request: WireRequest
    ) -> Tuple[AsyncIterator[StreamChunk], List[StreamChunk], bool]:
        """Open the provider stream and read up to the first text delta.

        Rate limits surface before any text is produced, so reading ahead
        keeps the rotation retry safe: nothing has reached the caller yet.
        """
        handle = self._acquire(turn)
        stream = await turn.adapter.execute(wire_request, handle, streaming=True)
        buffered: List[StreamChunk] = []
        exhausted = False
        opened = False
        try:
            while True:
                try:
                    chunk = await self._next_chunk(turn, stream)
                except StopAsyncIteration:
                    exhausted = True
                    break
                buffered.append(chunk)
                if chunk.delta:
                    break
            opened = True
        except RateLimitedError as e:
            self._rate_limited(turn, handle, e)
            raise
        finally:
            if not opened:
                await stream.aclose()
        return stream, buffered, exhausted

    async def _next_chunk(self, turn: ChatTurn, stream: AsyncIterator[StreamChunk]) -> StreamChunk:
        try:
            return await asyncio.wait_for(stream.__anext__(), timeout=self.provider_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"{turn.provider} stream stalled for {self.provider_timeout}s", provider=turn.provider
            ) from e

    async def _stream_turn(self, turn: ChatTurn) -> AsyncIterator[StreamEvent]:
        stream = None
        text = ""
        input_tokens: Optional[int] = None
        output_tokens: Optional[int] = None

        try:
            wire_request = turn.adapter.translate(turn.request)
            start_time = time.perf_counter()
            stream, pending, exhausted = await self._with_rotation(turn, self._open_stream, wire_request)

            while pending or not exhausted:
                if pending:
                    chunk = pending.pop(0)
                else:
                    try:
                        chunk = await self._next_chunk(turn, stream)
                    except StopAsyncIteration:
                        exhausted = True
                        continue

                if chunk.input_tokens is not None:
                    input_tokens = chunk.input_tokens
                if chunk.output_tokens is not None:
                    output_tokens = chunk.output_tokens
                if chunk.delta:
                    text += chunk.delta
                    yield StreamEvent(type=EventType.DELTA, delta=chunk.delta, accumulated=text)

            model = turn.adapter.logical_model(wire_request["model"])
            response = self._streamed_response(turn, wire_request, model, text, input_tokens, output_tokens)
            self._succeeded(turn, turn.credential, model, time.perf_counter() - start_time)
        except GatewayError as e:
            await self._fail(turn, e)
            raise
        finally:
            if stream is not None:
                await stream.aclose()

        await self._persist(turn, response)
        yield StreamEvent(type=EventType.DONE, accumulated=text, response=response)

    def _streamed_response(
        self,
        turn: ChatTurn,
        wire_request: WireRequest,
        model: str,
        text: str,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
    ) -> CanonicalResponse:
        estimated = input_tokens is None or output_tokens is None
        if input_tokens is None:
            input_tokens = estimate_message_tokens(wire_request.get("messages", []))
            if isinstance(wire_request.get("system"), str):
                input_tokens += estimate_tokens(wire_request["system"])
        if output_tokens is None:
            output_tokens = estimate_tokens(text)

        return CanonicalResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=turn.adapter.estimate_cost(model, input_tokens, output_tokens),
            provider=turn.provider,
            model=model,
            usage_estimated=estimated,
        )

    # Terminal and Persisting

    async def _fail(self, turn: ChatTurn, error: GatewayError) -> None:
        self._transition(turn, TurnState.TERMINAL)
        logger.error(
            f"Chat turn failed for tenant {turn.tenant_id} on {turn.provider} "
            f"after {turn.attempts} attempt(s): {error}"
        )
        error_count.labels(error_type=type(error).__name__).inc()

        await self.ledger.record(
            UsageRecord(
                tenant_id=turn.tenant_id,
                user_id=turn.user_id,
                provider=turn.provider,
                model=turn.request.model,
                status=UsageStatus.FAILED,
                credential_index=turn.credential.index if turn.credential else None,
                error=error.message,
            )
        )
        if turn.conversation_id is not None:
            await self.context_store.record_error(turn.tenant_id, turn.conversation_id, error.user_message)

    async def _persist(self, turn: ChatTurn, response: CanonicalResponse) -> None:
        self._transition(turn, TurnState.PERSISTING)

        user_turn = ConversationTurn(
            role="user",
            content=turn.content,
            attachments=turn.attachment_refs,
            author_name=turn.user_id,
        )
        assistant_turn = ConversationTurn(
            role="assistant",
            content=response.text,
            author_name=f"{self.assistant_name} ({turn.adapter.display_name(response.model)})",
            metadata={
                "model": response.model,
                "provider": response.provider,
                "usage": {
                    "input_tokens": response.input_tokens,
                    "output_tokens": response.output_tokens,
                    "total_tokens": response.total_tokens,
                    "cost": response.cost_estimate,
                    "estimated": response.usage_estimated,
                },
                "context_used": len(turn.request.history),
                "attachments_processed": len(turn.request.attachments),
            },
        )
        await self.context_store.append(turn.tenant_id, turn.conversation_id, user_turn)
        await self.context_store.append(turn.tenant_id, turn.conversation_id, assistant_turn)
        await self._record_success(turn, response)
        self._transition(turn, TurnState.DONE)

    async def _record_success(self, turn: ChatTurn, response: CanonicalResponse) -> None:
        await self.ledger.record(
            UsageRecord(
                tenant_id=turn.tenant_id,
                user_id=turn.user_id,
                provider=turn.provider,
                model=response.model or turn.request.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                cost_estimate=response.cost_estimate,
                status=UsageStatus.SUCCESS,
                credential_index=turn.credential.index if turn.credential else None,
            )
        )
        record_usage(turn.provider, response.model or turn.request.model, response.total_tokens, response.cost_estimate)

    @staticmethod
    def _transition(turn: ChatTurn, state: TurnState) -> None:
        logger.debug(f"Turn {turn.tenant_id}/{turn.conversation_id}: {turn.state.value} -> {state.value}")
        turn.state = state
