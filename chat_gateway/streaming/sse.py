"""Server-sent events transport for streamed chat turns."""
import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi.responses import StreamingResponse

from .stream_handle import EventType, StreamHandle

logger = logging.getLogger(__name__)

DONE_SENTINEL = "data: [DONE]\n\n"


def _frame(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


async def encode_sse(handle: StreamHandle) -> AsyncIterator[str]:
    try:
        async for event in handle:
            if event.type == EventType.DELTA:
                yield _frame({"type": "chunk", "content": event.delta, "accumulated": event.accumulated})
            elif event.type == EventType.DONE:
                response = event.response
                yield _frame(
                    {
                        "type": "done",
                        "content": response.text,
                        "usage": {
                            "input_tokens": response.input_tokens,
                            "output_tokens": response.output_tokens,
                            "total_tokens": response.total_tokens,
                            "cost": response.cost_estimate,
                        },
                    }
                )
            elif event.type == EventType.ERROR:
                logger.error(f"Streaming error: {event.error}")
                yield _frame({"type": "error", "error": event.error.user_message})
        yield DONE_SENTINEL
    finally:
        # Runs on client disconnect too, which discards the turn.
        await handle.aclose()


def sse_response(handle: StreamHandle) -> StreamingResponse:
    return StreamingResponse(
        encode_sse(handle),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
