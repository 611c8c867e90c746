"""Caller-facing handle over an in-flight streamed chat turn."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from ..errors import GatewayError
from ..models import CanonicalResponse

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    DELTA = "delta"
    DONE = "done"
    ERROR = "error"


@dataclass
class StreamEvent:
    type: EventType
    delta: str = ""
    accumulated: str = ""
    response: Optional[CanonicalResponse] = None
    error: Optional[GatewayError] = None


class StreamHandle:
    """Async iterator of text deltas, ending in one ``done`` or ``error`` event.

    Any error raised by the underlying turn becomes a single error event
    so transports can report it before terminating. ``aclose`` abandons the
    turn: the provider stream is closed and nothing is persisted.
    """

    def __init__(self, events: AsyncIterator[StreamEvent]):
        self._events = events
        self._finished = False
        self.accumulated = ""
        self.response: Optional[CanonicalResponse] = None
        self.error: Optional[GatewayError] = None

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> "StreamHandle":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration

        try:
            event = await self._events.__anext__()
        except StopAsyncIteration:
            self._finished = True
            raise
        except GatewayError as e:
            return self._error_event(e)
        except Exception as e:
            logger.exception("Streamed turn failed outside the provider call")
            error = GatewayError(f"Failed to complete the streamed response: {e}")
            error.__cause__ = e
            return self._error_event(error)

        if event.type == EventType.DELTA:
            self.accumulated = event.accumulated
        elif event.type == EventType.DONE:
            self.response = event.response
            self._finished = True
        return event

    def _error_event(self, error: GatewayError) -> StreamEvent:
        self._finished = True
        self.error = error
        return StreamEvent(type=EventType.ERROR, accumulated=self.accumulated, error=error)

    async def aclose(self) -> None:
        if not self._finished:
            logger.info("Stream closed by caller before completion; turn discarded")
        self._finished = True
        await self._events.aclose()

    async def collect(self) -> CanonicalResponse:
        """Drain the stream and return the final response, raising on error."""
        async for _ in self:
            pass
        if self.error is not None:
            raise self.error
        return self.response
