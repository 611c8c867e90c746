from .sse import encode_sse, sse_response
from .stream_handle import EventType, StreamEvent, StreamHandle

__all__ = ["EventType", "StreamEvent", "StreamHandle", "encode_sse", "sse_response"]
