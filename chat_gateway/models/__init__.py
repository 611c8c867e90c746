from .chat import (
    Attachment,
    CanonicalRequest,
    CanonicalResponse,
    ChatOptions,
    ConversationTurn,
    NormalizedPart,
    PartKind,
    StreamChunk,
    UsageBucket,
    UsageRecord,
    UsageStatus,
    UsageSummary,
    utcnow,
)

__all__ = [
    "Attachment",
    "CanonicalRequest",
    "CanonicalResponse",
    "ChatOptions",
    "ConversationTurn",
    "NormalizedPart",
    "PartKind",
    "StreamChunk",
    "UsageBucket",
    "UsageRecord",
    "UsageStatus",
    "UsageSummary",
    "utcnow",
]
