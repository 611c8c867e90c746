from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Attachment(BaseModel):
    """Reference to a file the caller attached to a message."""

    url: str
    mime_type: str = Field(alias="type")
    name: str = "attachment"
    size: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return "pdf" in self.mime_type

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/")


class PartKind(str, Enum):
    INLINE_IMAGE = "inline_image"
    INLINE_DOCUMENT = "inline_document"
    EXTRACTED_TEXT = "extracted_text"


class NormalizedPart(BaseModel):
    """An attachment converted into the inline form a provider accepts."""

    kind: PartKind
    mime_type: str
    name: str
    data: Optional[str] = None  # base64 payload for inline parts
    text: Optional[str] = None  # extracted text

    @property
    def is_multimodal(self) -> bool:
        return self.kind in (PartKind.INLINE_IMAGE, PartKind.INLINE_DOCUMENT)


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    attachments: List[Attachment] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
    is_error: bool = False
    author_name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ChatOptions(BaseModel):
    provider: str = "openai"
    model: str = "gpt-4o"
    stream: bool = False
    enable_tools: bool = False
    enable_search: bool = False
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    system_prompt: Optional[str] = None


class CanonicalRequest(BaseModel):
    """Provider-agnostic representation of one chat call."""

    tenant_id: str
    conversation_id: Optional[str] = None
    system_prompt: str = ""
    history: List[ConversationTurn] = Field(default_factory=list)
    new_message: str
    attachments: List[NormalizedPart] = Field(default_factory=list)
    provider: str
    model: str
    streaming: bool = False
    enable_tools: bool = False
    enable_search: bool = False
    max_tokens: int = 2000
    temperature: float = 0.7

    @property
    def has_multimodal_parts(self) -> bool:
        return any(part.is_multimodal for part in self.attachments)


class CanonicalResponse(BaseModel):
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_estimate: float = 0.0
    provider: Optional[str] = None
    model: Optional[str] = None
    usage_estimated: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class StreamChunk(BaseModel):
    """Incremental piece of a streamed provider response."""

    delta: str = ""
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class UsageStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class UsageRecord(BaseModel):
    """Accountable record of one provider call. Never mutated once written."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    user_id: Optional[str] = None
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_estimate: float = 0.0
    status: UsageStatus
    timestamp: datetime = Field(default_factory=utcnow)
    credential_index: Optional[int] = None
    error: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageBucket(BaseModel):
    messages: int = 0
    tokens: int = 0
    cost: float = 0.0


class UsageSummary(BaseModel):
    total_messages: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    by_provider: Dict[str, UsageBucket] = Field(default_factory=dict)
    by_model: Dict[str, UsageBucket] = Field(default_factory=dict)
    by_user: Dict[str, UsageBucket] = Field(default_factory=dict)
