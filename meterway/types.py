"""Core types and data models for Meterway."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"


class MessageRole(str, Enum):
    """Role of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class RequestType(str, Enum):
    """Kind of request a usage record was written for."""

    CHAT = "chat"
    CHAT_STREAM = "chat_stream"
    CHAT_STREAM_PARTIAL = "chat_stream_partial"


class StreamState(str, Enum):
    """Lifecycle of a multiplexed stream."""

    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Chat Contract
# =============================================================================


class AgentConfig(BaseModel):
    """Per-conversation agent configuration. Read-only for the gateway."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    provider: LLMProvider
    model: str
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=4096, gt=0)
    system_prompt: str = ""


class ResponseMetadata(BaseModel):
    """Token and cost breakdown attached to a generated response."""

    model: str
    tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_cost: float = 0.0
    processing_time: int | None = Field(default=None, description="Milliseconds")
    files: list[str] | None = None


class ConversationMessage(BaseModel):
    """A message in a conversation history."""

    role: MessageRole
    content: str
    timestamp: datetime | None = None
    metadata: ResponseMetadata | None = None


class ChatFileAttachment(BaseModel):
    """A file attached to the newest user message."""

    filename: str | None = None
    mimetype: str
    size: int | None = None
    data: str = Field(description="Base64 encoded file content")

    @property
    def is_image(self) -> bool:
        return self.mimetype.startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return self.mimetype == "application/pdf"


class ChatRequest(BaseModel):
    """A single chat call made through the gateway."""

    agent: AgentConfig
    messages: list[ConversationMessage] = Field(min_length=1)
    project_files: list[str] | None = None
    attachments: list[ChatFileAttachment] | None = None
    user_id: str | None = None
    project_id: str | None = None
    conversation_id: str | None = None
    stream: bool = False


class ChatResponse(BaseModel):
    """Final text of a chat call plus its metadata."""

    content: str
    metadata: ResponseMetadata


# =============================================================================
# Streaming
# =============================================================================


class StreamDelta(BaseModel):
    """One normalized chunk of a provider's native stream.

    Usage counts are cumulative as reported by the provider; either part may
    be missing on any given chunk.
    """

    text: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class TextChunk(BaseModel):
    """A content increment yielded while streaming."""

    type: Literal["chunk"] = "chunk"
    content: str


class StreamComplete(BaseModel):
    """Terminal event of a successful stream."""

    type: Literal["complete"] = "complete"
    response: ChatResponse


class StreamErrorEvent(BaseModel):
    """Terminal event of a failed stream, as framed for the wire."""

    type: Literal["error"] = "error"
    error: str
    code: str | None = None


StreamEvent = TextChunk | StreamComplete


# =============================================================================
# Usage Accounting
# =============================================================================


class UsageContext(BaseModel):
    """Correlation ids attached to every usage record of a request."""

    user_id: str
    project_id: str | None = None
    agent_id: str | None = None
    conversation_id: str | None = None


class TokenUsageRecord(BaseModel):
    """Append-only record of tokens consumed by one logical request."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    project_id: str | None = None
    agent_id: str | None = None
    conversation_id: str | None = None
    provider: LLMProvider
    model: str
    prompt_tokens: int = Field(ge=0)
    completion_tokens: int = Field(ge=0)
    total_tokens: int = Field(ge=0)
    estimated_cost: float = 0.0
    request_type: RequestType = RequestType.CHAT
    created_at: datetime = Field(default_factory=utcnow)


class ModelUsage(BaseModel):
    """Usage aggregated for one model."""

    tokens: int = 0
    cost: float = 0.0
    requests: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ProviderUsage(BaseModel):
    """Usage aggregated for one provider."""

    tokens: int = 0
    cost: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    models: dict[str, ModelUsage] = Field(default_factory=dict)


class UsageSummary(BaseModel):
    """Usage aggregated over a set of records."""

    total_tokens: int = 0
    total_cost: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    by_provider: dict[str, ProviderUsage] = Field(default_factory=dict)


class DailyUsage(BaseModel):
    """Usage of one model on one UTC day."""

    provider: LLMProvider
    model: str
    usage_date: date
    request_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0


class ConversationUsage(BaseModel):
    """Totals for one conversation."""

    request_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0


# =============================================================================
# Quotas
# =============================================================================


class UserAccount(BaseModel):
    """The slice of a user the quota check needs."""

    id: str
    is_active: bool = True
    token_limit_global: int | None = Field(default=None, ge=0)
    token_limit_monthly: int | None = Field(default=None, ge=0)


class UsageTotals(BaseModel):
    """Tokens consumed all-time and in the current calendar month."""

    total_tokens: int = 0
    monthly_tokens: int = 0


class TokenLimits(BaseModel):
    """Effective limits. Zero means unlimited."""

    global_limit: int = Field(default=0, ge=0)
    monthly_limit: int = Field(default=0, ge=0)


class RemainingQuota(BaseModel):
    """Tokens left before each limit. -1 means unlimited."""

    model_config = ConfigDict(populate_by_name=True)

    global_: int = Field(alias="global")
    monthly: int


class QuotaDecision(BaseModel):
    """Outcome of an admission check."""

    allowed: bool
    current_usage: UsageTotals
    limits: TokenLimits
    remaining: RemainingQuota
