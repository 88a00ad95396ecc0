"""Base provider interface for the Meterway gateway.

All provider adapters inherit from BaseProvider. The base class owns the
request-construction rules shared by every provider, error classification,
usage fallback and per-adapter metrics. Subclasses only translate to and
from their provider's wire format.
"""

import time
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator

from ...exceptions import MeterwayError
from ...metering.pricing import calculate_cost, estimate_tokens
from ...metering.recorder import UsageRecorder
from ...types import (
    AgentConfig,
    ChatFileAttachment,
    ChatResponse,
    ConversationMessage,
    LLMProvider,
    MessageRole,
    ResponseMetadata,
    StreamDelta,
    StreamEvent,
    UsageContext,
)
from ...utils.logging import StructuredLogger
from ..classifier import classify_error
from ..streaming import StreamingMultiplexer

LANGUAGE_INSTRUCTION = (
    "Always respond in the same language as the user's input, "
    "unless the user explicitly asks for a different language."
)

# Models that reject a custom temperature; matched as substrings.
TEMPERATURE_DENYLIST = ("o1", "o3", "o4-mini", "gpt-5")


def supports_temperature(model: str) -> bool:
    """Whether ``model`` accepts a custom temperature."""
    return not any(marker in model for marker in TEMPERATURE_DENYLIST)


def build_system_content(agent: AgentConfig, project_files: list[str] | None = None) -> str:
    """System prompt, rendered project files and the language instruction."""
    content = agent.system_prompt
    if project_files:
        content += "\n\nProject Files:\n" + "\n\n".join(project_files)
    return f"{content}\n\n{LANGUAGE_INSTRUCTION}"


@dataclass
class Completion:
    """A buffered provider result before usage fallback and pricing."""

    content: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class BaseProvider(ABC):
    """Abstract base class for provider adapters.

    Subclasses implement ``_complete`` and ``_stream_deltas`` against their
    SDK client and may override the formatting hooks.

    Example:
        class EchoProvider(BaseProvider):
            provider_type = LLMProvider.OPENAI

            async def _complete(self, agent, messages, system, attachments):
                return Completion(content=messages[-1].content)

            async def _stream_deltas(self, agent, messages, system, attachments):
                yield StreamDelta(text=messages[-1].content)
    """

    # Provider identifier
    provider_type: LLMProvider

    # Models this adapter is known to serve
    supported_models: list[str] = []

    def __init__(self):
        """Initialize the base provider."""
        self._total_calls = 0
        self._total_tokens = 0
        self._total_cost = 0.0
        self._total_latency_ms = 0.0
        self._log = StructuredLogger("providers").with_context(
            provider=self.provider_type.value
        )

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def chat(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        project_files: list[str] | None = None,
        attachments: list[ChatFileAttachment] | None = None,
    ) -> ChatResponse:
        """Send a buffered chat request.

        Args:
            agent: Agent configuration (model, temperature, system prompt).
            messages: Conversation history, oldest first. The last one is new.
            project_files: Text files appended to the system content.
            attachments: Files attached to the last user message.

        Returns:
            ChatResponse with content and token metadata.

        Raises:
            ProviderError: Classified provider failure.
        """
        self.validate_request(agent)
        system = build_system_content(agent, project_files)
        start_time = time.perf_counter()

        try:
            result = await self._complete(agent, messages, system, attachments)
            if not result.content:
                raise ValueError(f"Empty response from {self.provider_type.value}")
        except MeterwayError:
            raise
        except Exception as e:
            raise self._classify(e, agent.model) from e

        latency_ms = (time.perf_counter() - start_time) * 1000

        prompt_tokens = result.prompt_tokens or 0
        completion_tokens = result.completion_tokens
        if completion_tokens is None:
            completion_tokens = estimate_tokens(result.content)
            self._log.warning(
                "Provider reported no usage, estimating completion tokens",
                model=agent.model,
                completion_tokens=completion_tokens,
            )

        cost = calculate_cost(self.provider_type, agent.model, prompt_tokens, completion_tokens)
        response = ChatResponse(
            content=result.content,
            metadata=ResponseMetadata(
                model=agent.model,
                tokens=prompt_tokens + completion_tokens,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                estimated_cost=cost,
                processing_time=int(latency_ms),
                files=project_files,
            ),
        )

        self.record_metrics(prompt_tokens + completion_tokens, cost, latency_ms)
        self._log.info(
            "AI chat completed",
            model=agent.model,
            tokens=response.metadata.tokens,
            latency_ms=int(latency_ms),
        )
        return response

    def stream_chat(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        project_files: list[str] | None = None,
        attachments: list[ChatFileAttachment] | None = None,
        recorder: UsageRecorder | None = None,
        context: UsageContext | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Start a streaming chat request.

        Validation happens immediately; the provider is only contacted once
        the returned iterator is consumed.

        Returns:
            Async iterator of ``TextChunk`` events followed by one
            ``StreamComplete``.

        Raises:
            ModelUnavailableError: If the model id is malformed for this provider.
        """
        self.validate_request(agent)
        system = build_system_content(agent, project_files)
        multiplexer = StreamingMultiplexer(
            self.provider_type,
            agent.model,
            files=project_files,
            recorder=recorder,
            context=context,
            on_complete=self._record_stream_metrics,
        )
        deltas = self._stream_deltas(agent, messages, system, attachments)
        return multiplexer.stream(self._classified(deltas, agent.model))

    # =========================================================================
    # ADAPTER HOOKS
    # =========================================================================

    @abstractmethod
    async def _complete(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> Completion:
        """Perform one buffered provider call."""

    @abstractmethod
    def _stream_deltas(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> AsyncIterator[StreamDelta]:
        """Open the provider stream and normalize it into deltas."""

    def validate_request(self, agent: AgentConfig) -> None:
        """Reject requests that must fail before any network call."""

    def format_message(self, message: ConversationMessage) -> dict[str, Any]:
        return {"role": message.role.value, "content": message.content}

    def format_attachment(self, attachment: ChatFileAttachment) -> dict[str, Any] | None:
        """Content block for an attachment, or None to drop it.

        Default is the OpenAI ``image_url`` convention with PDFs dropped.
        """
        if attachment.is_image:
            return {
                "type": "image_url",
                "image_url": {"url": f"data:{attachment.mimetype};base64,{attachment.data}"},
            }
        return None

    def format_messages(
        self,
        messages: list[ConversationMessage],
        attachments: list[ChatFileAttachment] | None = None,
    ) -> list[dict[str, Any]]:
        """Translate history verbatim and expand the last user message.

        Args:
            messages: Conversation history, oldest first.
            attachments: Files for the last message; ignored unless it is a
                user message.

        Returns:
            List of message dicts for the API.
        """
        formatted = [self.format_message(m) for m in messages[:-1]]
        last = messages[-1]

        if last.role == MessageRole.USER and attachments:
            blocks: list[dict[str, Any]] = [{"type": "text", "text": last.content}]
            for attachment in attachments:
                block = self.format_attachment(attachment)
                if block is not None:
                    blocks.append(block)
            formatted.append({"role": last.role.value, "content": blocks})
        else:
            formatted.append(self.format_message(last))

        return formatted

    # =========================================================================
    # ERRORS
    # =========================================================================

    def _classify(self, error: Exception, model: str) -> MeterwayError:
        classified = classify_error(error, self.provider_type, model)
        self._log.error(
            "AI provider call failed",
            model=model,
            code=classified.code.value,
            error_type=type(error).__name__,
            error=error,
        )
        return classified

    async def _classified(
        self,
        deltas: AsyncIterator[StreamDelta],
        model: str,
    ) -> AsyncIterator[StreamDelta]:
        try:
            async with aclosing(deltas) as source:
                async for delta in source:
                    yield delta
        except MeterwayError:
            raise
        except Exception as e:
            raise self._classify(e, model) from e

    # =========================================================================
    # METRICS
    # =========================================================================

    def record_metrics(self, tokens: int, cost: float, latency_ms: float) -> None:
        """Record metrics for one completed call."""
        self._total_calls += 1
        self._total_tokens += tokens
        self._total_cost += cost
        self._total_latency_ms += latency_ms

    def _record_stream_metrics(self, response: ChatResponse) -> None:
        self.record_metrics(
            response.metadata.tokens,
            response.metadata.estimated_cost,
            float(response.metadata.processing_time or 0),
        )

    def get_metrics(self) -> dict[str, Any]:
        """Get provider metrics.

        Returns:
            Dict of metrics.
        """
        return {
            "total_calls": self._total_calls,
            "total_tokens": self._total_tokens,
            "total_cost": self._total_cost,
            "total_latency_ms": self._total_latency_ms,
            "avg_latency_ms": (
                self._total_latency_ms / self._total_calls if self._total_calls > 0 else 0
            ),
        }

    def reset_metrics(self) -> None:
        """Reset provider metrics."""
        self._total_calls = 0
        self._total_tokens = 0
        self._total_cost = 0.0
        self._total_latency_ms = 0.0
