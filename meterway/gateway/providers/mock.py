"""Mock provider for testing Meterway without external API calls."""

import asyncio
from typing import Any, AsyncIterator

from ...types import (
    AgentConfig,
    ChatFileAttachment,
    ConversationMessage,
    LLMProvider,
    StreamDelta,
)
from .base import BaseProvider, Completion


class MockProvider(BaseProvider):
    """Scripted provider for tests and local development.

    Streams ``chunks`` in order, then reports ``usage`` as a trailing delta
    (omitted when ``usage`` is None). With ``fail_after=n`` the stream raises
    ``error`` after ``n`` chunks and buffered calls raise it immediately.

    Example:
        provider = MockProvider(
            chunks=["Hello", ", world"],
            usage=(12, 4),
            fail_after=1,
        )
    """

    provider_type = LLMProvider.OPENAI

    def __init__(
        self,
        chunks: list[str] | None = None,
        usage: tuple[int, int] | None = (100, 50),
        fail_after: int | None = None,
        error: Exception | None = None,
        provider_type: LLMProvider | str | None = None,
        latency_ms: float = 0,
    ):
        """Initialize mock provider.

        Args:
            chunks: Text increments to stream. Buffered calls return them joined.
            usage: (prompt_tokens, completion_tokens) to report, or None.
            fail_after: Number of chunks to emit before failing.
            error: Exception raised on failure.
            provider_type: Provider to impersonate. Defaults to OpenAI.
            latency_ms: Simulated delay before each chunk.
        """
        if provider_type is not None:
            self.provider_type = LLMProvider(provider_type)
        super().__init__()
        self._chunks = list(chunks) if chunks is not None else ["This is a mock response."]
        self._usage = usage
        self._fail_after = fail_after
        self._error = error or RuntimeError("Simulated provider failure")
        self._latency_ms = latency_ms
        self._call_log: list[dict[str, Any]] = []

    @property
    def call_log(self) -> list[dict[str, Any]]:
        """Requests received, in order."""
        return self._call_log

    def _log_call(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
        stream: bool,
    ) -> None:
        self._call_log.append({
            "model": agent.model,
            "system": system,
            "messages": self.format_messages(messages, attachments),
            "stream": stream,
        })

    async def _complete(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> Completion:
        self._log_call(agent, messages, system, attachments, stream=False)
        await asyncio.sleep(self._latency_ms / 1000)

        if self._fail_after is not None:
            raise self._error

        prompt_tokens, completion_tokens = self._usage or (None, None)
        return Completion(
            content="".join(self._chunks),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )

    async def _stream_deltas(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> AsyncIterator[StreamDelta]:
        self._log_call(agent, messages, system, attachments, stream=True)

        for index, chunk in enumerate(self._chunks):
            if self._fail_after is not None and index >= self._fail_after:
                raise self._error
            await asyncio.sleep(self._latency_ms / 1000)
            yield StreamDelta(text=chunk)

        if self._fail_after is not None:
            raise self._error

        if self._usage is not None:
            prompt_tokens, completion_tokens = self._usage
            yield StreamDelta(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)

    def reset(self) -> None:
        """Reset call log and metrics."""
        self._call_log.clear()
        self.reset_metrics()
