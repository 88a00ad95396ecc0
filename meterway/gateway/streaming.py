"""Streaming multiplexer and SSE framing.

A provider's native stream is normalized into ``StreamDelta`` values by its
adapter. The multiplexer turns those into one lazy sequence of
``TextChunk`` events followed by a single ``StreamComplete``, and makes sure
exactly one usage record is written per stream, even when it fails or is
abandoned part way through.
"""

import time
from contextlib import aclosing
from typing import AsyncIterator, Callable

from ..exceptions import MeterwayError
from ..metering.pricing import calculate_cost, estimate_tokens
from ..metering.recorder import UsageRecorder
from ..types import (
    ChatResponse,
    LLMProvider,
    RequestType,
    ResponseMetadata,
    StreamComplete,
    StreamDelta,
    StreamErrorEvent,
    StreamEvent,
    StreamState,
    TextChunk,
    UsageContext,
)
from ..utils.logging import StructuredLogger

GENERIC_STREAM_ERROR = "An unexpected error occurred while generating the response."


class StreamingMultiplexer:
    """Single-use wrapper around one provider stream.

    Example:
        mux = StreamingMultiplexer(LLMProvider.OPENAI, "gpt-4o", recorder=recorder, context=ctx)
        async for event in mux.stream(deltas):
            if isinstance(event, TextChunk):
                print(event.content, end="")
            else:
                print(event.response.metadata.tokens)
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        files: list[str] | None = None,
        recorder: UsageRecorder | None = None,
        context: UsageContext | None = None,
        on_complete: Callable[[ChatResponse], None] | None = None,
    ):
        self.provider = provider
        self.model = model
        self.files = files
        self.state = StreamState.IDLE
        self._recorder = recorder
        self._context = context
        self._on_complete = on_complete
        self._usage_recorded = False
        self._log = StructuredLogger("streaming").with_context(
            provider=provider.value, model=model
        )

    async def stream(self, deltas: AsyncIterator[StreamDelta]) -> AsyncIterator[StreamEvent]:
        """Consume ``deltas`` and yield chunk events, then one completion event.

        The source is closed on every exit path. Errors from the source are
        re-raised after partial usage has been recorded.
        """
        parts: list[str] = []
        prompt_tokens = 0
        completion_tokens = 0
        completion_reported = False
        started = time.perf_counter()
        self.state = StreamState.STREAMING

        try:
            async with aclosing(deltas) as source:
                async for delta in source:
                    # Providers report cumulative counts at varying positions.
                    if delta.prompt_tokens is not None:
                        prompt_tokens = max(prompt_tokens, delta.prompt_tokens)
                    if delta.completion_tokens is not None:
                        completion_tokens = max(completion_tokens, delta.completion_tokens)
                        completion_reported = True
                    if delta.text:
                        parts.append(delta.text)
                        yield TextChunk(content=delta.text)

            content = "".join(parts)
            if not completion_reported:
                completion_tokens = self._estimate_completion(content)

            response = ChatResponse(
                content=content,
                metadata=ResponseMetadata(
                    model=self.model,
                    tokens=prompt_tokens + completion_tokens,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    estimated_cost=calculate_cost(
                        self.provider, self.model, prompt_tokens, completion_tokens
                    ),
                    processing_time=int((time.perf_counter() - started) * 1000),
                    files=self.files,
                ),
            )

            self._usage_recorded = True
            await self._record(RequestType.CHAT_STREAM, prompt_tokens, completion_tokens)
            self.state = StreamState.COMPLETED
            if self._on_complete is not None:
                self._on_complete(response)

            yield StreamComplete(response=response)

        finally:
            if not self._usage_recorded:
                self.state = StreamState.FAILED
                self._usage_recorded = True
                if parts:
                    partial_completion = completion_tokens
                    if not completion_reported:
                        partial_completion = self._estimate_completion("".join(parts))
                    self._log.warning(
                        "Stream ended early, recording partial usage",
                        chunks=len(parts),
                        prompt_tokens=prompt_tokens,
                        completion_tokens=partial_completion,
                    )
                    await self._record(
                        RequestType.CHAT_STREAM_PARTIAL, prompt_tokens, partial_completion
                    )

    def _estimate_completion(self, content: str) -> int:
        estimate = estimate_tokens(content)
        # Prompt tokens are not estimated; totals undercount when usage is missing.
        self._log.warning(
            "Provider reported no completion usage, using estimate",
            completion_tokens=estimate,
        )
        return estimate

    async def _record(
        self,
        request_type: RequestType,
        prompt_tokens: int,
        completion_tokens: int,
    ) -> None:
        if self._recorder is None or self._context is None:
            return
        try:
            await self._recorder.record(
                self._context,
                self.provider,
                self.model,
                prompt_tokens,
                completion_tokens,
                request_type,
            )
        except Exception as e:
            self._log.error("Failed to record stream usage", request_type=request_type.value, error=e)


def _frame(payload: str) -> str:
    return f"data: {payload}\n\n"


async def sse_events(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """Frame a chat stream as server-sent events.

    Each event becomes ``data: <json>\\n\\n``. A failure ends the stream with
    one ``error`` event carrying the user-safe message and error code.
    """
    log = StructuredLogger("sse")
    try:
        async with aclosing(events) as source:
            async for event in source:
                yield _frame(event.model_dump_json())
    except MeterwayError as e:
        log.warning("Stream failed", code=e.code.value, error=e.message)
        yield _frame(StreamErrorEvent(error=e.user_message, code=e.code.value).model_dump_json())
    except Exception as e:
        log.exception("Stream failed with unexpected error", error=e)
        yield _frame(StreamErrorEvent(error=GENERIC_STREAM_ERROR).model_dump_json())
