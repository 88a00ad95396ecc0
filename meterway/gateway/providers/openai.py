"""OpenAI provider implementation for the Meterway gateway."""

from typing import Any, AsyncIterator

from openai import AsyncOpenAI

from ...types import (
    AgentConfig,
    ChatFileAttachment,
    ConversationMessage,
    LLMProvider,
    StreamDelta,
)
from .base import BaseProvider, Completion, supports_temperature


class OpenAIProvider(BaseProvider):
    """OpenAI Chat Completions provider.

    Reasoning models (o1, o3, o4-mini, gpt-5) get no temperature and receive
    their output budget as ``max_completion_tokens``.

    Example:
        provider = OpenAIProvider(api_key="sk-...")
        response = await provider.chat(agent, messages)
    """

    provider_type = LLMProvider.OPENAI

    supported_models = [
        "gpt-5",
        "gpt-5-high",
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "gpt-4",
        "gpt-3.5-turbo",
        "o3",
        "o1",
        "o4-mini",
    ]

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
        max_retries: int = 3,
        default_headers: dict[str, str] | None = None,
        client: Any = None,
    ):
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key. If None, the SDK reads OPENAI_API_KEY.
            base_url: Optional custom base URL.
            timeout: Request timeout in seconds.
            max_retries: Transport retries performed by the SDK.
            default_headers: Extra headers sent with every request.
            client: Pre-built client, used instead of creating one.
        """
        super().__init__()
        if client is None:
            kwargs: dict[str, Any] = {"timeout": timeout, "max_retries": max_retries}
            if api_key:
                kwargs["api_key"] = api_key
            if base_url:
                kwargs["base_url"] = base_url
            if default_headers:
                kwargs["default_headers"] = default_headers
            client = AsyncOpenAI(**kwargs)
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    def _build_kwargs(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": agent.model,
            "messages": [
                {"role": "system", "content": system},
                *self.format_messages(messages, attachments),
            ],
        }
        if supports_temperature(agent.model):
            kwargs["temperature"] = agent.temperature
            kwargs["max_tokens"] = agent.max_tokens
        else:
            kwargs["max_completion_tokens"] = agent.max_tokens
        return kwargs

    async def _complete(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> Completion:
        response = await self._client.chat.completions.create(
            **self._build_kwargs(agent, messages, system, attachments)
        )

        content = response.choices[0].message.content if response.choices else None
        usage = response.usage
        return Completion(
            content=content or "",
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )

    async def _stream_deltas(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> AsyncIterator[StreamDelta]:
        kwargs = self._build_kwargs(agent, messages, system, attachments)
        kwargs["stream"] = True
        # Usage arrives in a trailing chunk with no choices.
        kwargs["stream_options"] = {"include_usage": True}

        stream = await self._client.chat.completions.create(**kwargs)
        try:
            async for chunk in stream:
                text = chunk.choices[0].delta.content if chunk.choices else None
                usage = getattr(chunk, "usage", None)
                yield StreamDelta(
                    text=text,
                    prompt_tokens=usage.prompt_tokens if usage else None,
                    completion_tokens=usage.completion_tokens if usage else None,
                )
        finally:
            await stream.close()
