"""Anthropic provider implementation for the Meterway gateway."""

from typing import Any, AsyncIterator

from anthropic import AsyncAnthropic

from ...types import (
    AgentConfig,
    ChatFileAttachment,
    ConversationMessage,
    LLMProvider,
    MessageRole,
    StreamDelta,
)
from .base import BaseProvider, Completion, supports_temperature


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider.

    Example:
        provider = AnthropicProvider(api_key="sk-ant-...")
        response = await provider.chat(agent, messages)
    """

    provider_type = LLMProvider.ANTHROPIC

    supported_models = [
        "claude-opus-4-1-20250805",
        "claude-opus-4-20250514",
        "claude-sonnet-4-20250514",
        "claude-3-7-sonnet-latest",
        "claude-3-opus-20240229",
        "claude-3-sonnet-20240229",
        "claude-3-haiku-20240307",
    ]

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
        max_retries: int = 3,
        client: Any = None,
    ):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key. If None, the SDK reads ANTHROPIC_API_KEY.
            base_url: Optional custom base URL.
            timeout: Request timeout in seconds.
            max_retries: Transport retries performed by the SDK.
            client: Pre-built client, used instead of creating one.
        """
        super().__init__()
        if client is None:
            kwargs: dict[str, Any] = {"timeout": timeout, "max_retries": max_retries}
            if api_key:
                kwargs["api_key"] = api_key
            if base_url:
                kwargs["base_url"] = base_url
            client = AsyncAnthropic(**kwargs)
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    def format_attachment(self, attachment: ChatFileAttachment) -> dict[str, Any] | None:
        if attachment.is_image:
            # The API rejects the non-standard image/jpg.
            media_type = "image/jpeg" if attachment.mimetype == "image/jpg" else attachment.mimetype
            return {
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": attachment.data},
            }
        if attachment.is_pdf:
            return {
                "type": "document",
                "source": {
                    "type": "base64",
                    "media_type": "application/pdf",
                    "data": attachment.data,
                },
            }
        return None

    def _build_kwargs(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> dict[str, Any]:
        # No system role in the Messages API: fold system turns into `system`.
        system_parts = [system]
        conversation = []
        for message in messages:
            if message.role == MessageRole.SYSTEM:
                system_parts.append(message.content)
            else:
                conversation.append(message)

        kwargs: dict[str, Any] = {
            "model": agent.model,
            "max_tokens": agent.max_tokens,
            "system": "\n\n".join(system_parts),
            "messages": self.format_messages(conversation, attachments) if conversation else [],
        }
        if supports_temperature(agent.model):
            kwargs["temperature"] = agent.temperature
        return kwargs

    async def _complete(
        self,
        agent: AgentConfig,
        messages: list[ConversationMessage],
        system: str,
        attachments: list[ChatFileAttachment] | None,
    ) -> Completion:
        response = await self._client.messages.create(
            **self._build_kwargs(agent, messages, system, attachments)
        )

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = response.usage
        return Completion(
            content=content,
            prompt_tokens=usage.input_tokens if usage else None,
            completion_tokens=usage.output_tokens if usage else None,
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

        stream = await self._client.messages.create(**kwargs)
        try:
            async for event in stream:
                if event.type == "message_start":
                    usage = event.message.usage
                    yield StreamDelta(prompt_tokens=usage.input_tokens if usage else None)
                elif event.type == "content_block_delta":
                    if getattr(event.delta, "type", None) == "text_delta":
                        yield StreamDelta(text=event.delta.text)
                elif event.type == "message_delta":
                    usage = getattr(event, "usage", None)
                    if usage is not None:
                        yield StreamDelta(completion_tokens=usage.output_tokens)
        finally:
            await stream.close()
