"""OpenRouter provider implementation for the Meterway gateway.

OpenRouter's API is OpenAI-compatible, using the same SDK with a different
base URL. Model ids are namespaced as ``vendor/model``.
"""

from typing import Any

from ...exceptions import ModelUnavailableError
from ...types import AgentConfig, ChatFileAttachment, LLMProvider
from .openai import OpenAIProvider


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter provider.

    Accepts images as ``image_url`` parts and PDFs as ``file`` parts.

    Example:
        provider = OpenRouterProvider(api_key="sk-or-...", app_name="My App")
        response = await provider.chat(agent, messages)
    """

    provider_type = LLMProvider.OPENROUTER

    supported_models = [
        "anthropic/claude-3.5-sonnet",
        "anthropic/claude-3-opus",
        "anthropic/claude-3-sonnet",
        "anthropic/claude-3-haiku",
        "openai/gpt-4o",
        "openai/gpt-4o-mini",
        "openai/gpt-4-turbo",
        "openai/gpt-4",
        "openai/gpt-3.5-turbo",
        "openai/o1-preview",
        "openai/o1-mini",
    ]

    OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
        max_retries: int = 3,
        site_url: str | None = None,
        app_name: str | None = None,
        client: Any = None,
    ):
        """Initialize OpenRouter provider.

        Args:
            api_key: OpenRouter API key.
            base_url: Optional custom base URL.
            timeout: Request timeout in seconds.
            max_retries: Transport retries performed by the SDK.
            site_url: Sent as ``HTTP-Referer`` for OpenRouter attribution.
            app_name: Sent as ``X-Title`` for OpenRouter attribution.
            client: Pre-built client, used instead of creating one.
        """
        headers: dict[str, str] = {}
        if site_url:
            headers["HTTP-Referer"] = site_url
        if app_name:
            headers["X-Title"] = app_name

        super().__init__(
            api_key=api_key,
            base_url=base_url or self.OPENROUTER_BASE_URL,
            timeout=timeout,
            max_retries=max_retries,
            default_headers=headers or None,
            client=client,
        )

    def validate_request(self, agent: AgentConfig) -> None:
        if "/" not in agent.model:
            raise ModelUnavailableError(
                self.provider_type.value,
                agent.model,
                "OpenRouter model ids must look like 'vendor/model'",
            )

    def format_attachment(self, attachment: ChatFileAttachment) -> dict[str, Any] | None:
        if attachment.is_pdf:
            return {
                "type": "file",
                "file": {
                    "filename": attachment.filename or "document.pdf",
                    "file_data": f"data:application/pdf;base64,{attachment.data}",
                },
            }
        return super().format_attachment(attachment)
