"""Gateway - the single entry point for metered chat calls.

FLOW:
1. Caller sends a ChatRequest to gateway.chat()
2. Gateway checks the user's token QUOTA
3. Gateway routes to the PROVIDER adapter
4. Gateway records USAGE (streams record their own)
5. Gateway returns the response or the event stream

Gateway orchestrates: Quota -> Provider -> (Streaming) -> Usage
"""

import time
from datetime import datetime
from typing import Any, AsyncIterator

from ..config import GatewaySettings
from ..control.quota import QuotaEnforcer
from ..exceptions import MeterwayError, ServiceUnavailableError
from ..metering.pricing import estimate_tokens
from ..metering.recorder import UsageRecorder
from ..storage.base import UsageStore
from ..types import (
    ChatRequest,
    ChatResponse,
    ConversationUsage,
    DailyUsage,
    LLMProvider,
    QuotaDecision,
    RequestType,
    StreamEvent,
    UsageContext,
    UsageSummary,
)
from ..utils.logging import StructuredLogger, configure_logging
from .classifier import classify_error
from .providers import (
    AnthropicProvider,
    BaseProvider,
    OpenAIProvider,
    OpenRouterProvider,
)

PROVIDER_CLASSES: dict[LLMProvider, type[BaseProvider]] = {
    LLMProvider.OPENAI: OpenAIProvider,
    LLMProvider.ANTHROPIC: AnthropicProvider,
    LLMProvider.OPENROUTER: OpenRouterProvider,
}


def estimate_request_tokens(request: ChatRequest) -> int:
    """Estimate prompt tokens of a request for the quota pre-check.

    Counts the system prompt, every message and the project files.
    """
    parts = [request.agent.system_prompt]
    parts.extend(message.content for message in request.messages)
    parts.extend(request.project_files or [])
    return estimate_tokens("".join(parts))


class Gateway:
    """Metered gateway over the configured provider adapters.

    Usage:
        gateway = Gateway(store=SQLiteUsageStore("usage.db"))
        gateway.configure_provider("openai", api_key="sk-...")
        response = await gateway.chat(ChatRequest(agent=agent, messages=messages, user_id="u1"))

        request.stream = True
        async for event in await gateway.chat(request):
            ...
    """

    def __init__(
        self,
        store: UsageStore,
        providers: dict[LLMProvider, BaseProvider] | None = None,
        settings: GatewaySettings | None = None,
    ):
        """Create gateway.

        Args:
            store: Users, limits and the usage ledger.
            providers: Pre-built adapters keyed by the provider they serve.
            settings: Defaults for adapters created by ``configure_provider``.
        """
        self._store = store
        self._settings = settings or GatewaySettings()
        self._providers: dict[LLMProvider, BaseProvider] = dict(providers or {})
        self._quota = QuotaEnforcer(store)
        self._recorder = UsageRecorder(store)
        self._log = StructuredLogger("gateway")

    @classmethod
    def from_settings(cls, settings: GatewaySettings, store: UsageStore) -> "Gateway":
        """Create a gateway with every provider that has an API key configured.

        Also applies ``settings.log_level`` to the ``meterway`` logger.
        """
        configure_logging(settings.log_level)
        gateway = cls(store, settings=settings)
        if settings.openai_api_key:
            gateway.configure_provider(LLMProvider.OPENAI, settings.openai_api_key)
        if settings.anthropic_api_key:
            gateway.configure_provider(LLMProvider.ANTHROPIC, settings.anthropic_api_key)
        if settings.openrouter_api_key:
            gateway.configure_provider(LLMProvider.OPENROUTER, settings.openrouter_api_key)
        return gateway

    # =========================================================================
    # PROVIDER CONFIGURATION
    # =========================================================================

    def configure_provider(
        self,
        provider: str | LLMProvider,
        api_key: str | None = None,
        **kwargs: Any,
    ) -> "Gateway":
        """Create and register the adapter for ``provider``."""
        provider = LLMProvider(provider)
        kwargs.setdefault("timeout", self._settings.request_timeout)
        kwargs.setdefault("max_retries", self._settings.max_retries)

        match provider:
            case LLMProvider.OPENAI:
                adapter: BaseProvider = OpenAIProvider(api_key=api_key, **kwargs)
            case LLMProvider.ANTHROPIC:
                adapter = AnthropicProvider(api_key=api_key, **kwargs)
            case LLMProvider.OPENROUTER:
                kwargs.setdefault("site_url", self._settings.openrouter_site_url)
                kwargs.setdefault("app_name", self._settings.openrouter_app_name)
                adapter = OpenRouterProvider(api_key=api_key, **kwargs)

        self._providers[provider] = adapter
        self._log.info("Provider configured", provider=provider.value)
        return self

    def register_provider(
        self,
        adapter: BaseProvider,
        provider: str | LLMProvider | None = None,
    ) -> "Gateway":
        """Register a pre-built adapter, by default under its own provider type."""
        self._providers[LLMProvider(provider or adapter.provider_type)] = adapter
        return self

    def get_provider(self, provider: str | LLMProvider) -> BaseProvider:
        """Get the configured adapter for ``provider``.

        Raises:
            ServiceUnavailableError: If no adapter is configured for it.
        """
        name = provider.value if isinstance(provider, LLMProvider) else str(provider)
        try:
            adapter = self._providers.get(LLMProvider(name))
        except ValueError:
            adapter = None
        if adapter is None:
            raise ServiceUnavailableError(name, f"Provider {name} is not configured")
        return adapter

    # =========================================================================
    # MAIN ENTRY POINT - THE FLOW
    # =========================================================================

    async def chat(self, request: ChatRequest) -> ChatResponse | AsyncIterator[StreamEvent]:
        """Make a chat call through the gateway.

        THE FLOW:
        1. QUOTA: Admission check when the request names a user
        2. PROVIDER: Route to the adapter for ``agent.provider``
        3. USAGE: Record tokens once (streams record on completion or failure)

        Args:
            request: The chat request.

        Returns:
            The response for buffered requests, or an async iterator of
            stream events when ``request.stream`` is set.

        Raises:
            UserNotFoundError, UserInactiveError: Identity pre-check failed.
            TokenLimitExceededError: The request would pass a quota.
            ProviderError: Classified provider failure.
        """
        agent = request.agent

        # === STEP 1: QUOTA ===
        if request.user_id:
            await self._quota.check_token_limit(request.user_id, estimate_request_tokens(request))

        # === STEP 2: PROVIDER ===
        adapter = self.get_provider(agent.provider)
        context = self._usage_context(request)

        if request.stream:
            return adapter.stream_chat(
                agent,
                request.messages,
                request.project_files,
                request.attachments,
                recorder=self._recorder if context else None,
                context=context,
            )

        start_time = time.perf_counter()
        try:
            response = await adapter.chat(
                agent,
                request.messages,
                request.project_files,
                request.attachments,
            )
        except MeterwayError:
            raise
        except Exception as e:
            raise classify_error(e, agent.provider, agent.model) from e

        response.metadata.processing_time = int((time.perf_counter() - start_time) * 1000)

        # === STEP 3: USAGE ===
        if context is not None:
            await self._recorder.record(
                context,
                agent.provider,
                agent.model,
                response.metadata.prompt_tokens,
                response.metadata.completion_tokens,
                RequestType.CHAT,
            )

        self._log.info(
            "Chat request completed",
            user_id=request.user_id,
            provider=agent.provider.value,
            model=agent.model,
            tokens=response.metadata.tokens,
            processing_time=response.metadata.processing_time,
        )
        return response

    @staticmethod
    def _usage_context(request: ChatRequest) -> UsageContext | None:
        if not request.user_id:
            return None
        return UsageContext(
            user_id=request.user_id,
            project_id=request.project_id,
            agent_id=request.agent.id,
            conversation_id=request.conversation_id,
        )

    # =========================================================================
    # QUOTA AND USAGE
    # =========================================================================

    async def check_token_limit(self, user_id: str, tokens: int) -> QuotaDecision:
        """Run the quota check on its own, e.g. as a pre-flight check."""
        return await self._quota.check_token_limit(user_id, tokens)

    async def get_usage_summary(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> UsageSummary:
        """Summarize a user's recorded usage."""
        return await self._recorder.summarize(user_id, start, end)

    async def get_usage_stats(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[DailyUsage]:
        """Per-day usage of a user by provider and model, newest day first."""
        return await self._recorder.daily_stats(user_id, start, end)

    async def get_project_stats(self, user_id: str, project_id: str) -> list[DailyUsage]:
        return await self._recorder.project_stats(user_id, project_id)

    async def get_agent_stats(self, user_id: str, agent_id: str) -> list[DailyUsage]:
        return await self._recorder.agent_stats(user_id, agent_id)

    async def get_conversation_stats(
        self,
        user_id: str,
        conversation_id: str,
    ) -> ConversationUsage:
        return await self._recorder.conversation_stats(user_id, conversation_id)

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================

    def get_provider_status(self) -> dict[str, bool]:
        """Whether each known provider has an adapter configured."""
        return {provider.value: provider in self._providers for provider in LLMProvider}

    def get_available_models(self) -> dict[str, list[str]]:
        """Model ids of every known provider.

        A configured adapter reports its own models; otherwise the provider's
        catalogue is listed. Use ``get_provider_status`` to see which are usable.
        """
        models: dict[str, list[str]] = {}
        for provider in LLMProvider:
            adapter = self._providers.get(provider)
            source = adapter if adapter is not None else PROVIDER_CLASSES[provider]
            models[provider.value] = list(source.supported_models)
        return models

    def get_metrics(self) -> dict[str, Any]:
        """Get per-adapter call metrics and their totals."""
        providers = {
            provider.value: adapter.get_metrics()
            for provider, adapter in self._providers.items()
        }
        return {
            "total_calls": sum(m["total_calls"] for m in providers.values()),
            "total_tokens": sum(m["total_tokens"] for m in providers.values()),
            "total_cost": sum(m["total_cost"] for m in providers.values()),
            "providers": providers,
        }
