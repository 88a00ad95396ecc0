"""Tests for provider adapters using fake SDK clients."""

from types import SimpleNamespace

import pytest

from meterway.exceptions import (
    ApiKeyInvalidError,
    ModelUnavailableError,
    RateLimitExceededError,
    ServiceUnavailableError,
)
from meterway.gateway.providers import (
    LANGUAGE_INSTRUCTION,
    AnthropicProvider,
    MockProvider,
    OpenAIProvider,
    OpenRouterProvider,
    build_system_content,
    supports_temperature,
)
from meterway.metering.recorder import UsageRecorder
from meterway.storage.memory import InMemoryUsageStore
from meterway.types import (
    AgentConfig,
    ChatFileAttachment,
    ConversationMessage,
    LLMProvider,
    MessageRole,
    RequestType,
    StreamComplete,
    TextChunk,
    UsageContext,
)

PNG = ChatFileAttachment(filename="a.png", mimetype="image/png", data="iVBORw0")
JPG = ChatFileAttachment(filename="b.jpg", mimetype="image/jpg", data="/9j/4AAQ")
PDF = ChatFileAttachment(filename="doc.pdf", mimetype="application/pdf", data="JVBERi0")
TXT = ChatFileAttachment(filename="notes.txt", mimetype="text/plain", data="aGVsbG8=")


class FakeAPIError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class FakeStream:
    """Async iterable with the SDK stream's close()."""

    def __init__(self, items, error=None):
        self.items = items
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self.items:
            yield item
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class FakeEndpoint:
    """Stands in for ``client.chat.completions`` or ``client.messages``."""

    def __init__(self, response=None, stream=None, error=None):
        self.response = response
        self.stream = stream
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            return self.stream
        return self.response


def openai_client(endpoint):
    return SimpleNamespace(chat=SimpleNamespace(completions=endpoint))


def anthropic_client(endpoint):
    return SimpleNamespace(messages=endpoint)


def openai_response(content, prompt=10, completion=5, usage=True):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt, completion_tokens=completion) if usage else None,
    )


def openai_chunk(text=None, usage=None):
    choices = [SimpleNamespace(delta=SimpleNamespace(content=text))] if text is not None else []
    return SimpleNamespace(choices=choices, usage=usage)


def agent(provider=LLMProvider.OPENAI, model="gpt-4o", **kwargs):
    return AgentConfig(
        provider=provider,
        model=model,
        temperature=0.3,
        max_tokens=256,
        system_prompt="You are helpful.",
        **kwargs,
    )


def msg(role, content):
    return ConversationMessage(role=role, content=content)


HISTORY = [
    msg(MessageRole.USER, "first"),
    msg(MessageRole.ASSISTANT, "reply"),
    msg(MessageRole.USER, "latest"),
]


class TestSharedRules:
    """Tests for rules shared by all adapters."""

    def test_system_content_with_files(self):
        content = build_system_content(agent(), ["file one", "file two"])
        assert content == (
            "You are helpful.\n\nProject Files:\nfile one\n\nfile two\n\n" + LANGUAGE_INSTRUCTION
        )

    def test_system_content_without_files(self):
        assert build_system_content(agent()) == "You are helpful.\n\n" + LANGUAGE_INSTRUCTION

    @pytest.mark.parametrize(
        "model,expected",
        [
            ("gpt-4o", True),
            ("claude-sonnet-4-20250514", True),
            ("o1", False),
            ("o3-mini", False),
            ("o4-mini", False),
            ("gpt-5-high", False),
            ("openai/o1-mini", False),
        ],
    )
    def test_temperature_denylist(self, model, expected):
        assert supports_temperature(model) is expected


class TestOpenAIProvider:
    """Tests for OpenAIProvider."""

    @pytest.mark.asyncio
    async def test_chat_request_and_response(self):
        endpoint = FakeEndpoint(response=openai_response("Hi!", prompt=20, completion=4))
        provider = OpenAIProvider(client=openai_client(endpoint))

        response = await provider.chat(agent(), HISTORY, project_files=["x = 1"])

        call = endpoint.calls[0]
        assert call["model"] == "gpt-4o"
        assert call["temperature"] == 0.3
        assert call["max_tokens"] == 256
        assert call["messages"][0]["role"] == "system"
        assert "Project Files:\nx = 1" in call["messages"][0]["content"]
        assert call["messages"][1:] == [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "latest"},
        ]
        assert response.content == "Hi!"
        assert response.metadata.tokens == 24
        assert response.metadata.files == ["x = 1"]
        assert response.metadata.estimated_cost > 0
        assert provider.get_metrics()["total_calls"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("model", ["o1", "o3", "o4-mini", "gpt-5"])
    async def test_reasoning_models_omit_temperature(self, model):
        endpoint = FakeEndpoint(response=openai_response("ok"))
        provider = OpenAIProvider(client=openai_client(endpoint))

        await provider.chat(agent(model=model), HISTORY)

        call = endpoint.calls[0]
        assert "temperature" not in call
        assert "max_tokens" not in call
        assert call["max_completion_tokens"] == 256

    @pytest.mark.asyncio
    async def test_attachments_on_last_user_message(self):
        endpoint = FakeEndpoint(response=openai_response("ok"))
        provider = OpenAIProvider(client=openai_client(endpoint))

        await provider.chat(agent(), HISTORY, attachments=[PNG, PDF, TXT])

        last = endpoint.calls[0]["messages"][-1]
        assert last["role"] == "user"
        assert last["content"] == [
            {"type": "text", "text": "latest"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,iVBORw0"}},
        ]

    @pytest.mark.asyncio
    async def test_attachments_ignored_when_last_is_not_user(self):
        endpoint = FakeEndpoint(response=openai_response("ok"))
        provider = OpenAIProvider(client=openai_client(endpoint))
        messages = HISTORY + [msg(MessageRole.ASSISTANT, "draft")]

        await provider.chat(agent(), messages, attachments=[PNG])

        assert endpoint.calls[0]["messages"][-1] == {"role": "assistant", "content": "draft"}

    @pytest.mark.asyncio
    async def test_missing_usage_is_estimated(self):
        endpoint = FakeEndpoint(response=openai_response("a reply of some length", usage=False))
        provider = OpenAIProvider(client=openai_client(endpoint))

        response = await provider.chat(agent(), HISTORY)

        assert response.metadata.prompt_tokens == 0
        assert response.metadata.completion_tokens > 0

    @pytest.mark.asyncio
    async def test_sdk_error_is_classified_and_chained(self):
        raw = FakeAPIError("Incorrect API key provided", status_code=401)
        provider = OpenAIProvider(client=openai_client(FakeEndpoint(error=raw)))

        with pytest.raises(ApiKeyInvalidError) as exc_info:
            await provider.chat(agent(), HISTORY)

        assert exc_info.value.__cause__ is raw
        assert provider.get_metrics()["total_calls"] == 0

    @pytest.mark.asyncio
    async def test_empty_response_is_service_unavailable(self):
        provider = OpenAIProvider(client=openai_client(FakeEndpoint(response=openai_response(""))))

        with pytest.raises(ServiceUnavailableError):
            await provider.chat(agent(), HISTORY)

    @pytest.mark.asyncio
    async def test_stream(self):
        usage = SimpleNamespace(prompt_tokens=11, completion_tokens=2)
        stream = FakeStream([openai_chunk("Hel"), openai_chunk("lo"), openai_chunk(usage=usage)])
        endpoint = FakeEndpoint(stream=stream)
        provider = OpenAIProvider(client=openai_client(endpoint))

        events = [e async for e in provider.stream_chat(agent(), HISTORY)]

        call = endpoint.calls[0]
        assert call["stream"] is True
        assert call["stream_options"] == {"include_usage": True}
        assert [e.content for e in events if isinstance(e, TextChunk)] == ["Hel", "lo"]
        final = events[-1]
        assert isinstance(final, StreamComplete)
        assert (final.response.metadata.prompt_tokens, final.response.metadata.completion_tokens) == (11, 2)
        assert stream.closed
        assert provider.get_metrics()["total_tokens"] == 13

    @pytest.mark.asyncio
    async def test_stream_is_lazy(self):
        endpoint = FakeEndpoint(stream=FakeStream([]))
        provider = OpenAIProvider(client=openai_client(endpoint))

        stream = provider.stream_chat(agent(), HISTORY)

        assert endpoint.calls == []
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_stream_error_is_classified_and_partial_recorded(self):
        store = InMemoryUsageStore()
        stream = FakeStream([openai_chunk("partial")], error=FakeAPIError("Rate limit reached", 429))
        provider = OpenAIProvider(client=openai_client(FakeEndpoint(stream=stream)))

        with pytest.raises(RateLimitExceededError):
            async for _ in provider.stream_chat(
                agent(),
                HISTORY,
                recorder=UsageRecorder(store),
                context=UsageContext(user_id="u1"),
            ):
                pass

        assert [r.request_type for r in store.records] == [RequestType.CHAT_STREAM_PARTIAL]
        assert stream.closed


class TestAnthropicProvider:
    """Tests for AnthropicProvider."""

    @pytest.mark.asyncio
    async def test_chat_request_and_response(self):
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Bonjour")],
            usage=SimpleNamespace(input_tokens=30, output_tokens=6),
        )
        endpoint = FakeEndpoint(response=response)
        provider = AnthropicProvider(client=anthropic_client(endpoint))
        messages = [msg(MessageRole.SYSTEM, "Be brief.")] + HISTORY

        result = await provider.chat(agent(LLMProvider.ANTHROPIC, "claude-sonnet-4-20250514"), messages)

        call = endpoint.calls[0]
        assert call["system"].startswith("You are helpful.")
        assert call["system"].endswith("\n\nBe brief.")
        assert [m["role"] for m in call["messages"]] == ["user", "assistant", "user"]
        assert call["max_tokens"] == 256
        assert call["temperature"] == 0.3
        assert result.content == "Bonjour"
        assert result.metadata.tokens == 36

    @pytest.mark.asyncio
    async def test_attachment_blocks(self):
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="ok")],
            usage=SimpleNamespace(input_tokens=1, output_tokens=1),
        )
        endpoint = FakeEndpoint(response=response)
        provider = AnthropicProvider(client=anthropic_client(endpoint))

        await provider.chat(
            agent(LLMProvider.ANTHROPIC, "claude-3-haiku-20240307"),
            HISTORY,
            attachments=[JPG, PDF, TXT],
        )

        blocks = endpoint.calls[0]["messages"][-1]["content"]
        assert blocks == [
            {"type": "text", "text": "latest"},
            {
                "type": "image",
                "source": {"type": "base64", "media_type": "image/jpeg", "data": "/9j/4AAQ"},
            },
            {
                "type": "document",
                "source": {"type": "base64", "media_type": "application/pdf", "data": "JVBERi0"},
            },
        ]

    @pytest.mark.asyncio
    async def test_stream_raw_events(self):
        events = [
            SimpleNamespace(
                type="message_start",
                message=SimpleNamespace(usage=SimpleNamespace(input_tokens=25, output_tokens=1)),
            ),
            SimpleNamespace(type="content_block_start"),
            SimpleNamespace(
                type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="Hi")
            ),
            SimpleNamespace(
                type="content_block_delta",
                delta=SimpleNamespace(type="input_json_delta", partial_json="{"),
            ),
            SimpleNamespace(
                type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=" you")
            ),
            SimpleNamespace(type="message_delta", usage=SimpleNamespace(output_tokens=7)),
            SimpleNamespace(type="message_stop"),
        ]
        stream = FakeStream(events)
        provider = AnthropicProvider(client=anthropic_client(FakeEndpoint(stream=stream)))

        out = [e async for e in provider.stream_chat(agent(LLMProvider.ANTHROPIC, "claude-3-haiku-20240307"), HISTORY)]

        assert [e.content for e in out[:-1]] == ["Hi", " you"]
        metadata = out[-1].response.metadata
        assert (metadata.prompt_tokens, metadata.completion_tokens) == (25, 7)
        assert stream.closed

    @pytest.mark.asyncio
    async def test_overloaded_is_service_unavailable(self):
        raw = FakeAPIError("Overloaded", status_code=529)
        provider = AnthropicProvider(client=anthropic_client(FakeEndpoint(error=raw)))

        with pytest.raises(ServiceUnavailableError) as exc_info:
            await provider.chat(agent(LLMProvider.ANTHROPIC, "claude-3-haiku-20240307"), HISTORY)

        assert exc_info.value.provider == "anthropic"


class TestOpenRouterProvider:
    """Tests for OpenRouterProvider."""

    @pytest.mark.asyncio
    async def test_model_without_vendor_fails_fast(self):
        endpoint = FakeEndpoint(response=openai_response("ok"))
        provider = OpenRouterProvider(client=openai_client(endpoint))

        with pytest.raises(ModelUnavailableError):
            await provider.chat(agent(LLMProvider.OPENROUTER, "gpt-4o"), HISTORY)
        with pytest.raises(ModelUnavailableError):
            provider.stream_chat(agent(LLMProvider.OPENROUTER, "gpt-4o"), HISTORY)

        assert endpoint.calls == []

    @pytest.mark.asyncio
    async def test_pdf_and_image_blocks(self):
        endpoint = FakeEndpoint(response=openai_response("ok"))
        provider = OpenRouterProvider(client=openai_client(endpoint))

        await provider.chat(
            agent(LLMProvider.OPENROUTER, "anthropic/claude-3.5-sonnet"),
            HISTORY,
            attachments=[PNG, PDF, TXT],
        )

        call = endpoint.calls[0]
        assert call["temperature"] == 0.3
        assert call["messages"][-1]["content"][1:] == [
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,iVBORw0"}},
            {
                "type": "file",
                "file": {"filename": "doc.pdf", "file_data": "data:application/pdf;base64,JVBERi0"},
            },
        ]

    @pytest.mark.asyncio
    async def test_reasoning_model_omits_temperature(self):
        endpoint = FakeEndpoint(response=openai_response("ok"))
        provider = OpenRouterProvider(client=openai_client(endpoint))

        await provider.chat(agent(LLMProvider.OPENROUTER, "openai/o1-mini"), HISTORY)

        assert "temperature" not in endpoint.calls[0]

    def test_client_targets_openrouter(self):
        provider = OpenRouterProvider(api_key="sk-or-test", site_url="https://app.example", app_name="App")

        assert str(provider.client.base_url).startswith("https://openrouter.ai/api/v1")
        assert provider.client.default_headers["HTTP-Referer"] == "https://app.example"
        assert provider.client.default_headers["X-Title"] == "App"
        assert provider.provider_type == LLMProvider.OPENROUTER


class TestMockProvider:
    """Tests for MockProvider."""

    @pytest.mark.asyncio
    async def test_scripted_chat(self):
        provider = MockProvider(chunks=["a", "b"], usage=(3, 2))

        response = await provider.chat(agent(), HISTORY)

        assert response.content == "ab"
        assert response.metadata.tokens == 5
        assert provider.call_log[0]["stream"] is False

    @pytest.mark.asyncio
    async def test_fail_after(self):
        provider = MockProvider(chunks=["a", "b", "c"], fail_after=2, error=RuntimeError("overloaded"))
        received = []

        with pytest.raises(ServiceUnavailableError):
            async for event in provider.stream_chat(agent(), HISTORY):
                received.append(event)

        assert [e.content for e in received] == ["a", "b"]

    def test_impersonates_provider(self):
        assert MockProvider(provider_type="anthropic").provider_type == LLMProvider.ANTHROPIC
        assert MockProvider().provider_type == LLMProvider.OPENAI
