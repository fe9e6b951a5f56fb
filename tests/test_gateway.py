"""Tests for provider resolution and unified streaming chat."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from tenacity import wait_none

from aibox.ai import PROVIDER_CLASSES, ChatTurn, ProviderGateway, ProviderKind
from aibox.ai.claude_provider import ClaudeProvider
from aibox.ai.ollama_provider import OllamaProvider
from aibox.auth import CredentialManager
from aibox.constants import (
    SETTING_COPILOT_OAUTH_TOKEN,
    SETTING_OLLAMA_HOST,
    SETTING_OPENAI_API_KEY,
    SETTING_OPENAI_BASE_URL,
)
from aibox.errors import AuthError, Cancelled, ConfigError, NetworkError, ProviderError
from aibox.settings import MemorySettingsStore

from http_helpers import (
    RequestRecorder,
    byte_stream,
    mock_http_client,
    openai_chunk,
    sse_body,
    sse_response,
)

HELLO_WORLD = [
    openai_chunk("Hel"),
    openai_chunk("lo, "),
    openai_chunk("world"),
    openai_chunk(None, "stop"),
    "[DONE]",
]


def make_gateway(settings, handler, credentials=None) -> ProviderGateway:
    return ProviderGateway(settings, credentials, http_client=mock_http_client(handler))


def unexpected_request(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


async def collect(gateway: ProviderGateway, model: str, turns, **kwargs):
    backend = await gateway.resolve(model)
    return [event async for event in gateway.chat_stream(backend, turns, **kwargs)]


def test_every_provider_kind_has_exactly_one_class() -> None:
    assert set(PROVIDER_CLASSES) == set(ProviderKind)
    assert len(set(PROVIDER_CLASSES.values())) == len(ProviderKind)
    for kind, provider_class in PROVIDER_CLASSES.items():
        assert provider_class.kind == kind


def test_every_provider_kind_has_a_connection_resolver(settings) -> None:
    gateway = make_gateway(settings, unexpected_request)
    assert set(gateway._connection_resolvers) == set(ProviderKind)


# ============================================================================
# Resolution
# ============================================================================


@pytest.mark.asyncio
async def test_resolve_unknown_provider_raises_config_error(settings) -> None:
    gateway = make_gateway(settings, unexpected_request)
    with pytest.raises(ConfigError):
        await gateway.resolve("mistral/mistral-large")


@pytest.mark.asyncio
async def test_resolve_without_api_key_raises_config_error() -> None:
    gateway = make_gateway(MemorySettingsStore(), unexpected_request)
    with pytest.raises(ConfigError, match="openai_api_key"):
        await gateway.resolve("openai/gpt-4o")


@pytest.mark.asyncio
async def test_resolve_caches_provider_until_settings_change(settings) -> None:
    gateway = make_gateway(settings, unexpected_request)
    first = await gateway.resolve("openai/gpt-4o")
    second = await gateway.resolve("openai/gpt-4o-mini")
    assert first.provider is second.provider

    settings.set(SETTING_OPENAI_API_KEY, "sk-rotated")
    third = await gateway.resolve("openai/gpt-4o")
    assert third.provider is not first.provider


@pytest.mark.asyncio
async def test_resolve_copilot_without_login_fails_before_any_request(settings) -> None:
    recorder = RequestRecorder(unexpected_request)
    client = mock_http_client(recorder)
    credentials = CredentialManager(settings, http_client=client)
    gateway = ProviderGateway(settings, credentials, http_client=client)

    with pytest.raises(AuthError):
        await gateway.resolve("copilot/gpt-4o")
    assert recorder.requests == []


# ============================================================================
# OpenAI-compatible streaming
# ============================================================================


@pytest.mark.asyncio
async def test_openai_stream_emits_each_fragment_then_one_done(settings) -> None:
    recorder = RequestRecorder(lambda request: sse_response(HELLO_WORLD))
    gateway = make_gateway(settings, recorder)

    events = await collect(gateway, "openai/gpt-4o", [ChatTurn.user("hi")])

    assert [event.delta for event in events[:-1]] == ["Hel", "lo, ", "world"]
    assert events[-1].done and events[-1].error is None
    assert sum(event.done for event in events) == 1

    request = recorder.requests[0]
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test-openai"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o"
    assert body["stream"] is True
    assert body["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_openai_base_url_comes_from_settings(settings) -> None:
    settings.set(SETTING_OPENAI_BASE_URL, "http://localhost:8080/v1")
    recorder = RequestRecorder(lambda request: sse_response(HELLO_WORLD))
    gateway = make_gateway(settings, recorder)

    await collect(gateway, "openai/local-model", [ChatTurn.user("hi")])

    assert str(recorder.requests[0].url) == "http://localhost:8080/v1/chat/completions"


@pytest.mark.asyncio
async def test_malformed_fragment_is_skipped(settings) -> None:
    payloads = [openai_chunk("a"), "{broken json", openai_chunk("b"), "[DONE]"]
    gateway = make_gateway(settings, lambda request: sse_response(payloads))

    events = await collect(gateway, "openai/gpt-4o", [ChatTurn.user("hi")])

    assert [event.delta for event in events if not event.done] == ["a", "b"]
    assert events[-1].done and events[-1].error is None


@pytest.mark.asyncio
async def test_clean_eof_without_marker_still_finishes(settings) -> None:
    payloads = [openai_chunk("only")]
    gateway = make_gateway(settings, lambda request: sse_response(payloads))

    events = await collect(gateway, "openai/gpt-4o", [ChatTurn.user("hi")])

    assert [event.delta for event in events] == ["only", ""]
    assert events[-1].done and events[-1].error is None


@pytest.mark.asyncio
async def test_last_event_without_blank_line_is_flushed(settings) -> None:
    body = (
        f"data: {json.dumps(openai_chunk('Hel'))}\n\n"
        f"data: {json.dumps(openai_chunk('lo'))}"
    ).encode()
    gateway = make_gateway(
        settings,
        lambda request: httpx.Response(
            200, content=body, headers={"content-type": "text/event-stream"}
        ),
    )

    events = await collect(gateway, "openai/gpt-4o", [ChatTurn.user("hi")])

    assert [event.delta for event in events] == ["Hel", "lo", ""]
    assert [event.done for event in events] == [False, False, True]
    assert events[-1].error is None


@pytest.mark.asyncio
async def test_mid_stream_failure_keeps_deltas_and_ends_with_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=byte_stream(
                [sse_body([openai_chunk("partial")])],
                error=httpx.ReadError("connection reset"),
            ),
        )

    gateway = make_gateway(settings, handler)
    events = await collect(gateway, "openai/gpt-4o", [ChatTurn.user("hi")])

    assert events[0].delta == "partial"
    assert events[-1].done
    assert isinstance(events[-1].error, NetworkError)
    assert sum(event.done for event in events) == 1


@pytest.mark.asyncio
async def test_rejected_credential_ends_stream_with_auth_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            401,
            json={"error": {"message": "Incorrect API key provided", "type": "invalid_request_error"}},
        )

    gateway = make_gateway(settings, handler)
    events = await collect(gateway, "openai/gpt-4o", [ChatTurn.user("hi")])

    assert len(events) == 1
    assert events[0].done
    assert isinstance(events[0].error, AuthError)


@pytest.mark.asyncio
async def test_chat_requests_are_not_retried(settings) -> None:
    recorder = RequestRecorder(
        lambda request: httpx.Response(500, json={"error": {"message": "server exploded"}})
    )
    gateway = make_gateway(settings, recorder)
    backend = await gateway.resolve("openai/gpt-4o")

    with pytest.raises(ProviderError) as exc_info:
        await gateway.chat(backend, [ChatTurn.user("hi")])

    assert exc_info.value.status_code == 500
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_chat_returns_full_text(settings) -> None:
    gateway = make_gateway(settings, lambda request: sse_response(HELLO_WORLD))
    backend = await gateway.resolve("openai/gpt-4o")

    assert await gateway.chat(backend, [ChatTurn.user("hi")]) == "Hello, world"


@pytest.mark.asyncio
async def test_cancel_event_stops_stream_with_cancelled(settings) -> None:
    gateway = make_gateway(settings, lambda request: sse_response(HELLO_WORLD))
    backend = await gateway.resolve("openai/gpt-4o")
    cancel = asyncio.Event()

    events = []
    async for event in gateway.chat_stream(backend, [ChatTurn.user("hi")], cancel=cancel):
        events.append(event)
        cancel.set()

    assert [event.delta for event in events[:-1]] == ["Hel"]
    assert events[-1].done
    assert isinstance(events[-1].error, Cancelled)


@pytest.mark.asyncio
async def test_cancel_set_before_start_sends_nothing(settings) -> None:
    recorder = RequestRecorder(lambda request: sse_response(HELLO_WORLD))
    gateway = make_gateway(settings, recorder)
    cancel = asyncio.Event()
    cancel.set()

    events = await collect(gateway, "openai/gpt-4o", [ChatTurn.user("hi")], cancel=cancel)

    assert len(events) == 1 and isinstance(events[0].error, Cancelled)
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_consumer_can_close_stream_early(settings) -> None:
    gateway = make_gateway(settings, lambda request: sse_response(HELLO_WORLD))
    backend = await gateway.resolve("openai/gpt-4o")

    stream = gateway.chat_stream(backend, [ChatTurn.user("hi")])
    first = await stream.__anext__()
    await stream.aclose()

    assert first.delta == "Hel"
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()


# ============================================================================
# Claude
# ============================================================================


def claude_events(*texts: str) -> bytes:
    events = [
        ("message_start", {"type": "message_start", "message": {"id": "msg_1", "type": "message", "role": "assistant", "content": []}}),
        ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
        ("ping", {"type": "ping"}),
    ]
    for text in texts:
        events.append(
            (
                "content_block_delta",
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
            )
        )
    events += [
        ("content_block_stop", {"type": "content_block_stop", "index": 0}),
        ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "end_turn"}}),
        ("message_stop", {"type": "message_stop"}),
    ]
    return "".join(
        f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in events
    ).encode("utf-8")


@pytest.mark.asyncio
async def test_claude_stream_lifts_system_turns(settings) -> None:
    recorder = RequestRecorder(
        lambda request: httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=claude_events("Hello", " there"),
        )
    )
    gateway = make_gateway(settings, recorder)
    turns = [
        ChatTurn.system("Be brief."),
        ChatTurn.user("hi"),
        ChatTurn.assistant("hello"),
        ChatTurn.system("Use context."),
        ChatTurn.user("again"),
    ]

    events = await collect(gateway, "claude/claude-sonnet-4-20250514", turns)

    assert [event.delta for event in events[:-1]] == ["Hello", " there"]
    assert events[-1].done and events[-1].error is None

    request = recorder.requests[0]
    assert request.url.path == "/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant-test-claude"
    body = json.loads(request.content)
    assert body["system"] == "Be brief.\n\nUse context."
    assert body["max_tokens"] == 4096
    assert body["messages"] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "again"},
    ]


@pytest.mark.asyncio
async def test_claude_error_event_terminates_with_provider_error(settings) -> None:
    body = (
        claude_events("Hi").split(b"event: content_block_stop")[0]
        + b'event: error\ndata: {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}\n\n'
    )
    gateway = make_gateway(
        settings,
        lambda request: httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body),
    )

    events = await collect(gateway, "claude/claude-sonnet-4-20250514", [ChatTurn.user("hi")])

    assert events[0].delta == "Hi"
    assert isinstance(events[-1].error, ProviderError)
    assert "Overloaded" in str(events[-1].error)


def test_claude_format_messages_without_system() -> None:
    provider = ClaudeProvider("sk-ant-x", http_client=mock_http_client(unexpected_request))
    system, messages = provider.format_messages([ChatTurn.user("hi")])
    assert system is None
    assert messages == [{"role": "user", "content": "hi"}]


# ============================================================================
# Ollama
# ============================================================================


@pytest.mark.asyncio
async def test_ollama_streams_line_delimited_json(settings) -> None:
    settings.set(SETTING_OLLAMA_HOST, "http://gpu-box:11434")
    lines = [
        {"model": "llama3", "message": {"role": "assistant", "content": "Hi"}, "done": False},
        {"model": "llama3", "message": {"role": "assistant", "content": " you"}, "done": False},
        {"model": "llama3", "message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop"},
    ]
    recorder = RequestRecorder(
        lambda request: httpx.Response(
            200,
            content="\n".join(json.dumps(line) for line in lines).encode("utf-8"),
            headers={"content-type": "application/x-ndjson"},
        )
    )
    gateway = make_gateway(settings, recorder)

    events = await collect(gateway, "ollama/llama3", [ChatTurn.user("hi")])

    assert [event.delta for event in events[:-1]] == ["Hi", " you"]
    assert events[-1].done and events[-1].error is None
    assert str(recorder.requests[0].url) == "http://gpu-box:11434/api/chat"
    assert json.loads(recorder.requests[0].content)["stream"] is True


@pytest.mark.asyncio
async def test_ollama_unknown_model_is_provider_error(settings) -> None:
    gateway = make_gateway(
        settings,
        lambda request: httpx.Response(404, json={"error": "model 'nope' not found"}),
    )

    events = await collect(gateway, "ollama/nope", [ChatTurn.user("hi")])

    assert len(events) == 1
    assert isinstance(events[0].error, ProviderError)
    assert "not found" in str(events[0].error)


@pytest.mark.asyncio
async def test_ollama_unreachable_is_network_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = make_gateway(settings, handler)
    events = await collect(gateway, "ollama/llama3", [ChatTurn.user("hi")])

    assert isinstance(events[-1].error, NetworkError)


@pytest.mark.asyncio
async def test_ollama_models_come_from_tags(settings) -> None:
    recorder = RequestRecorder(
        lambda request: httpx.Response(
            200,
            json={"models": [{"name": "llama3:latest"}, {"name": "qwen2.5:7b"}]},
        )
    )
    gateway = make_gateway(settings, recorder)

    models = await gateway.fetch_models("ollama")

    assert [model.id for model in models] == ["ollama/llama3:latest", "ollama/qwen2.5:7b"]
    assert recorder.paths() == ["/api/tags"]


@pytest.mark.asyncio
async def test_ollama_tags_are_retried_on_server_error(settings, monkeypatch) -> None:
    monkeypatch.setattr(OllamaProvider._fetch_tags.retry, "wait", wait_none())
    responses = iter(
        [
            httpx.Response(503, text="loading"),
            httpx.Response(200, json={"models": [{"name": "llama3"}]}),
        ]
    )
    recorder = RequestRecorder(lambda request: next(responses))
    gateway = make_gateway(settings, recorder)

    models = await gateway.fetch_models(ProviderKind.OLLAMA)

    assert [model.id for model in models] == ["ollama/llama3"]
    assert len(recorder.requests) == 2


# ============================================================================
# Static catalogs and Copilot
# ============================================================================


@pytest.mark.asyncio
async def test_static_catalogs_make_no_network_call() -> None:
    gateway = make_gateway(MemorySettingsStore(), unexpected_request)

    openai_models = await gateway.fetch_models(ProviderKind.OPENAI)
    claude_models = await gateway.fetch_models("claude")

    assert any(model.id == "openai/gpt-4o" for model in openai_models)
    assert all(model.id.startswith("claude/") for model in claude_models)


def copilot_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/copilot_internal/v2/token":
        return httpx.Response(200, json={"token": "tid=abc;exp=1", "expires_at": 4_000_000_000})
    if request.url.path == "/models":
        return httpx.Response(
            200,
            json={
                "object": "list",
                "data": [
                    {"id": "gpt-4o", "name": "GPT-4o", "object": "model", "capabilities": {"type": "chat"}},
                    {"id": "text-embedding-3-small", "name": "Embedding", "object": "model", "capabilities": {"type": "embeddings"}},
                    {"id": "claude-3.5-sonnet", "name": "Claude 3.5 Sonnet", "object": "model", "capabilities": {"type": "chat"}},
                ],
            },
        )
    if request.url.path == "/chat/completions":
        return sse_response(HELLO_WORLD)
    raise AssertionError(f"unexpected request to {request.url}")


@pytest.mark.asyncio
async def test_copilot_models_are_filtered_to_chat(settings) -> None:
    settings.set(SETTING_COPILOT_OAUTH_TOKEN, "gho_test")
    client = mock_http_client(copilot_handler)
    credentials = CredentialManager(settings, http_client=client)
    gateway = ProviderGateway(settings, credentials, http_client=client)

    models = await gateway.fetch_models("copilot")

    assert [model.id for model in models] == ["copilot/gpt-4o", "copilot/claude-3.5-sonnet"]
    assert models[0].name == "GPT-4o"


@pytest.mark.asyncio
async def test_copilot_chat_uses_api_token_and_editor_headers(settings) -> None:
    settings.set(SETTING_COPILOT_OAUTH_TOKEN, "gho_test")
    recorder = RequestRecorder(copilot_handler)
    client = mock_http_client(recorder)
    credentials = CredentialManager(settings, http_client=client)
    gateway = ProviderGateway(settings, credentials, http_client=client)

    events = await collect(gateway, "copilot/gpt-4o", [ChatTurn.user("hi")])

    assert "".join(event.delta for event in events) == "Hello, world"
    chat_request = recorder.requests[-1]
    assert str(chat_request.url) == "https://api.githubcopilot.com/chat/completions"
    assert chat_request.headers["authorization"] == "Bearer tid=abc;exp=1"
    assert chat_request.headers["copilot-integration-id"] == "vscode-chat"
    assert "editor-version" in chat_request.headers
    token_request = recorder.requests[0]
    assert token_request.headers["authorization"] == "token gho_test"
