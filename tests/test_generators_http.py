"""HTTP generator tests against ``httpx.MockTransport``.

These characterize the exact requests sent (paths, headers, bodies) and the
authentication envelope, without any network access.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from switchyard.content import EmbedRequest, FinishReason
from switchyard.credentials import Credentials, OAuthTokenManager, StaticTokenSource
from switchyard.errors import (
    APIError,
    AuthenticationError,
    NoStreamBodyError,
    RateLimitError,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
)
from switchyard.generators.anthropic_http import ANTHROPIC_VERSION, AnthropicHttpGenerator
from switchyard.generators.base import estimate_tokens
from switchyard.generators.openai_compat import OpenAICompatibleGenerator
from tests.conftest import ANTHROPIC_MODEL, OPENAI_MODEL, make_request

pytestmark = pytest.mark.contract


class Recorder:
    """MockTransport handler that replays canned responses in order."""

    def __init__(self, *responses: httpx.Response) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        template = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        # Fresh object per call; the last template repeats.
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )

    def body(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


def _anthropic_message(text: str = "Hello!") -> dict[str, Any]:
    return {
        "id": "msg_1",
        "type": "message",
        "model": ANTHROPIC_MODEL,
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 5, "output_tokens": 2},
    }


def _anthropic(recorder: Recorder, tokens: Any = None, **kwargs: Any) -> AnthropicHttpGenerator:
    return AnthropicHttpGenerator(
        tokens or StaticTokenSource("sk-ant-api-key"),
        model=ANTHROPIC_MODEL,
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


def _openai(recorder: Recorder, token: str = "sk-openai", **kwargs: Any) -> OpenAICompatibleGenerator:
    return OpenAICompatibleGenerator(
        StaticTokenSource(token),
        model=OPENAI_MODEL,
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


def _sse(*events: dict[str, Any], done: bool = False) -> bytes:
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


# =============================================================================
# Anthropic: requests and headers
# =============================================================================


@pytest.mark.asyncio
async def test_anthropic_generate_sends_api_key_header() -> None:
    recorder = Recorder(httpx.Response(200, json=_anthropic_message()))
    generator = _anthropic(recorder)

    response = await generator.generate_content(make_request("hi", system="be brief"))

    request = recorder.requests[0]
    assert request.url == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant-api-key"
    assert "authorization" not in request.headers
    assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
    assert recorder.body()["system"] == "be brief"
    assert recorder.body()["stream"] is False
    assert response.text == "Hello!"
    assert response.finish_reason is FinishReason.STOP
    await generator.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "tokens",
    [
        StaticTokenSource("eyJhbGciOi.jwt.token"),
        OAuthTokenManager(Credentials(access_token="sk-ant-oat01-abc")),
    ],
    ids=["jwt", "oauth"],
)
async def test_anthropic_uses_bearer_for_jwt_and_oauth(tokens) -> None:
    recorder = Recorder(httpx.Response(200, json=_anthropic_message()))
    generator = _anthropic(recorder, tokens=tokens)

    await generator.generate_content(make_request())

    headers = recorder.requests[0].headers
    assert headers["authorization"].startswith("Bearer ")
    assert "x-api-key" not in headers


@pytest.mark.asyncio
async def test_bearer_prefixed_token_is_not_doubled() -> None:
    recorder = Recorder(httpx.Response(200, json=_anthropic_message()))
    generator = _anthropic(recorder, tokens=StaticTokenSource("Bearer abc"))

    await generator.generate_content(make_request())

    assert recorder.requests[0].headers["authorization"] == "Bearer abc"


@pytest.mark.asyncio
async def test_invalid_temperature_never_reaches_the_transport() -> None:
    recorder = Recorder(httpx.Response(200, json=_anthropic_message()))
    generator = _anthropic(recorder)

    with pytest.raises(ValidationError):
        await generator.generate_content(make_request(temperature=1.5))

    assert recorder.requests == []


# =============================================================================
# Authentication envelope and failures
# =============================================================================


def _auth_error_response() -> httpx.Response:
    return httpx.Response(
        401,
        json={"type": "error", "error": {"type": "authentication_error", "message": "expired"}},
    )


@pytest.mark.asyncio
async def test_auth_failure_retries_once_with_refreshed_token(refreshing_tokens) -> None:
    recorder = Recorder(_auth_error_response(), httpx.Response(200, json=_anthropic_message()))
    generator = _anthropic(recorder, tokens=refreshing_tokens)

    response = await generator.generate_content(make_request())

    assert response.text == "Hello!"
    assert refreshing_tokens.refreshes == 1
    assert [r.headers["x-api-key"] for r in recorder.requests] == [
        "stale-token",
        "fresh-token",
    ]


@pytest.mark.asyncio
async def test_second_auth_failure_is_terminal(refreshing_tokens) -> None:
    recorder = Recorder(_auth_error_response())
    generator = _anthropic(recorder, tokens=refreshing_tokens)

    with pytest.raises(AuthenticationError) as excinfo:
        await generator.generate_content(make_request())

    assert len(recorder.requests) == 2
    assert refreshing_tokens.refreshes == 1
    assert isinstance(excinfo.value.__cause__, APIError)
    assert excinfo.value.__cause__.status_code == 401


@pytest.mark.asyncio
async def test_bad_request_is_neither_refreshed_nor_retried(refreshing_tokens) -> None:
    recorder = Recorder(
        httpx.Response(
            400,
            json={"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}},
        )
    )
    generator = _anthropic(recorder, tokens=refreshing_tokens)

    with pytest.raises(TransportError) as excinfo:
        await generator.generate_content(make_request())

    assert excinfo.value.status_code == 400
    assert len(recorder.requests) == 1
    assert refreshing_tokens.refreshes == 0


@pytest.mark.asyncio
async def test_unavailable_status_surfaces_after_one_request() -> None:
    recorder = Recorder(
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, json=_chat_completion("never reached")),
    )
    generator = _openai(recorder)

    with pytest.raises(TransportError) as excinfo:
        await generator.generate_content(make_request())

    assert excinfo.value.status_code == 503
    assert excinfo.value.retryable is True
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_rate_limit_surfaces_after_one_request() -> None:
    recorder = Recorder(httpx.Response(429, headers={"retry-after": "3"}, text="slow down"))
    generator = _anthropic(recorder)

    with pytest.raises(RateLimitError) as excinfo:
        await generator.generate_content(make_request())

    assert excinfo.value.retry_after_s == 3.0
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_slow_response_times_out_the_whole_call() -> None:
    async def stall(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json=_anthropic_message())

    generator = AnthropicHttpGenerator(
        StaticTokenSource("k"),
        model=ANTHROPIC_MODEL,
        timeout_s=0.2,
        transport=httpx.MockTransport(stall),
    )

    with pytest.raises(TransportError, match="timed out") as excinfo:
        await generator.generate_content(make_request())

    assert excinfo.value.phase == "generate"


@pytest.mark.asyncio
async def test_connection_errors_become_transport_errors() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    generator = AnthropicHttpGenerator(
        StaticTokenSource("k"),
        model=ANTHROPIC_MODEL,
        transport=httpx.MockTransport(refuse),
    )

    with pytest.raises(TransportError) as excinfo:
        await generator.generate_content(make_request())

    assert excinfo.value.retryable is True
    assert excinfo.value.phase == "generate"


# =============================================================================
# Anthropic: streaming
# =============================================================================


@pytest.mark.asyncio
async def test_anthropic_stream_yields_deltas_then_terminal_chunk() -> None:
    body = _sse(
        {"type": "message_start", "message": {"id": "msg_1"}},
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hel"}},
        {"type": "ping"},
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "lo"}},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}},
        {"type": "message_stop"},
    )
    recorder = Recorder(
        httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)
    )
    generator = _anthropic(recorder)

    chunks = [c async for c in generator.generate_content_stream(make_request())]

    assert "".join(c.text for c in chunks) == "Hello"
    assert [c.finish_reason for c in chunks] == [
        FinishReason.OTHER,
        FinishReason.OTHER,
        FinishReason.STOP,
    ]
    assert chunks[-1].usage is None
    assert recorder.body()["stream"] is True


@pytest.mark.asyncio
async def test_anthropic_stream_usage_combines_start_and_delta_counts() -> None:
    body = _sse(
        {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 25}}},
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 7}},
        {"type": "message_stop"},
    )
    generator = _anthropic(Recorder(httpx.Response(200, content=body)))

    chunks = [c async for c in generator.generate_content_stream(make_request())]

    usage = chunks[-1].usage
    assert usage is not None
    assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (25, 7, 32)


class TrackingStream(httpx.AsyncByteStream):
    """Response body that records whether it was closed."""

    def __init__(self, *chunks: bytes) -> None:
        self._chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_abandoned_stream_closes_the_response() -> None:
    stream = TrackingStream(
        _sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "one"}}),
        _sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "two"}}),
    )
    generator = _anthropic(lambda request: httpx.Response(200, stream=stream))

    chunks = generator.generate_content_stream(make_request())
    first = await chunks.__anext__()
    await chunks.aclose()

    assert first.text == "one"
    assert stream.closed


@pytest.mark.asyncio
async def test_failing_stream_closes_the_response() -> None:
    stream = TrackingStream(
        _sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "one"}}),
        _sse({"type": "error", "error": {"type": "overloaded_error", "message": "busy"}}),
    )
    generator = _anthropic(lambda request: httpx.Response(200, stream=stream))

    with pytest.raises(TransportError, match="busy"):
        async for _ in generator.generate_content_stream(make_request()):
            pass

    assert stream.closed


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [200, 204])
async def test_stream_without_body_raises(status) -> None:
    recorder = Recorder(httpx.Response(status, content=b""))
    generator = _anthropic(recorder)

    with pytest.raises(NoStreamBodyError):
        async for _ in generator.generate_content_stream(make_request()):
            pass


@pytest.mark.asyncio
async def test_stream_start_auth_failure_is_refreshed(refreshing_tokens) -> None:
    body = _sse(
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "ok"}},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}},
    )
    recorder = Recorder(_auth_error_response(), httpx.Response(200, content=body))
    generator = _anthropic(recorder, tokens=refreshing_tokens)

    chunks = [c async for c in generator.generate_content_stream(make_request())]

    assert "".join(c.text for c in chunks) == "ok"
    assert refreshing_tokens.refreshes == 1


# =============================================================================
# Anthropic: counting and embeddings
# =============================================================================


@pytest.mark.asyncio
async def test_anthropic_native_token_count() -> None:
    recorder = Recorder(httpx.Response(200, json={"input_tokens": 42}))
    generator = _anthropic(recorder)

    count = await generator.count_tokens(make_request("hi", system="rules"))

    assert count.total_tokens == 42
    assert count.estimated is False
    assert recorder.requests[0].url.path == "/v1/messages/count_tokens"
    assert set(recorder.body()) == {"model", "messages", "system"}
    assert generator.capabilities.native_token_count is True


@pytest.mark.asyncio
async def test_anthropic_embeddings_are_unsupported() -> None:
    generator = _anthropic(Recorder(httpx.Response(500)))

    with pytest.raises(UnsupportedOperationError) as excinfo:
        await generator.embed_content(EmbedRequest(texts=("a",)))

    assert excinfo.value.operation == "embed_content"


# =============================================================================
# OpenAI-compatible
# =============================================================================


def _chat_completion(text: str = "Hi there") -> dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "model": OPENAI_MODEL,
        "choices": [{"index": 0, "message": {"content": text}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 4, "completion_tokens": 2},
    }


@pytest.mark.asyncio
async def test_openai_generate_uses_bearer_and_chat_completions() -> None:
    recorder = Recorder(httpx.Response(200, json=_chat_completion()))
    generator = _openai(recorder, base_url="https://openrouter.ai/api/v1", provider="openrouter")

    response = await generator.generate_content(make_request("hi", model="qwen/qwen3-4b-2507"))

    request = recorder.requests[0]
    assert request.url == "https://openrouter.ai/api/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-openai"
    assert recorder.body()["model"] == "qwen/qwen3-4b-2507"
    assert response.text == "Hi there"
    assert response.usage is not None and response.usage.total_tokens == 6


@pytest.mark.asyncio
async def test_openai_without_token_sends_no_authorization() -> None:
    recorder = Recorder(httpx.Response(200, json=_chat_completion()))
    generator = _openai(recorder, token="", base_url="http://localhost:11434/v1")

    await generator.generate_content(make_request())

    assert "authorization" not in recorder.requests[0].headers


@pytest.mark.asyncio
async def test_openai_stream_requests_usage_and_stops_at_done() -> None:
    body = _sse(
        {"choices": [{"index": 0, "delta": {"role": "assistant"}}]},
        {"choices": [{"index": 0, "delta": {"content": "Hi"}}]},
        {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
        {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 1}},
        done=True,
    )
    recorder = Recorder(httpx.Response(200, content=body))
    generator = _openai(recorder)

    chunks = [c async for c in generator.generate_content_stream(make_request())]

    assert recorder.body()["stream_options"] == {"include_usage": True}
    assert [c.text for c in chunks] == ["Hi", "", ""]
    assert chunks[1].finish_reason is FinishReason.STOP
    assert chunks[-1].usage is not None and chunks[-1].usage.total_tokens == 4


@pytest.mark.asyncio
async def test_openai_embeddings_are_ordered_by_index() -> None:
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.3, 0.4]},
                    {"index": 0, "embedding": [0.1, 0.2]},
                ],
                "usage": {"prompt_tokens": 6},
            },
        )
    )
    generator = _openai(recorder, embedding_model="text-embedding-3-small")

    result = await generator.embed_content(EmbedRequest(texts=("first", "second")))

    assert result.embeddings == ((0.1, 0.2), (0.3, 0.4))
    assert result.usage is not None and result.usage.input_tokens == 6
    assert recorder.body() == {"model": "text-embedding-3-small", "input": ["first", "second"]}
    assert recorder.requests[0].url.path == "/v1/embeddings"


@pytest.mark.asyncio
async def test_openai_embedding_with_no_texts_skips_the_call() -> None:
    recorder = Recorder(httpx.Response(500))
    generator = _openai(recorder)

    result = await generator.embed_content(EmbedRequest(texts=()))

    assert result.embeddings == ()
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_openai_token_count_is_estimated() -> None:
    generator = _openai(Recorder(httpx.Response(500)))

    count = await generator.count_tokens(make_request("x" * 400))

    assert count.total_tokens == 100
    assert count.estimated is True


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("x" * 400) == 100
    assert estimate_tokens("x" * 401) == 101
    assert estimate_tokens("") == 0


@pytest.mark.asyncio
async def test_aclose_closes_an_owned_client() -> None:
    generator = _openai(Recorder(httpx.Response(200, json=_chat_completion())))
    await generator.aclose()
    await generator.aclose()

    assert generator._client.is_closed


@pytest.mark.asyncio
async def test_aclose_leaves_a_shared_client_open() -> None:
    client = httpx.AsyncClient(
        base_url="https://api.openai.com/v1",
        transport=httpx.MockTransport(Recorder(httpx.Response(200, json=_chat_completion()))),
    )
    generator = OpenAICompatibleGenerator(StaticTokenSource("k"), model=OPENAI_MODEL, client=client)

    await generator.generate_content(make_request())
    await generator.aclose()

    assert not client.is_closed
    await client.aclose()
