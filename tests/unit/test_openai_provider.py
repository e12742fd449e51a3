"""
Unit tests for the OpenAI provider.

Tests request building, validation, response mapping, HTTP error mapping,
timeouts and streaming dispatch against an httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from llamb.llm.openai import OpenAIProvider
from llamb.llm.types import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMHTTPError,
    LLMInvalidResponseError,
    LLMMessage,
    LLMRateLimitError,
    LLMTimeoutError,
    LLMValidationError,
    MessageOptions,
)


def provider_with(handler) -> OpenAIProvider:
    return OpenAIProvider(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def completion_body(content="Hello!", finish_reason="stop"):
    return {
        "model": "gpt-4o",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
    }


@pytest.fixture
def remote_connection(make_connection):
    return make_connection(
        type="openai",
        endpoint="https://api.openai.com/v1",
        api_key="sk-test",
        model="gpt-4o",
    )


MESSAGES = [LLMMessage(role="system", content="Be brief."), LLMMessage(role="user", content="hi")]


# ============================================================
# Request Building Tests
# ============================================================


@pytest.mark.unit
def test_build_request_shape(remote_connection):
    """Test OpenAI request URL, headers and body"""
    # ARRANGE
    provider = OpenAIProvider()

    # ACT
    request = provider.build_request(remote_connection, MESSAGES, MessageOptions(max_tokens=100, temperature=0.2))

    # ASSERT
    assert request.url == "https://api.openai.com/v1/chat/completions"
    assert request.method == "POST"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.headers["Content-Type"] == "application/json"
    assert request.body == {
        "model": "gpt-4o",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
        ],
        "max_tokens": 100,
        "temperature": 0.2,
        "stream": False,
    }


@pytest.mark.unit
def test_build_request_defaults_and_stream_flag(remote_connection):
    """Test default max_tokens/temperature and the stream flag"""
    request = OpenAIProvider().build_request(remote_connection, MESSAGES, stream=True)

    # 4000 default clamped to the 4096 context window leaves 4000
    assert request.body["max_tokens"] == 4000
    assert request.body["temperature"] == 0.7
    assert request.body["stream"] is True


@pytest.mark.unit
def test_max_tokens_clamped_to_context_window(make_connection):
    """Test max_tokens never exceeds the declared context window"""
    # ARRANGE
    connection = make_connection(type="openai", api_key="k", features={"context_window": 2048})

    # ACT
    request = OpenAIProvider().build_request(connection, MESSAGES, MessageOptions(max_tokens=8000))

    # ASSERT
    assert request.body["max_tokens"] == 2048


@pytest.mark.unit
def test_zero_temperature_respected(remote_connection):
    """Test temperature 0 is sent as-is rather than replaced by the default"""
    request = OpenAIProvider().build_request(remote_connection, MESSAGES, MessageOptions(temperature=0.0))

    assert request.body["temperature"] == 0.0


@pytest.mark.unit
def test_custom_headers_and_trailing_slash(make_connection):
    """Test custom headers are sent and trailing slashes are stripped"""
    # ARRANGE
    connection = make_connection(
        type="openai",
        endpoint="https://proxy.example.com/v1/",
        api_key="k",
        custom_headers={"X-Team": "llamb"},
    )

    # ACT
    request = OpenAIProvider().build_request(connection, MESSAGES)

    # ASSERT
    assert request.url == "https://proxy.example.com/v1/chat/completions"
    assert request.headers["X-Team"] == "llamb"


# ============================================================
# Validation Tests
# ============================================================


@pytest.mark.unit
def test_validation_requires_api_key_for_remote(make_connection):
    """Test remote OpenAI endpoints need a credential"""
    connection = make_connection(type="openai", endpoint="https://api.openai.com/v1", api_key=None)

    with pytest.raises(LLMValidationError) as exc_info:
        OpenAIProvider().build_request(connection, MESSAGES)

    assert "API key is required" in str(exc_info.value)


@pytest.mark.unit
def test_validation_allows_local_without_api_key(make_connection):
    """Test local endpoints work without a credential"""
    connection = make_connection(type="openai", endpoint="http://127.0.0.1:8080/v1", api_key=None)

    request = OpenAIProvider().build_request(connection, MESSAGES)

    assert "Authorization" not in request.headers


@pytest.mark.unit
@pytest.mark.parametrize("field,message", [("endpoint", "Endpoint is required"), ("model", "Model is required")])
def test_validation_requires_endpoint_and_model(make_connection, field, message):
    """Test endpoint and model are mandatory"""
    connection = make_connection(type="openai", api_key="k", **{field: ""})

    with pytest.raises(LLMValidationError) as exc_info:
        OpenAIProvider().build_request(connection, MESSAGES)

    assert message in str(exc_info.value)


# ============================================================
# Single-shot Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_message_success(remote_connection):
    """Test a successful non-streaming call is normalized"""
    # ARRANGE
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion_body())

    provider = provider_with(handler)

    # ACT
    response = await provider.send_message(remote_connection, MESSAGES)

    # ASSERT
    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["body"]["stream"] is False
    assert response.content == "Hello!"
    assert response.finish_reason == "stop"
    assert response.model == "gpt-4o"
    assert response.usage["total_tokens"] == 7


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_message_no_choices(remote_connection):
    """Test an empty choices list is an invalid response"""
    provider = provider_with(lambda request: httpx.Response(200, json={"choices": []}))

    with pytest.raises(LLMInvalidResponseError) as exc_info:
        await provider.send_message(remote_connection, MESSAGES)

    assert "No response choices received" in str(exc_info.value)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_message_invalid_json(remote_connection):
    """Test a non-JSON 200 body is an invalid response"""
    provider = provider_with(lambda request: httpx.Response(200, content=b"<html>oops</html>"))

    with pytest.raises(LLMInvalidResponseError):
        await provider.send_message(remote_connection, MESSAGES)


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("status,error_class", [
    (400, LLMHTTPError),
    (401, LLMAuthenticationError),
    (403, LLMAuthenticationError),
    (429, LLMRateLimitError),
    (500, LLMHTTPError),
])
async def test_send_message_http_errors(remote_connection, status, error_class):
    """Test non-2xx statuses map to errors carrying status and body"""
    # ARRANGE
    provider = provider_with(lambda request: httpx.Response(status, text='{"error":"nope"}'))

    # ACT
    with pytest.raises(error_class) as exc_info:
        await provider.send_message(remote_connection, MESSAGES)

    # ASSERT
    assert exc_info.value.status_code == status
    assert exc_info.value.body == '{"error":"nope"}'
    assert f"OpenAI API error: {status}" in str(exc_info.value)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_message_timeout(make_connection):
    """Test a transport that never answers surfaces as LLMTimeoutError"""
    # ARRANGE
    connection = make_connection(type="openai", api_key="k", timeout=0.05)

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(30)
        return httpx.Response(200, json=completion_body())

    provider = provider_with(handler)

    # ACT & ASSERT
    with pytest.raises(LLMTimeoutError) as exc_info:
        await asyncio.wait_for(provider.send_message(connection, MESSAGES), timeout=5)

    assert "timeout" in str(exc_info.value).lower()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_message_connection_error(remote_connection):
    """Test network failures surface as LLMConnectionError"""
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    provider = provider_with(handler)

    with pytest.raises(LLMConnectionError):
        await provider.send_message(remote_connection, MESSAGES)


# ============================================================
# Streaming Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_streaming_message_returns_unread_body(remote_connection, sse_body, openai_chunk):
    """Test streaming dispatch returns the raw response for the caller to read"""
    # ARRANGE
    body = sse_body(openai_chunk("Hel"), openai_chunk("lo"), "[DONE]")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    provider = provider_with(handler)

    # ACT
    response = await provider.send_streaming_message(remote_connection, MESSAGES)
    text = "".join([piece async for piece in response.aiter_text()])
    await response.aclose()

    # ASSERT
    assert seen["body"]["stream"] is True
    assert text == body.decode("utf-8")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_streaming_message_http_error(remote_connection):
    """Test streaming dispatch raises on non-2xx before any body is read"""
    provider = provider_with(lambda request: httpx.Response(503, text="overloaded"))

    with pytest.raises(LLMHTTPError) as exc_info:
        await provider.send_streaming_message(remote_connection, MESSAGES)

    assert exc_info.value.status_code == 503
    assert exc_info.value.body == "overloaded"


# ============================================================
# Connection Test Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connection_test_success(remote_connection):
    """Test the model listing probe reports success"""
    # ARRANGE
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"data": []})

    provider = provider_with(handler)

    # ACT
    result = await provider.test_connection(remote_connection)

    # ASSERT
    assert result.success is True
    assert result.status == 200
    assert result.message == "Connection successful"
    assert seen == {"method": "GET", "url": "https://api.openai.com/v1/models", "auth": "Bearer sk-test"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connection_test_failures_never_raise(remote_connection):
    """Test probe failures are reported, not raised"""
    # ARRANGE
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    # ACT
    unauthorized = await provider_with(lambda request: httpx.Response(401)).test_connection(remote_connection)
    unreachable = await provider_with(refuse).test_connection(remote_connection)

    # ASSERT
    assert (unauthorized.success, unauthorized.status, unauthorized.message) == (False, 401, "HTTP 401")
    assert unreachable.success is False
    assert unreachable.status == 0
    assert "Connection refused" in unreachable.message
