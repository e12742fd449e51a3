"""
Pytest configuration and shared fixtures for LlamB tests
"""
import json
from typing import Any, Callable, Dict, Iterable

import httpx
import pytest

from llamb.config.settings import LLMSettings
from llamb.llm import Connection, ConnectionFeatures, LLMProviderFactory


# ============================================================
# Connections
# ============================================================

@pytest.fixture
def make_connection() -> Callable[..., Connection]:
    """
    Build Connection snapshots with test defaults

    Usage:
        def test_something(make_connection):
            connection = make_connection(type="anthropic", api_key="k")
    """
    def _make(**overrides: Any) -> Connection:
        fields: Dict[str, Any] = {
            "id": "conn-1",
            "name": "Test Connection",
            "type": "openai-compatible",
            "endpoint": "http://localhost:11434/v1",
            "model": "llama3",
            "timeout": 5.0,
        }
        fields.update(overrides)
        if isinstance(fields.get("features"), dict):
            fields["features"] = ConnectionFeatures(**fields["features"])
        return Connection(**fields)

    return _make


@pytest.fixture
def llm_settings() -> LLMSettings:
    """Default settings, independent of LLAMB_* environment variables"""
    return LLMSettings()


# ============================================================
# HTTP mocking
# ============================================================

@pytest.fixture
def sse_body() -> Callable[..., bytes]:
    """
    Encode payloads as an SSE body

    dicts are JSON-encoded, strings are sent as-is (e.g. "[DONE]")
    """
    def _encode(*payloads: Any) -> bytes:
        lines = []
        for payload in payloads:
            data = payload if isinstance(payload, str) else json.dumps(payload)
            lines.append(f"data: {data}\n\n")
        return "".join(lines).encode("utf-8")

    return _encode


@pytest.fixture
def chunked() -> Callable[[Iterable[bytes]], Any]:
    """Turn byte pieces into an async body stream (one network read per piece)"""
    def _chunked(pieces: Iterable[bytes]):
        pieces = list(pieces)

        async def _stream():
            for piece in pieces:
                yield piece

        return _stream()

    return _chunked


@pytest.fixture
def mock_providers() -> Callable[[Callable[[httpx.Request], Any]], LLMProviderFactory]:
    """
    Provider factory whose shared client is backed by httpx.MockTransport

    Usage:
        def handler(request):
            return httpx.Response(200, json={...})

        providers = mock_providers(handler)
    """
    def _make(handler: Callable[[httpx.Request], Any]) -> LLMProviderFactory:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return LLMProviderFactory(client=client)

    return _make


def openai_delta(content: str = None, finish_reason: str = None, model: str = "llama3") -> Dict[str, Any]:
    """OpenAI streaming payload with one delta"""
    delta = {} if content is None else {"content": content}
    return {
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


@pytest.fixture
def openai_chunk() -> Callable[..., Dict[str, Any]]:
    return openai_delta
