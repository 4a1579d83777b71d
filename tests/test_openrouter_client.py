from typing import List

import httpx
import pytest

from companion_memory.openrouter_client import OpenRouterClient, TextGenerationError
from companion_memory.config import get_settings


class _FakeResponse:
    def __init__(self, status_code=200, content="ok"):
        self.status_code = status_code
        self._content = content
        self.text = "upstream error"

    def json(self):
        return {"choices": [{"message": {"content": self._content}}]}


class _FakeAsyncClient:
    def __init__(self, *args, **kwargs):
        self._captures = kwargs.get("captures")
        self._response = kwargs.get("response") or _FakeResponse()
        self._error = kwargs.get("error")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, _url, headers=None, json=None):
        if self._captures is not None:
            self._captures.append(json)
        if self._error is not None:
            raise self._error
        return self._response


@pytest.mark.asyncio
async def test_openrouter_model_routing(monkeypatch):
    captures: List[dict] = []

    monkeypatch.setenv("OPENROUTER_MODEL_SUMMARY", "amazon/nova-micro")
    monkeypatch.setenv("OPENROUTER_MODEL_TAGGING", "xiaomi/mimo-v2-flash")
    monkeypatch.setenv("OPENROUTER_MODEL_FALLBACK", "mistral/ministral-3b")
    get_settings.cache_clear()

    def _client_factory(*_args, **_kwargs):
        return _FakeAsyncClient(captures=captures)

    monkeypatch.setattr("companion_memory.openrouter_client.httpx.AsyncClient", _client_factory)

    client = OpenRouterClient()

    assert await client.complete("hi", task="summary") == "ok"
    await client.complete("hi", task="tagging")
    await client.complete("hi")

    models = [payload["model"] for payload in captures]
    assert models == ["amazon/nova-micro", "xiaomi/mimo-v2-flash", "mistral/ministral-3b"]
    assert captures[0]["messages"][-1] == {"role": "user", "content": "hi"}


@pytest.mark.asyncio
async def test_complete_raises_on_http_error(monkeypatch):
    def _client_factory(*_args, **_kwargs):
        return _FakeAsyncClient(response=_FakeResponse(status_code=429))

    monkeypatch.setattr("companion_memory.openrouter_client.httpx.AsyncClient", _client_factory)

    with pytest.raises(TextGenerationError):
        await OpenRouterClient().complete("hi", task="summary")


@pytest.mark.asyncio
async def test_complete_raises_on_timeout(monkeypatch):
    def _client_factory(*_args, **_kwargs):
        return _FakeAsyncClient(error=httpx.ReadTimeout("slow"))

    monkeypatch.setattr("companion_memory.openrouter_client.httpx.AsyncClient", _client_factory)

    with pytest.raises(TextGenerationError):
        await OpenRouterClient().complete("hi", task="tagging")


@pytest.mark.asyncio
async def test_complete_raises_on_empty_content(monkeypatch):
    def _client_factory(*_args, **_kwargs):
        return _FakeAsyncClient(response=_FakeResponse(content=""))

    monkeypatch.setattr("companion_memory.openrouter_client.httpx.AsyncClient", _client_factory)

    with pytest.raises(TextGenerationError):
        await OpenRouterClient().complete("hi")
