"""Contract tests for the upstream LLM adapter (mocked, no real API calls)."""

import json

import httpx
import pytest

from backend.core.llm_adapter import (
    EmptyCompletionError,
    LLMAdapter,
    MissingAPIKeyError,
    UpstreamStatusError,
    UpstreamUnavailableError,
    extract_reply,
)

MESSAGES = [{"role": "user", "content": "Hello"}]


def _completion(content, finish_reason="stop"):
    return {"choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}]}


@pytest.fixture(autouse=True)
def relay_env(monkeypatch):
    monkeypatch.setenv("OPENROUTER_URL", "https://upstream.test/api/v1")
    monkeypatch.setenv("OPENROUTER_MODEL", "test/model")
    monkeypatch.setenv("SITE_URL", "https://chat.example")
    monkeypatch.setenv("SITE_TITLE", "Test Chat")
    monkeypatch.delenv("LLM_MAX_TOKENS", raising=False)
    monkeypatch.delenv("LLM_TEMPERATURE", raising=False)


def _adapter(handler, key="test-key") -> LLMAdapter:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LLMAdapter(api_key_provider=lambda: key, client=http)


class TestLLMAdapterInit:

    def test_loads_env(self):
        adapter = LLMAdapter(api_key_provider=lambda: "k")
        assert adapter.base_url == "https://upstream.test/api/v1"
        assert adapter.model_name == "test/model"
        assert adapter.is_healthy()

    def test_unhealthy_without_key(self):
        assert not LLMAdapter(api_key_provider=lambda: "").is_healthy()

    def test_optional_generation_params(self, monkeypatch):
        monkeypatch.setenv("LLM_MAX_TOKENS", "4096")
        monkeypatch.setenv("LLM_TEMPERATURE", "0.2")
        body = LLMAdapter(api_key_provider=lambda: "k").build_body(MESSAGES)
        assert body == {"model": "test/model", "messages": MESSAGES, "max_tokens": 4096, "temperature": 0.2}

    def test_body_without_optional_params(self):
        body = LLMAdapter(api_key_provider=lambda: "k").build_body(MESSAGES)
        assert body == {"model": "test/model", "messages": MESSAGES}


class TestComplete:

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion("  Hi!  "))

        reply = await _adapter(handler).complete(MESSAGES, referer="https://page.example/")

        assert reply == "Hi!"
        assert seen["url"] == "https://upstream.test/api/v1/chat/completions"
        assert seen["headers"]["authorization"] == "Bearer test-key"
        assert seen["headers"]["http-referer"] == "https://page.example/"
        assert seen["headers"]["x-title"] == "Test Chat"
        assert seen["body"] == {"model": "test/model", "messages": MESSAGES}

    @pytest.mark.asyncio
    async def test_referer_falls_back_to_site_url(self):
        seen = {}

        def handler(request):
            seen["referer"] = request.headers["http-referer"]
            return httpx.Response(200, json=_completion("ok"))

        await _adapter(handler).complete(MESSAGES)
        assert seen["referer"] == "https://chat.example"

    @pytest.mark.asyncio
    async def test_empty_content_is_valid_reply(self):
        adapter = _adapter(lambda r: httpx.Response(200, json=_completion("   ")))
        assert await adapter.complete(MESSAGES) == ""

    @pytest.mark.asyncio
    async def test_missing_key(self):
        def handler(request):
            raise AssertionError("upstream must not be called without a key")

        with pytest.raises(MissingAPIKeyError) as exc:
            await _adapter(handler, key="").complete(MESSAGES)
        assert exc.value.status_code == 500
        assert str(exc.value) == "API key not configured on server"

    @pytest.mark.parametrize("status", [401, 429, 503])
    @pytest.mark.asyncio
    async def test_upstream_status_passed_through(self, status):
        adapter = _adapter(lambda r: httpx.Response(status, json={"error": {"message": "secret detail"}}))
        with pytest.raises(UpstreamStatusError) as exc:
            await adapter.complete(MESSAGES)
        assert exc.value.status_code == status
        assert str(exc.value) == f"AI provider error ({status})"

    @pytest.mark.asyncio
    async def test_missing_content_with_finish_reason(self):
        adapter = _adapter(lambda r: httpx.Response(200, json=_completion(None, "content_filter")))
        with pytest.raises(EmptyCompletionError) as exc:
            await adapter.complete(MESSAGES)
        assert exc.value.status_code == 502
        assert "finish reason: content_filter" in str(exc.value)

    @pytest.mark.asyncio
    async def test_no_choices(self):
        adapter = _adapter(lambda r: httpx.Response(200, json={"choices": []}))
        with pytest.raises(EmptyCompletionError) as exc:
            await adapter.complete(MESSAGES)
        assert str(exc.value) == "Failed to get valid response from AI"

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        adapter = _adapter(lambda r: httpx.Response(200, text="gateway page"))
        with pytest.raises(EmptyCompletionError):
            await adapter.complete(MESSAGES)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("Timeout", request=request)

        with pytest.raises(UpstreamUnavailableError) as exc:
            await _adapter(handler).complete(MESSAGES)
        assert exc.value.status_code == 504

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamUnavailableError) as exc:
            await _adapter(handler).complete(MESSAGES)
        assert exc.value.status_code == 502


class TestExtractReply:

    @pytest.mark.parametrize("completion", [None, [], {}, {"choices": "x"}, {"choices": [None]},
                                            {"choices": [{"message": "x"}]},
                                            {"choices": [{"message": {"content": 3}}]}])
    def test_unusable_shapes(self, completion):
        assert extract_reply(completion)[0] is None

    def test_trims(self):
        assert extract_reply(_completion("\n answer \n")) == ("answer", "stop")
