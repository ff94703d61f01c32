"""Contract tests for the relay HTTP client (httpx.MockTransport, no network)."""

import json

import httpx
import pytest

from frontend.conversation import Message, Role
from frontend.errors import MalformedResponse, TransportError, UpstreamError
from frontend.relay_client import RelayClient


def _client(handler, encoding="multipart") -> RelayClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RelayClient("http://relay.test/", encoding=encoding, client=http)


@pytest.fixture
def history():
    return [Message(Role.USER, "hello")]


class TestRequestEncoding:

    @pytest.mark.asyncio
    async def test_multipart_history_field(self, history):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(200, json={"reply": "hi"})

        await _client(handler).send(history)

        assert seen["url"] == "http://relay.test/api/chat"
        assert seen["content_type"].startswith("multipart/form-data")
        assert b'name="history"' in seen["body"]
        assert b"filename=" not in seen["body"]
        assert json.dumps([{"role": "user", "content": "hello"}]).encode() in seen["body"]

    @pytest.mark.asyncio
    async def test_multipart_image_part(self, cat_image, png_bytes):
        seen = {}

        def handler(request: httpx.Request):
            seen["body"] = request.content
            return httpx.Response(200, json={"reply": "a cat"})

        history = [Message(Role.USER, "look\n[User uploaded image: cat.png]")]
        await _client(handler).send(history, cat_image)

        assert b'name="image"; filename="cat.png"' in seen["body"]
        assert b"Content-Type: image/png" in seen["body"]
        assert png_bytes in seen["body"]

    @pytest.mark.asyncio
    async def test_json_encoding_for_text_only(self, history):
        seen = {}

        def handler(request: httpx.Request):
            seen["content_type"] = request.headers["content-type"]
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, json={"reply": "hi"})

        await _client(handler, encoding="json").send(history)

        assert seen["content_type"] == "application/json"
        assert seen["json"] == {"messages": [{"role": "user", "content": "hello"}]}

    @pytest.mark.asyncio
    async def test_json_encoding_falls_back_to_multipart_with_image(self, cat_image):
        seen = {}

        def handler(request: httpx.Request):
            seen["content_type"] = request.headers["content-type"]
            return httpx.Response(200, json={"reply": "ok"})

        await _client(handler, encoding="json").send([Message(Role.USER, "x")], cat_image)
        assert seen["content_type"].startswith("multipart/form-data")

    def test_unknown_encoding_rejected(self):
        with pytest.raises(ValueError):
            RelayClient("http://relay.test", encoding="xml")


class TestResponseHandling:

    @pytest.mark.asyncio
    async def test_reply_returned(self, history):
        client = _client(lambda r: httpx.Response(200, json={"reply": "hi there"}))
        assert await client.send(history) == "hi there"

    @pytest.mark.asyncio
    async def test_empty_reply_is_valid(self, history):
        client = _client(lambda r: httpx.Response(200, json={"reply": ""}))
        assert await client.send(history) == ""

    @pytest.mark.asyncio
    async def test_error_status_uses_error_field(self, history):
        client = _client(lambda r: httpx.Response(502, json={"error": "boom"}))
        with pytest.raises(UpstreamError) as exc:
            await client.send(history)
        assert exc.value.description == "boom"
        assert exc.value.status_code == 502

    @pytest.mark.asyncio
    async def test_error_status_without_json_body(self, history):
        client = _client(lambda r: httpx.Response(500, text="<html>oops</html>"))
        with pytest.raises(UpstreamError) as exc:
            await client.send(history)
        assert "500" in exc.value.description

    @pytest.mark.parametrize("body", [{}, {"reply": None}, {"reply": 42}, ["reply"]])
    @pytest.mark.asyncio
    async def test_success_without_reply_is_malformed(self, history, body):
        client = _client(lambda r: httpx.Response(200, json=body))
        with pytest.raises(MalformedResponse):
            await client.send(history)

    @pytest.mark.asyncio
    async def test_success_with_non_json_body_is_malformed(self, history):
        client = _client(lambda r: httpx.Response(200, text="not json"))
        with pytest.raises(MalformedResponse):
            await client.send(history)

    @pytest.mark.asyncio
    async def test_connection_failure_is_transport_error(self, history):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError) as exc:
            await _client(handler).send(history)
        assert "connection refused" in exc.value.description

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self, history):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransportError):
            await _client(handler).send(history)
