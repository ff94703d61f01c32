"""OpenRouter chat-completions adapter.

Forwards the (possibly multimodal) message list to an OpenAI-compatible
/chat/completions endpoint and extracts the first choice's content. No retry:
upstream failures are reported back to the client as-is.
"""

import os
from typing import Callable

import httpx
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemini-2.5-pro-exp-03-25:free"


class LLMError(Exception):
    """Base class for upstream failures. `status_code` is what the relay returns."""
    status_code = 502

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class MissingAPIKeyError(LLMError):
    """No credential configured on the server."""
    status_code = 500


class UpstreamStatusError(LLMError):
    """Provider answered with a non-success status (passed through)."""
    pass


class EmptyCompletionError(LLMError):
    """Provider answered 2xx but no reply content could be extracted."""
    pass


class UpstreamUnavailableError(LLMError):
    """Provider could not be reached or timed out."""
    pass


def env_api_key() -> str:
    return os.environ.get("OPENROUTER_API_KEY", "")


class LLMAdapter:
    """Wraps the upstream provider's chat-completions call.

    Args:
        api_key_provider: Callable returning the bearer credential. Resolved
            per request so a key rotated in the environment is picked up.
        client: Shared httpx.AsyncClient. Created lazily if omitted.
    """

    def __init__(self, api_key_provider: Callable[[], str] = env_api_key, client: httpx.AsyncClient | None = None):
        self.api_key_provider = api_key_provider
        self.base_url = os.environ.get("OPENROUTER_URL", DEFAULT_BASE_URL).rstrip("/")
        self.model_name = os.environ.get("OPENROUTER_MODEL", DEFAULT_MODEL)
        self.timeout = float(os.environ.get("LLM_TIMEOUT", "60"))
        self.site_url = os.environ.get("SITE_URL", "")
        self.site_title = os.environ.get("SITE_TITLE", "RelayChat")

        max_tokens = os.environ.get("LLM_MAX_TOKENS")
        temperature = os.environ.get("LLM_TEMPERATURE")
        self.max_tokens = int(max_tokens) if max_tokens else None
        self.temperature = float(temperature) if temperature else None

        self._client = client

    def is_healthy(self) -> bool:
        """True if a credential is configured."""
        return bool(self.api_key_provider())

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def build_body(self, messages: list[dict]) -> dict:
        body = {"model": self.model_name, "messages": messages}
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            body["temperature"] = self.temperature
        return body

    def _headers(self, api_key: str, referer: str | None) -> dict:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": referer or self.site_url or "",
            "X-Title": self.site_title,
        }

    async def complete(self, messages: list[dict], referer: str | None = None) -> str:
        """Send the conversation upstream and return the trimmed reply.

        Args:
            messages: OpenAI-style message dicts, last user turn possibly multimodal.
            referer: Client's Referer header, forwarded for attribution.

        Returns:
            Reply text. May be the empty string.

        Raises:
            MissingAPIKeyError: If no credential is configured.
            UpstreamStatusError: On a non-2xx provider response.
            UpstreamUnavailableError: On timeout or connection failure.
            EmptyCompletionError: If no content can be extracted.
        """
        api_key = self.api_key_provider()
        if not api_key:
            logger.error("llm.no_api_key", hint="Set OPENROUTER_API_KEY in .env")
            raise MissingAPIKeyError("API key not configured on server")

        logger.info("llm.invoke", model=self.model_name, turns=len(messages))

        try:
            resp = await self._get_client().post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(api_key, referer),
                json=self.build_body(messages),
            )
        except httpx.TimeoutException:
            logger.error("llm.timeout", threshold=self.timeout)
            raise UpstreamUnavailableError("Upstream request timed out", status_code=504)
        except httpx.TransportError as e:
            logger.error("llm.unreachable", error=str(e))
            raise UpstreamUnavailableError("Upstream request failed")

        if not resp.is_success:
            logger.error("llm.upstream_error", status=resp.status_code, model=self.model_name,
                         body=resp.text[:500])
            raise UpstreamStatusError(f"AI provider error ({resp.status_code})", status_code=resp.status_code)

        try:
            completion = resp.json()
        except ValueError:
            logger.error("llm.invalid_json", body=resp.text[:500])
            raise EmptyCompletionError("Failed to get valid response from AI")

        reply, finish_reason = extract_reply(completion)
        if reply is None:
            logger.error("llm.no_content", finish_reason=finish_reason)
            message = "Failed to get valid response from AI"
            if finish_reason:
                message += f" (finish reason: {finish_reason})"
            raise EmptyCompletionError(message)

        logger.info("llm.ok", reply_len=len(reply))
        return reply


def extract_reply(completion) -> tuple[str | None, str | None]:
    """Pull choices[0].message.content (trimmed) and finish_reason.

    Returns:
        (reply, finish_reason). reply is None when missing or not a string;
        an empty string is a valid reply.
    """
    if not isinstance(completion, dict):
        return None, None
    choices = completion.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None, None

    choice = choices[0]
    finish_reason = choice.get("finish_reason")
    message = choice.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        return None, finish_reason
    return content.strip(), finish_reason
