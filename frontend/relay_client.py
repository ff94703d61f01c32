"""HTTP client for the relay's POST /api/chat endpoint.

Sends the conversation history (plus the raw image bytes when one is
attached) and reshapes the relay's JSON answer into either a reply string or
a RelayError.
"""

import json

import httpx
import structlog

from frontend.attachments import PendingAttachment
from frontend.conversation import Message
from frontend.errors import MalformedResponse, TransportError, UpstreamError

logger = structlog.get_logger(__name__)

CHAT_PATH = "/api/chat"
ENCODINGS = ("multipart", "json")


class RelayClient:
    """Posts chat turns to the relay.

    Args:
        base_url: Relay origin, e.g. "http://localhost:8000".
        encoding: "multipart" (default) or "json". JSON is only used for
            text-only turns; a turn with an image always goes multipart.
        client: Optional pre-built httpx.AsyncClient (tests inject one backed
            by httpx.MockTransport).
    """

    def __init__(self, base_url: str, encoding: str = "multipart", client: httpx.AsyncClient | None = None):
        if encoding not in ENCODINGS:
            raise ValueError(f"encoding must be one of {ENCODINGS}, got {encoding!r}")
        self.base_url = base_url.rstrip("/")
        self.encoding = encoding
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{CHAT_PATH}"

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        # No timeout here; the lifecycle manager owns the optional deadline.
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=None)
        return self._client

    def _build_request_kwargs(self, history: list[Message], attachment: PendingAttachment | None) -> dict:
        wire_history = [m.to_wire() for m in history]

        if attachment is None and self.encoding == "json":
            return {"json": {"messages": wire_history}}

        # A part without a filename is read back as a plain form field.
        files = {"history": (None, json.dumps(wire_history))}
        if attachment is not None:
            files["image"] = (attachment.name, attachment.data, attachment.media_type)
        return {"files": files}

    async def send(self, history: list[Message], attachment: PendingAttachment | None = None) -> str:
        """Send one turn and return the reply text.

        Args:
            history: Settled conversation, ending with the new user turn.
            attachment: Optional image whose bytes go in the "image" part.

        Returns:
            The reply string (possibly empty).

        Raises:
            TransportError: If the relay could not be reached.
            UpstreamError: If the relay answered with a non-success status.
            MalformedResponse: If a success body has no string "reply".
        """
        kwargs = self._build_request_kwargs(history, attachment)
        logger.info("relay.send", endpoint=self.endpoint, turns=len(history),
                    image=attachment.name if attachment else None,
                    encoding="json" if "json" in kwargs else "multipart")

        try:
            resp = await self._get_client().post(self.endpoint, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("relay.timeout", error=str(e))
            raise TransportError(f"Request to relay timed out: {e}") from e
        except httpx.TransportError as e:
            logger.warning("relay.transport_failed", error=str(e))
            raise TransportError(f"Could not reach relay: {e}") from e

        return _parse_reply(resp)


def _parse_reply(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None

    if not resp.is_success:
        message = None
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            message = body["error"]
        description = message or f"API Error: HTTP {resp.status_code} {resp.reason_phrase}".rstrip()
        logger.warning("relay.upstream_error", status=resp.status_code, error=description)
        raise UpstreamError(description, status_code=resp.status_code)

    if not isinstance(body, dict) or not isinstance(body.get("reply"), str):
        logger.warning("relay.malformed_response", status=resp.status_code)
        raise MalformedResponse("Relay response did not contain a reply.")

    return body["reply"]
