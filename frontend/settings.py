"""Client configuration read from the environment (.env supported)."""

import os
from dataclasses import dataclass

import structlog

from frontend.conversation import DEFAULT_MAX_MESSAGES

logger = structlog.get_logger(__name__)

# A turn needs room for the user message and its reply.
MIN_HISTORY = 2


@dataclass(frozen=True)
class ClientSettings:
    """Settings for one chat client.

    Attributes:
        relay_url: Origin of the relay service.
        max_history: Non-system messages kept in history.
        request_timeout: Seconds before an in-flight request fails, or None.
        request_encoding: "multipart" or "json" for text-only turns.
    """
    relay_url: str = "http://localhost:8000"
    max_history: int = DEFAULT_MAX_MESSAGES
    request_timeout: float | None = None
    request_encoding: str = "multipart"

    @classmethod
    def from_env(cls) -> "ClientSettings":
        max_history = int(os.environ.get("MAX_HISTORY", str(DEFAULT_MAX_MESSAGES)))
        if max_history < MIN_HISTORY:
            logger.warning("settings.max_history_raised", configured=max_history, used=MIN_HISTORY)
            max_history = MIN_HISTORY

        # Unset, 0 or negative means no deadline.
        timeout_ms = int(os.environ.get("REQUEST_TIMEOUT_MS", "").strip() or "0")
        return cls(
            relay_url=os.environ.get("RELAY_URL", "http://localhost:8000"),
            max_history=max_history,
            request_timeout=timeout_ms / 1000 if timeout_ms > 0 else None,
            request_encoding=os.environ.get("REQUEST_ENCODING", "multipart").lower(),
        )
