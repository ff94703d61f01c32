"""Background asyncio loop for the Streamlit client.

Streamlit reruns the script on a fresh thread for every interaction, so the
chat session's async state (lifecycle manager, httpx client) lives on one
long-lived loop thread instead. The script thread only posts work to it.
"""

import asyncio
import threading
from concurrent.futures import Future
from typing import Any, Callable, Coroutine, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT: float = 10.0


class BackgroundLoop:
    """An event loop running forever on a daemon thread."""

    def __init__(self, name: str = "chat-loop"):
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()
        logger.debug("loop.started", thread=name)

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def submit(self, coro: Coroutine[Any, Any, T]) -> Future:
        """Schedule a coroutine and return immediately with its future."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def call(self, fn: Callable[..., T], *args: Any, timeout: float | None = DEFAULT_TIMEOUT) -> T:
        """Run a plain callable on the loop thread and block for its result."""

        async def _invoke() -> T:
            return fn(*args)

        return self.submit(_invoke()).result(timeout=timeout)

    def stop(self) -> None:
        if self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=DEFAULT_TIMEOUT)
        logger.debug("loop.stopped")
