"""Shared fixtures for all tests."""

import asyncio

import pytest

from frontend.attachments import AttachmentSlot, PendingAttachment
from frontend.conversation import ConversationStore

# Smallest valid PNG header-ish payload; content is never decoded.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class StubRelay:
    """Transport double. Each send() waits until the test releases it.

    Call `succeed(text)` or `fail(exc)` to resolve the pending request. With
    `ignore_cancel=True` the stub keeps waiting after task cancellation, like a
    transport that cannot abort in time.
    """

    def __init__(self, ignore_cancel: bool = False):
        self.calls: list[tuple[list, PendingAttachment | None]] = []
        self.ignore_cancel = ignore_cancel
        self.started = asyncio.Event()
        self._release = asyncio.Event()
        self._reply: str | None = None
        self._error: Exception | None = None

    def reset(self) -> None:
        """Arm the stub for another request."""
        self.started.clear()
        self._release.clear()
        self._reply = None
        self._error = None

    def succeed(self, text: str) -> None:
        self._reply = text
        self._release.set()

    def fail(self, error: Exception) -> None:
        self._error = error
        self._release.set()

    async def send(self, history, attachment=None) -> str:
        self.calls.append((history, attachment))
        self.started.set()
        while True:
            try:
                await self._release.wait()
                break
            except asyncio.CancelledError:
                if not self.ignore_cancel:
                    raise
        if self._error is not None:
            raise self._error
        return self._reply


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def cat_image() -> PendingAttachment:
    return PendingAttachment(data=PNG_BYTES, media_type="image/png", name="cat.png")


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore(max_messages=10)


@pytest.fixture
def slot() -> AttachmentSlot:
    return AttachmentSlot()


@pytest.fixture
def stub_relay() -> StubRelay:
    return StubRelay()


@pytest.fixture
def stubborn_relay() -> StubRelay:
    """Relay double that keeps running after the request is cancelled."""
    return StubRelay(ignore_cancel=True)
