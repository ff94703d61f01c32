"""Single in-flight request lifecycle for the chat client.

Drives one send -> receive -> reconcile cycle against the relay and owns
user cancellation. States:

    IDLE -> IN_FLIGHT -> COMPLETED_SUCCESS | COMPLETED_FAILURE | CANCELLED -> IDLE

Only one request may be in flight. Cancellation is advisory for the
transport; a result that arrives after cancel() is discarded here.
"""

import asyncio
from enum import Enum

import structlog

from frontend.attachments import AttachmentSlot, PendingAttachment
from frontend.conversation import ConversationStore, Message
from frontend.errors import EmptyTurn, RelayError, TransportError
from frontend.relay_client import RelayClient

logger = structlog.get_logger(__name__)

# User cancellation is reported as this notice, never as an error.
CANCELLED_NOTICE = "Stopped by user."


class LifecycleState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    COMPLETED_SUCCESS = "completed_success"
    COMPLETED_FAILURE = "completed_failure"
    CANCELLED = "cancelled"


class CancelToken:
    """One-shot cancellation flag for a single request."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Set the flag. Returns True only for the first call."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()


class LifecycleListener:
    """Presentation hooks. Subclass and override what the UI needs."""

    def on_state(self, state: LifecycleState) -> None:
        pass

    def on_reply(self, message: Message) -> None:
        pass

    def on_notice(self, message: Message, kind: str) -> None:
        """kind is "error" or "cancelled"."""
        pass


class RequestLifecycleManager:
    """Runs chat turns against the relay, one at a time.

    Args:
        store: Conversation history for this session.
        transport: Object with `async send(history, attachment) -> str`,
            normally a RelayClient.
        attachments: Pending image slot, cleared after every turn.
        listener: Presentation hooks.
        request_timeout: Optional deadline in seconds. Exceeding it is a
            failure, not a cancellation.
    """

    def __init__(
        self,
        store: ConversationStore,
        transport: RelayClient,
        attachments: AttachmentSlot | None = None,
        listener: LifecycleListener | None = None,
        request_timeout: float | None = None,
    ):
        self.store = store
        self.transport = transport
        self.attachments = attachments
        self.listener = listener or LifecycleListener()
        self.request_timeout = request_timeout

        self.state = LifecycleState.IDLE
        self.last_outcome: LifecycleState | None = None
        self._token: CancelToken | None = None
        self._task: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        """True while input should stay disabled."""
        return self.state is not LifecycleState.IDLE

    async def send(self, user_text: str, attachment: PendingAttachment | None = None) -> Message | None:
        """Send one user turn and reconcile the outcome into history.

        Args:
            user_text: Text typed by the user.
            attachment: Optional image to send alongside.

        Returns:
            The stored assistant Message on success, otherwise None.

        Raises:
            EmptyTurn: If there is neither text nor an attachment.
        """
        if self.state is not LifecycleState.IDLE:
            logger.warning("lifecycle.send_rejected", state=self.state.value)
            return None

        if not (user_text or "").strip() and attachment is None:
            raise EmptyTurn()

        self.store.append_user(user_text, attachment)
        outgoing = self.store.snapshot(include_system=False)

        token = CancelToken()
        self._token = token
        self._set_state(LifecycleState.IN_FLIGHT)
        self._task = asyncio.ensure_future(self.transport.send(outgoing, attachment))
        self._task.add_done_callback(_consume_result)
        logger.info("lifecycle.in_flight", turns=len(outgoing), image=attachment is not None)

        try:
            return await self._settle(self._task, token)
        finally:
            self._task = None
            self._token = None
            if self.attachments is not None:
                self.attachments.clear()
            self._set_state(LifecycleState.IDLE)

    def cancel(self) -> bool:
        """Abort the in-flight request.

        Returns:
            True if this call cancelled something, False if there was nothing
            to cancel or it was already cancelled.
        """
        if self.state is not LifecycleState.IN_FLIGHT or self._token is None:
            return False
        if not self._token.cancel():
            return False

        logger.info("lifecycle.cancel_requested")
        if self._task is not None:
            self._task.cancel()
        return True

    async def _settle(self, task: asyncio.Task, token: CancelToken) -> Message | None:
        cancel_waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait(
                {task, cancel_waiter},
                timeout=self.request_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            # send() itself was cancelled by its caller; treat it as a user stop.
            token.cancel()
            task.cancel()
            self._finish_cancelled()
            raise
        finally:
            cancel_waiter.cancel()

        if token.cancelled:
            return self._finish_cancelled()

        if not task.done():
            task.cancel()
            return self._finish_failed(
                TransportError(f"Request timed out after {self.request_timeout:g}s")
            )

        if task.cancelled():
            return self._finish_cancelled()

        exc = task.exception()
        if exc is not None:
            if not isinstance(exc, RelayError):
                logger.error("lifecycle.unexpected_error", error=str(exc), error_type=type(exc).__name__)
                exc = RelayError(f"Unexpected error: {exc}")
            return self._finish_failed(exc)

        return self._finish_succeeded(task.result())

    def _finish_succeeded(self, reply: str) -> Message:
        message = self.store.append_assistant(reply)
        self._set_state(LifecycleState.COMPLETED_SUCCESS)
        logger.info("lifecycle.completed", reply_len=len(reply))
        self.listener.on_reply(message)
        return message

    def _finish_failed(self, error: RelayError) -> None:
        notice = self.store.append_system(f"Error: {error.description}")
        self._set_state(LifecycleState.COMPLETED_FAILURE)
        logger.warning("lifecycle.failed", error=error.description, error_type=type(error).__name__)
        self.listener.on_notice(notice, "error")
        return None

    def _finish_cancelled(self) -> None:
        notice = self.store.append_system(CANCELLED_NOTICE)
        self._set_state(LifecycleState.CANCELLED)
        logger.info("lifecycle.cancelled")
        self.listener.on_notice(notice, "cancelled")
        return None

    def _set_state(self, state: LifecycleState) -> None:
        self.state = state
        if state not in (LifecycleState.IDLE, LifecycleState.IN_FLIGHT):
            self.last_outcome = state
        self.listener.on_state(state)


def _consume_result(task: asyncio.Task) -> None:
    """Mark a finished transport task's exception as retrieved.

    Results of discarded (cancelled or timed-out) requests are never read
    otherwise.
    """
    if not task.cancelled():
        task.exception()
