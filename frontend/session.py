"""Wires one chat session together for the UI.

Owns the conversation store, the pending attachment slot, the relay client
and the lifecycle manager, all bound to a background event loop so a
synchronous UI can submit turns and cancel them.
"""

from concurrent.futures import Future

import structlog

from frontend.attachments import AttachmentSlot, PendingAttachment
from frontend.conversation import ConversationStore, Message
from frontend.errors import EmptyTurn
from frontend.lifecycle import LifecycleListener, RequestLifecycleManager
from frontend.loop import BackgroundLoop
from frontend.relay_client import RelayClient
from frontend.settings import ClientSettings

logger = structlog.get_logger(__name__)


class _NoticeRecorder(LifecycleListener):
    """Remembers what kind each system notice was, for styling."""

    def __init__(self):
        self.kinds: dict[int, str] = {}

    def on_notice(self, message: Message, kind: str) -> None:
        self.kinds[id(message)] = kind


class ChatSession:
    """Everything one browser tab needs to chat with the relay."""

    def __init__(self, settings: ClientSettings | None = None, relay: RelayClient | None = None):
        self.settings = settings or ClientSettings.from_env()
        self.loop = BackgroundLoop()
        self.store = ConversationStore(max_messages=self.settings.max_history)
        self.attachments = AttachmentSlot()
        self.relay = relay or RelayClient(self.settings.relay_url, encoding=self.settings.request_encoding)
        self._notices = _NoticeRecorder()
        self.manager = RequestLifecycleManager(
            self.store,
            self.relay,
            attachments=self.attachments,
            listener=self._notices,
            request_timeout=self.settings.request_timeout,
        )
        self._future: Future | None = None
        # file_id of the picker upload currently held in the slot
        self._upload_id: str | None = None

    @property
    def busy(self) -> bool:
        return self._future is not None and not self._future.done()

    def notice_kind(self, message: Message) -> str | None:
        return self._notices.kinds.get(id(message))

    def attach(self, data: bytes, media_type: str | None, name: str | None = None) -> PendingAttachment:
        """Replace the pending image. Raises UnsupportedAttachment for non-images."""
        attachment = PendingAttachment.from_upload(data, media_type, name)
        self.attachments.select(attachment)
        self._upload_id = None
        return attachment

    def sync_upload(self, upload) -> PendingAttachment | None:
        """Reconcile the file-picker widget with the pending slot.

        A new upload (by file_id, not name) replaces the pending image.
        Clearing the picker drops the image it supplied; an image that came
        from a paste is left alone.

        Args:
            upload: Streamlit UploadedFile, or None when the picker is empty.

        Returns:
            The pending attachment after reconciliation.

        Raises:
            UnsupportedAttachment: If a new upload is not an image.
        """
        if upload is None:
            if self._upload_id is not None:
                self._upload_id = None
                self.attachments.clear()
            return self.attachments.pending

        if upload.file_id == self._upload_id:
            return self.attachments.pending

        try:
            self.attach(upload.getvalue(), upload.type, upload.name)
        finally:
            # Remember rejected uploads too, so they are not retried every rerun.
            self._upload_id = upload.file_id
        return self.attachments.pending

    def submit(self, text: str) -> Future | None:
        """Start a turn with the typed text and the pending image, if any.

        Returns:
            Future resolving to the assistant Message (or None), or None if a
            turn is already running.

        Raises:
            EmptyTurn: If there is nothing to send.
        """
        if self.busy:
            logger.warning("session.submit_while_busy")
            return None
        if not (text or "").strip() and self.attachments.pending is None:
            raise EmptyTurn()

        attachment = self.attachments.take()
        self._upload_id = None
        self._future = self.loop.submit(self.manager.send(text, attachment))
        return self._future

    def stop(self) -> bool:
        """Cancel the running turn. Safe to call repeatedly."""
        if not self.busy:
            return False
        return self.loop.call(self.manager.cancel)

    def reset(self) -> None:
        """Start a new conversation."""
        if self.stop():
            self._future.result(timeout=5)
        self.loop.call(self.store.clear)
        self.attachments.clear()
        self._upload_id = None
        self._notices.kinds.clear()

    def close(self) -> None:
        self.stop()
        self.loop.submit(self.relay.aclose()).result(timeout=5)
        self.loop.stop()
