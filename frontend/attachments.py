"""Pending image attachment held between selection and send.

At most one image is pending at a time. Selecting or pasting another one
replaces it; sending, removing or replacing clears it.
"""

import base64
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from frontend.errors import UnsupportedAttachment

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PendingAttachment:
    """An image the user picked but has not sent yet.

    Attributes:
        data: Raw file bytes.
        media_type: Declared MIME type, e.g. "image/png".
        name: Display name. Synthesized for clipboard pastes.
    """
    data: bytes
    media_type: str
    name: str

    @classmethod
    def from_upload(cls, data: bytes, media_type: str | None, name: str | None = None) -> "PendingAttachment":
        """Build an attachment from a file pick or paste event.

        Args:
            data: Raw image bytes.
            media_type: MIME type reported by the source. Guessed from the name if missing.
            name: Original filename, or None for a paste.

        Returns:
            PendingAttachment with a usable name.

        Raises:
            UnsupportedAttachment: If the payload is empty or not an image.
        """
        if not media_type and name:
            media_type = mimetypes.guess_type(name)[0]
        if not media_type or not media_type.startswith("image/"):
            raise UnsupportedAttachment(f"Only image files can be attached (got {media_type or 'unknown type'}).")
        if not data:
            raise UnsupportedAttachment("Attached image is empty.")

        if not name:
            name = _synthesize_name(media_type)
        return cls(data=data, media_type=media_type, name=name)

    @property
    def size(self) -> int:
        return len(self.data)

    def preview_data_uri(self) -> str:
        """Inline data URI for a thumbnail preview."""
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


def _synthesize_name(media_type: str) -> str:
    ext = mimetypes.guess_extension(media_type) or ".png"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"pasted-image-{stamp}{ext}"


class AttachmentSlot:
    """Holds the single pending attachment and its preview handle."""

    def __init__(self):
        self._pending: PendingAttachment | None = None
        self._preview: str | None = None

    @property
    def pending(self) -> PendingAttachment | None:
        return self._pending

    @property
    def preview(self) -> str | None:
        """Data URI of the current thumbnail, built lazily."""
        if self._pending is not None and self._preview is None:
            self._preview = self._pending.preview_data_uri()
        return self._preview

    def select(self, attachment: PendingAttachment) -> None:
        """Make `attachment` the pending one, silently dropping any previous image."""
        if self._pending is not None:
            logger.debug("attachment.replaced", old=self._pending.name, new=attachment.name)
        self._pending = attachment
        self._preview = None
        logger.info("attachment.selected", name=attachment.name,
                    media_type=attachment.media_type, size=attachment.size)

    def clear(self) -> None:
        self._pending = None
        self._preview = None

    def take(self) -> PendingAttachment | None:
        """Return the pending attachment and empty the slot."""
        attachment = self._pending
        self.clear()
        return attachment
