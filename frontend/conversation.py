"""In-memory conversation history with a retention cap.

History lives only for the lifetime of the chat session. System notices are
kept for display but never evicted and never counted toward the cap.
"""

from dataclasses import dataclass
from enum import Enum

import structlog

from frontend.attachments import PendingAttachment
from frontend.errors import EmptyTurn

logger = structlog.get_logger(__name__)

DEFAULT_MAX_MESSAGES = 10


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_wire(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImagePart:
    """Image reference inside a multimodal user turn."""
    media_type: str
    url: str

    def to_wire(self) -> dict:
        return {"type": "image_url", "image_url": {"url": self.url}}


Content = str | tuple[TextPart | ImagePart, ...]


@dataclass(frozen=True)
class Message:
    """One turn in the conversation."""
    role: Role
    content: Content

    def __post_init__(self):
        if self.role is not Role.USER and not isinstance(self.content, str):
            raise ValueError(f"{self.role.value} messages must have plain text content")

    @property
    def text(self) -> str:
        """Plain-text view of the content."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    def to_wire(self) -> dict:
        if isinstance(self.content, str):
            content = self.content
        else:
            content = [part.to_wire() for part in self.content]
        return {"role": self.role.value, "content": content}


def placeholder_for(name: str) -> str:
    """Marker embedded in a user turn to acknowledge an attached image."""
    return f"[User uploaded image: {name}]"


def compose_user_text(text: str, attachment: PendingAttachment | None) -> str:
    """Join the user's literal text with the image placeholder, if any."""
    if attachment is None:
        return text
    marker = placeholder_for(attachment.name)
    return f"{text}\n{marker}" if text else marker


class ConversationStore:
    """Ordered message history for one chat session.

    Args:
        max_messages: Maximum number of non-system messages retained.
    """

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES):
        if max_messages < 2:
            raise ValueError("max_messages must be at least 2")
        self.max_messages = max_messages
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    def append_user(self, text: str, attachment: PendingAttachment | None = None) -> Message:
        """Store a user turn.

        Args:
            text: The literal text the user typed.
            attachment: Optional pending image; only its name goes into history.

        Returns:
            The stored Message.

        Raises:
            EmptyTurn: If text is blank and there is no attachment.
        """
        text = (text or "").strip()
        if not text and attachment is None:
            raise EmptyTurn()
        return self._append(Message(Role.USER, compose_user_text(text, attachment)))

    def append_assistant(self, text: str) -> Message:
        """Store a reply verbatim. The empty string is a valid reply."""
        if text is None:
            raise ValueError("assistant reply must be a string")
        return self._append(Message(Role.ASSISTANT, text))

    def append_system(self, text: str) -> Message:
        """Store a presentational notice (errors, cancellation)."""
        return self._append(Message(Role.SYSTEM, text))

    def trim(self) -> int:
        """Evict the oldest non-system messages until the cap holds.

        Returns:
            Number of messages removed.
        """
        excess = sum(1 for m in self._messages if m.role is not Role.SYSTEM) - self.max_messages
        if excess <= 0:
            return 0

        kept = []
        for msg in self._messages:
            if excess > 0 and msg.role is not Role.SYSTEM:
                excess -= 1
                continue
            kept.append(msg)

        removed = len(self._messages) - len(kept)
        self._messages = kept
        logger.debug("conversation.trimmed", removed=removed, remaining=len(kept))
        return removed

    def snapshot(self, include_system: bool = True) -> list[Message]:
        """Copy of the settled history, oldest first."""
        if include_system:
            return list(self._messages)
        return [m for m in self._messages if m.role is not Role.SYSTEM]

    def clear(self) -> None:
        self._messages = []

    def _append(self, message: Message) -> Message:
        self._messages.append(message)
        self.trim()
        return message
