"""Client-side error taxonomy.

Every failure of a chat turn maps to one of these. The lifecycle manager
catches RelayError subclasses and turns them into a system notice, so none of
them crash the session.
"""


class ChatError(Exception):
    """Base class for chat client errors."""
    pass


class EmptyTurn(ChatError):
    """User tried to send with no text and no attachment."""

    def __init__(self):
        super().__init__("Nothing to send: message is empty and no image is attached.")


class UnsupportedAttachment(ChatError):
    """Selected file is not an image."""
    pass


class RelayError(ChatError):
    """A chat turn failed somewhere between the client and the upstream model."""

    def __init__(self, description: str):
        super().__init__(description)
        self.description = description


class TransportError(RelayError):
    """Relay could not be reached (connection refused, DNS, timeout)."""
    pass


class UpstreamError(RelayError):
    """Relay answered with a non-success status."""

    def __init__(self, description: str, status_code: int):
        super().__init__(description)
        self.status_code = status_code


class MalformedResponse(RelayError):
    """Success status but no usable `reply` string in the body."""
    pass

