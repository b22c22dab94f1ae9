class ChatRuntimeError(Exception):
    """Base class for errors raised by the chat runtime."""


class ChatServiceError(ChatRuntimeError):
    """A request to the chat backend failed."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionBusyError(ChatRuntimeError):
    """A turn is already open on the session."""
