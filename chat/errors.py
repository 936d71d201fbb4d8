"""Error taxonomy for chat turns.

Only ``FragmentEncodingError`` is allowed to reach the HTTP boundary; the
others are recovered inside the orchestrator and rendered as content.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error raised by the chat core."""


class InvalidInput(ChatError):
    """The submitted message is empty or longer than the configured limit."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class GenerationFailure(ChatError):
    """The generation provider errored, timed out or returned nothing usable."""


class MemoryWriteFailure(ChatError):
    """An exchange could not be appended to session memory."""


class FragmentEncodingError(ChatError):
    """A rendered fragment is not a single well-formed element."""

    def __init__(self, message: str, *, fragment: str) -> None:
        super().__init__(message)
        self.fragment = fragment


class MemoryReadFailure(ChatError):
    """Stored session history could not be read back."""
