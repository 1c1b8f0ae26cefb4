from __future__ import annotations


class VxmlSessionError(RuntimeError):
    """Base class for session bridge failures."""


class PortAllocationError(VxmlSessionError):
    """Raised when no port can be bound for a reason other than contention."""


class DetachError(VxmlSessionError):
    """Raised when the worker cannot be detached from the invoking request."""


class HandoffError(VxmlSessionError):
    """Raised when the endpoint handoff between worker and invoker fails."""


class ConversationEnded(SystemExit):
    """The conversation is over; uncaught, this ends the worker process cleanly."""

    def __init__(self, reason: str = "") -> None:
        super().__init__(0)
        self.reason = reason


class ConversationCompleted(ConversationEnded):
    """Raised after the final response (goto or disconnect) has been sent."""


class ConversationAbandoned(ConversationEnded):
    """Raised when no connection arrives within the idle timeout."""
