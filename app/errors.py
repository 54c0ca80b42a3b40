"""Error taxonomy for the chat session protocol.

None of these are fatal: callers either retry with backoff, drop the
offending frame/message, or ignore the request.
"""


class ChatSyncError(Exception):
    """Base class for chat session errors."""


class SessionConnectionError(ChatSyncError, ConnectionError):
    """Transport failed to open, closed unexpectedly, or is not connected."""


class ProtocolError(ChatSyncError):
    """Malformed or out-of-order frame (e.g. a delta for an unknown artifact)."""


class ConfirmationMismatchError(ChatSyncError):
    """Tool confirmation for a toolCallId with no pending request."""


class NormalizationError(ChatSyncError):
    """A message cannot be made valid for the upstream provider."""
