"""Abstract interfaces for the two pluggable edges of the chat subsystem.

* :class:`Transport` — one persistent duplex connection (client side).
* :class:`GenerationService` — the upstream agent runtime (server side).

Swap the WebSocket transport or the model runtime by implementing these.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any


class Transport(ABC):
    """A duplex text-frame connection driven by callbacks.

    ``open()`` starts connecting and returns immediately; the outcome is
    reported through ``on_open`` / ``on_error`` / ``on_close``. ``send()``
    only enqueues a write.
    """

    def __init__(
        self,
        *,
        on_open: Callable[[], None],
        on_message: Callable[[str], None],
        on_close: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_error = on_error

    @abstractmethod
    def open(self) -> None:
        """Begin connecting. Raises if the transport cannot be constructed."""

    @abstractmethod
    def send(self, data: str) -> None:
        """Enqueue one text frame."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection. Safe to call more than once."""


TransportFactory = Callable[..., Transport]


class GenerationService(ABC):
    """Opaque "generate the next assistant turn" capability.

    ``generate`` yields event dicts:

    * ``{"type": "text-delta", "delta": str}``
    * ``{"type": "tool-call", "toolCallId": str, "toolName": str, "input": Any}``
    * ``{"type": "finish", "finishReason": str}``
    """

    @abstractmethod
    def generate(
        self, messages: list[dict[str, Any]], *, model: str
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream the next assistant turn for provider-shaped ``messages``."""

    @abstractmethod
    def generate_artifact(
        self, *, title: str, kind: str, description: str | None, model: str
    ) -> AsyncIterator[str]:
        """Stream artifact content as text deltas."""
