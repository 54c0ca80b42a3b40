"""WebSocket transport for the chat client.

One background task owns the socket: it connects, reports ``on_open``,
drains the outgoing queue through a writer task and dispatches every
received text frame to ``on_message``. Whatever ends the connection, the
task reports ``on_close`` exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

import websockets
from websockets.asyncio.client import ClientConnection

from app.adapters.base import Transport
from app.errors import SessionConnectionError

logger = logging.getLogger(__name__)


class WebSocketTransport(Transport):
    """Callback-driven wrapper around a ``websockets`` client connection."""

    def __init__(self, url: str, *, params: dict[str, str] | None = None, **callbacks) -> None:
        super().__init__(**callbacks)
        query = {k: v for k, v in (params or {}).items() if v}
        self.url = f"{url}?{urlencode(query)}" if query else url
        self._ws: ClientConnection | None = None
        self._outgoing: asyncio.Queue[str] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._closed = False

    # ── Lifecycle ────────────────────────────────────────────────────

    def open(self) -> None:
        if self._task and not self._task.done():
            return
        # Raises RuntimeError outside a running loop → caller treats as construction failure
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())

    def close(self) -> None:
        self._closed = True
        if self._task and not self._task.done():
            self._task.cancel()

    def send(self, data: str) -> None:
        if self._closed or self._ws is None:
            raise SessionConnectionError("WebSocket is not open")
        self._outgoing.put_nowait(data)

    # ── Background loops ─────────────────────────────────────────────

    async def _run(self) -> None:
        writer: asyncio.Task | None = None
        try:
            logger.info("Connecting to chat server at %s", self.url)
            async with websockets.connect(self.url) as ws:
                self._ws = ws
                self.on_open()
                writer = asyncio.create_task(self._write(ws))
                async for raw in ws:
                    if isinstance(raw, bytes):
                        raw = raw.decode("utf-8", errors="replace")
                    self.on_message(raw)
        except websockets.ConnectionClosed as exc:
            logger.warning("Chat connection closed: %s", exc)
        except asyncio.CancelledError:
            pass
        except (OSError, websockets.InvalidHandshake, websockets.InvalidURI) as exc:
            logger.warning("Chat connection failed: %s", exc)
            self.on_error(exc)
        except Exception as exc:
            logger.exception("Chat connection loop crashed")
            self.on_error(exc)
        finally:
            if writer:
                writer.cancel()
            self._ws = None
            self.on_close()

    async def _write(self, ws: ClientConnection) -> None:
        while True:
            data = await self._outgoing.get()
            try:
                await ws.send(data)
            except websockets.ConnectionClosed:
                logger.warning("Dropped outgoing frame: connection closed")
                return
