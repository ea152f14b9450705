"""
WebSocket transport for the refund channel.

The channel only needs text frames in both directions and a close handshake,
so it talks to this small interface rather than to the library directly.
"""

import asyncio
import logging
from typing import Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from zauthx402.errors import ConnectionError

logger = logging.getLogger("zauthx402.transport.websocket")


class TransportConnection(Protocol):
    async def send(self, text: str) -> None:
        ...

    async def receive(self) -> Optional[str]:
        """Next text frame, or None once the connection has closed."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...


class Transport(Protocol):
    async def connect(self, url: str) -> TransportConnection:
        ...


class WebSocketConnection:
    def __init__(self, ws):
        self._ws = ws

    async def send(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except ConnectionClosed as e:
            raise ConnectionError(f"WebSocket closed while sending: {e}")

    async def receive(self) -> Optional[str]:
        try:
            message = await self._ws.recv()
        except ConnectionClosed as e:
            logger.debug("WebSocket closed: %s", e)
            return None
        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)


class WebSocketTransport:
    def __init__(self, open_timeout: float = 10.0):
        self._open_timeout = open_timeout

    async def connect(self, url: str) -> TransportConnection:
        try:
            # The channel runs its own application-level ping
            ws = await websockets.connect(url, open_timeout=self._open_timeout, ping_interval=None)
        except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as e:
            raise ConnectionError(f"WebSocket connect failed: {e}")
        return WebSocketConnection(ws)
