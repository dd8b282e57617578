"""
Upstream WebSocket connection (Gemini Live).

Core model:
- One UpstreamConnection per downstream connection; never shared.
- The relay only needs three operations: send a JSON message, iterate over
  inbound frames, close.
- Frames are yielded raw (text or binary); decoding is the gateway's job.

Design constraints:
- No translation logic here.
- No knowledge of the downstream socket.
- Transport failures surface as UpstreamError; a clean close simply ends
  iteration.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from constants import UPSTREAM_CLOSED_REASON_DEFAULT, UPSTREAM_MAX_MESSAGE_BYTES


class UpstreamError(Exception):
    """Raised when the upstream socket cannot be opened or fails mid-session."""


class UpstreamSocket(Protocol):
    """What the relay requires from an upstream connection (fakes implement this in tests)."""

    @property
    def close_reason(self) -> str: ...

    async def send_json(self, message: dict[str, Any]) -> None: ...

    def messages(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


UpstreamConnector = Callable[[str], Awaitable[UpstreamSocket]]


class UpstreamConnection:
    """websockets-backed UpstreamSocket."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    @property
    def close_reason(self) -> str:
        """Reason reported by the peer's close frame, or a generic default."""
        return self._ws.close_reason or UPSTREAM_CLOSED_REASON_DEFAULT

    @property
    def close_code(self) -> int | None:
        return self._ws.close_code

    async def send_json(self, message: dict[str, Any]) -> None:
        """
        Send one JSON message.

        Raises:
            UpstreamError if the socket is closed.
        """
        try:
            await self._ws.send(json.dumps(message, separators=(",", ":")))
        except ConnectionClosed as e:
            raise UpstreamError(f"upstream send failed: {e}") from e

    async def messages(self) -> AsyncIterator[str | bytes]:
        """
        Yield inbound frames in arrival order until the socket closes.

        Raises:
            UpstreamError if the connection drops abnormally.
        """
        try:
            async for raw in self._ws:
                yield raw
        except ConnectionClosedError as e:
            raise UpstreamError(f"upstream connection lost: {e}") from e

    async def close(self) -> None:
        """Close the socket. Idempotent."""
        await self._ws.close()


async def open_upstream(url: str) -> UpstreamConnection:
    """
    Open the upstream socket.

    Raises:
        UpstreamError if the handshake fails.
    """
    try:
        ws = await ws_connect(
            url,
            max_size=UPSTREAM_MAX_MESSAGE_BYTES,
            ping_interval=None,
        )
    except (OSError, TimeoutError, WebSocketException) as e:
        raise UpstreamError(f"upstream connect failed: {type(e).__name__}") from e

    return UpstreamConnection(ws)
