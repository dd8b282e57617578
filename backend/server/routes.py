"""
Route registration for the relay API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire RelaySession to both socket lifecycles
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json

from fastapi import FastAPI, Response, WebSocket
from starlette.websockets import WebSocketState

from config import AppConfig
from constants import SETUP_TOOLS_WAIT_MS
from observability.logger import log_event
from observability.metrics import timed
from session.gateway import GatewayResult, RelaySession
from session.upstream_connection import UpstreamConnector, UpstreamError, UpstreamSocket

# Permissive CORS for the non-upgrade and preflight answers
CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, upgrade, connection, "
        "sec-websocket-key, sec-websocket-version, sec-websocket-protocol"
    ),
}


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.options("/ws")
    async def websocket_preflight() -> Response: # pyright: ignore[reportUnusedFunction]
        return Response(status_code=200, headers=CORS_HEADERS)

    # Every non-upgrade method gets 426; OPTIONS is the preflight above
    @app.api_route("/ws", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"])
    async def websocket_upgrade_required() -> Response: # pyright: ignore[reportUnusedFunction]
        return Response(
            content="Expected WebSocket upgrade",
            status_code=426,
            media_type="text/plain",
            headers=CORS_HEADERS,
        )

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        config: AppConfig = app.state.config
        connector: UpstreamConnector = app.state.upstream_connector

        if not config.has_credential:
            log_event({"event_type": "WS_REJECTED_NO_CREDENTIAL"})
            await _deny(ws, status_code=500, content="API key not configured")
            return

        params = ws.query_params
        gateway = RelaySession(
            config=config,
            voice=params.get("voice") or None,
            session_id=params.get("session_id") or None,
            resume_handle=params.get("resume_handle") or None,
            wait_for_tools=params.get("tools") == "1",
        )

        await ws.accept()
        log_event({
            "event_type": "WS_CONNECTED",
            **gateway.session.log_context(),
            "voice": gateway.session.voice,
        })

        try:
            with timed("upstream_connect", session_id=gateway.session_id):
                upstream = await connector(config.upstream_url())
        except UpstreamError as e:
            await _flush_gateway_result(ws, None, gateway.on_upstream_failed(str(e)))
            await _close_client(ws)
            return

        await _relay(ws, upstream, gateway)


# ------------------------------------------------------------------
# Relay loop
# ------------------------------------------------------------------

async def _relay(ws: WebSocket, upstream: UpstreamSocket, gateway: RelaySession) -> None:
    """
    Pump both directions until either side ends, then close both.

    Each direction runs as its own task so neither blocks the other. The
    teardown also runs when the endpoint itself is cancelled (server
    shutdown, or an ASGI server cancelling on disconnect).
    """
    client_task = asyncio.create_task(_pump_client(ws, upstream, gateway))
    upstream_task = asyncio.create_task(_pump_upstream(ws, upstream, gateway))
    tasks = {client_task, upstream_task}
    reason = "cancelled"

    try:
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                log_event({
                    "event_type": "WS_FATAL_ERROR",
                    "session_id": gateway.session_id,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

        reason = "client_disconnect" if client_task in done else "upstream_closed"
    finally:
        # Runs to completion even if this task is cancelled again meanwhile
        await asyncio.shield(_teardown(ws, upstream, gateway, reason))


async def _teardown(ws: WebSocket, upstream: UpstreamSocket, gateway: RelaySession, reason: str) -> None:
    log_event({
        "event_type": "RELAY_TEARDOWN",
        "session_id": gateway.session_id,
        "reason": reason,
    })

    try:
        await upstream.close()
    except UpstreamError as e:
        log_event({
            "event_type": "UPSTREAM_CLOSE_FAILED",
            "session_id": gateway.session_id,
            "error": str(e),
        })

    try:
        await _close_client(ws)
    finally:
        gateway.on_client_closed(reason)


async def _pump_client(ws: WebSocket, upstream: UpstreamSocket, gateway: RelaySession) -> None:
    """Client -> gateway -> upstream, in arrival order."""
    while True:
        msg = await ws.receive()

        if msg["type"] == "websocket.disconnect":
            return

        payload = msg.get("text")
        if payload is None:
            payload = msg.get("bytes")
        if payload is None:
            continue

        result = gateway.on_client_message(payload)
        await _flush_gateway_result(ws, upstream, result)


async def _pump_upstream(ws: WebSocket, upstream: UpstreamSocket, gateway: RelaySession) -> None:
    """Upstream -> gateway -> client, in arrival order."""
    deadline: asyncio.Task[None] | None = None

    result = gateway.on_upstream_open()
    await _flush_gateway_result(ws, upstream, result)

    if gateway.awaiting_tools:
        deadline = asyncio.create_task(_setup_tools_deadline(ws, upstream, gateway))

    try:
        async for raw in upstream.messages():
            result = gateway.on_upstream_message(raw)
            await _flush_gateway_result(ws, upstream, result)
    except UpstreamError as e:
        await _flush_gateway_result(ws, None, gateway.on_upstream_failed(str(e)))
    finally:
        if deadline is not None:
            deadline.cancel()
            await asyncio.gather(deadline, return_exceptions=True)

    await _flush_gateway_result(ws, None, gateway.on_upstream_closed(upstream.close_reason))


async def _setup_tools_deadline(ws: WebSocket, upstream: UpstreamSocket, gateway: RelaySession) -> None:
    await asyncio.sleep(SETUP_TOOLS_WAIT_MS / 1000)
    try:
        await _flush_gateway_result(ws, upstream, gateway.on_tools_timeout())
    except UpstreamError as e:
        # The upstream pump sees the same failure and reports it
        log_event({
            "event_type": "SETUP_FLUSH_FAILED",
            "session_id": gateway.session_id,
            "error": str(e),
        })


# ------------------------------------------------------------------
# I/O helpers
# ------------------------------------------------------------------

async def _flush_gateway_result(
    ws: WebSocket,
    upstream: UpstreamSocket | None,
    result: GatewayResult,
) -> None:
    if upstream is not None:
        for msg in result.upstream_json:
            await upstream.send_json(msg)

    if ws.client_state != WebSocketState.CONNECTED:
        return

    for msg in result.outbound_json:
        await ws.send_text(json.dumps(msg, separators=(",", ":")))


async def _close_client(ws: WebSocket) -> None:
    if (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    ):
        await ws.close()


async def _deny(ws: WebSocket, *, status_code: int, content: str) -> None:
    """Reject the upgrade with a plain HTTP response (CORS headers preserved)."""
    response = Response(
        content=content,
        status_code=status_code,
        media_type="text/plain",
        headers=CORS_HEADERS,
    )
    try:
        await ws.send_denial_response(response)
    except RuntimeError:
        # Server lacks the denial-response extension; a close before accept becomes HTTP 403
        log_event({"event_type": "WS_DENIAL_UNSUPPORTED", "status_code": status_code})
        await ws.close(code=1011)
