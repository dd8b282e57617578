"""
Tool-call bridge.

Correlates tool-call requests from the model with results produced by
application code, keyed by the opaque call id.

Model:
- on_tool_call() records a PendingToolCall and starts the handler as a task
  (the receive loop keeps processing messages meanwhile)
- resolve() removes the pending entry and sends exactly one result; a
  result that cannot be JSON-encoded is replaced by an error result
- resolving an unknown id is a no-op: the call may have been superseded
  by a disconnect
- cancel_all() forgets every pending call; handlers still running are not
  cancelled, but their results are discarded
"""

from __future__ import annotations

import asyncio
import inspect
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from constants import TOOL_NO_HANDLER_ERROR
from observability.logger import log_event


@dataclass(frozen=True)
class ToolDefinition:
    """A function the model may call."""
    name: str
    description: str
    parameters: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "description": self.description}
        if self.parameters is not None:
            out["parameters"] = self.parameters
        return out


@dataclass(frozen=True)
class PendingToolCall:
    """A tool call awaiting its result."""
    id: str
    name: str
    args: dict[str, Any]


ToolHandler = Callable[[str, dict[str, Any]], Union[Any, Awaitable[Any]]]


class ToolCallBridge:
    """Request/response correlation table for tool calls."""

    def __init__(
        self,
        *,
        send_result: Callable[[str, Any], bool],
        handler: ToolHandler | None = None,
        session_id: str | None = None,
    ) -> None:
        self._send_result = send_result
        self._handler = handler
        self._session_id = session_id
        self._pending: dict[str, PendingToolCall] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> dict[str, PendingToolCall]:
        return dict(self._pending)

    def on_tool_call(self, call_id: str, name: str, args: dict[str, Any]) -> asyncio.Task[None] | None:
        """
        Record a call and dispatch it.

        Without a handler the call is answered immediately with an explicit
        error result so the model's turn never stalls.

        Returns:
            The handler task, if one was started.
        """
        call = PendingToolCall(id=call_id, name=name, args=dict(args))
        self._pending[call_id] = call

        log_event({
            "event_type": "TOOL_CALL_DISPATCHED",
            "session_id": self._session_id,
            "tool_call_id": call_id,
            "tool_name": name,
            "has_handler": self._handler is not None,
        })

        if self._handler is None:
            self.resolve(call_id, {"error": TOOL_NO_HANDLER_ERROR})
            return None

        task = asyncio.create_task(self._invoke(call))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def resolve(self, call_id: str, result: Any) -> bool:
        """
        Send the result for `call_id`.

        Returns:
            True if a result was sent; False for unknown (or already
            resolved) ids.
        """
        call = self._pending.pop(call_id, None)
        if call is None:
            log_event({
                "event_type": "TOOL_RESULT_DISCARDED",
                "session_id": self._session_id,
                "tool_call_id": call_id,
            })
            return False

        try:
            json.dumps(result)
        except (TypeError, ValueError) as e:
            log_event({
                "event_type": "TOOL_RESULT_UNSERIALIZABLE",
                "session_id": self._session_id,
                "tool_call_id": call_id,
                "tool_name": call.name,
                "error": str(e),
            })
            result = {"error": f"tool result is not JSON-serializable: {e}"}

        sent = self._send_result(call_id, result)
        log_event({
            "event_type": "TOOL_RESULT_SENT" if sent else "TOOL_RESULT_UNSENT",
            "session_id": self._session_id,
            "tool_call_id": call_id,
            "tool_name": call.name,
        })
        return sent

    def cancel_all(self) -> int:
        """
        Forget every pending call.

        Returns:
            Number of calls abandoned.
        """
        dropped = len(self._pending)
        self._pending.clear()
        return dropped

    async def drain(self) -> None:
        """Wait for in-flight handler tasks."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _invoke(self, call: PendingToolCall) -> None:
        assert self._handler is not None

        try:
            result = self._handler(call.name, call.args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "TOOL_HANDLER_FAILED",
                "session_id": self._session_id,
                "tool_call_id": call.id,
                "tool_name": call.name,
                "exception": type(e).__name__,
                "message": str(e),
            })
            result = {"error": str(e) or type(e).__name__}

        self.resolve(call.id, result)
