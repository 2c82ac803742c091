"""Realtime terminal channel over a WebSocket.

Every frame is JSON: {"event": <name>, "data": <payload>}. Events from the
client are dispatched to handlers registered with on(); events to the client
go through emit(), which only enqueues, so PTY output keeps its order.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from vibetree.terminal import TerminalManager

router = APIRouter(tags=["terminal"])
logger = logging.getLogger("vibetree.web")

Handler = Callable[[Any], Any]


class TerminalConnection:
    """Event-emitter facade over one WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._handlers: dict[str, list[Handler]] = {}
        self._outbound: asyncio.Queue[Optional[dict]] = asyncio.Queue()
        self.closed = False

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def remove_all_listeners(self, event: str) -> None:
        self._handlers.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def emit(self, event: str, data: Any = None) -> None:
        if self.closed:
            return
        self._outbound.put_nowait({"event": event, "data": data})

    async def dispatch(self, event: str, data: Any = None) -> None:
        """Call every handler for event; coroutine handlers are awaited."""
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Terminal handler for %s failed", event)

    async def send_loop(self) -> None:
        """Drain the outbound queue onto the socket until close() is called."""
        while True:
            message = await self._outbound.get()
            if message is None:
                return
            try:
                await self.websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                self.closed = True
                return

    def close(self) -> None:
        self.closed = True
        self._outbound.put_nowait(None)


@router.websocket("/ws/terminal")
async def terminal_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    terminals: TerminalManager = websocket.app.state.terminals
    connection = TerminalConnection(websocket)

    async def on_create(data: Any) -> None:
        data = data if isinstance(data, dict) else {}
        await terminals.handle_create(
            connection,
            data.get("cols"),
            data.get("rows"),
            data.get("taskId"),
            data.get("repoPath"),
        )

    connection.on("terminal:create", on_create)
    sender = asyncio.create_task(connection.send_loop())

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed terminal frame")
                continue
            if not isinstance(message, dict) or not isinstance(message.get("event"), str):
                logger.warning("Ignoring terminal frame without an event name")
                continue
            await connection.dispatch(message["event"], message.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        await connection.dispatch("disconnect")
        connection.close()
        await sender
