"""Protocol client backed by a Baileys sidecar over a WebSocket.

The sidecar (Node.js, @whiskeysockets/baileys) owns the WhatsApp socket and
its auth-state store. This client speaks a small JSON frame protocol with it:

Sidecar → client:
    {"type": "connection.update", "qr"?: str, "connection"?: "open"|"close",
     "statusCode"?: int}
    {"type": "messages.upsert", "upsertType": "notify"|"append",
     "messages": [<raw envelope>, ...]}
    {"type": "ack", "id": str, "ok": bool, "error"?: str}

Client → sidecar:
    {"type": "connect"}
    {"type": "send", "id": str, "to": str, "content": {...}}
    {"type": "logout", "id": str}
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.models import DisconnectReason
from src.session.events import (
    Closed,
    ConnectionEvent,
    MessageHandler,
    Opened,
    PairingChallengeIssued,
    StateChangeHandler,
)

logger = logging.getLogger(__name__)

_MAX_FRAME_BYTES = 16 * 1024 * 1024


class BridgeError(Exception):
    """Raised when the sidecar is unreachable or rejects a command."""


class BaileysBridgeClient:
    def __init__(
        self,
        url: str,
        token: str | None = None,
        open_timeout: float = 60.0,
        ack_timeout: float = 30.0,
    ) -> None:
        self._url = url
        self._token = token
        self._open_timeout = open_timeout
        self._ack_timeout = ack_timeout
        self._ws: Any | None = None
        self._reader: asyncio.Task[None] | None = None
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._message_tasks: set[asyncio.Task[None]] = set()
        self._state_handlers: list[StateChangeHandler] = []
        self._message_handlers: list[MessageHandler] = []
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    def on_state_change(self, handler: StateChangeHandler) -> None:
        self._state_handlers.append(handler)

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    async def connect(self) -> None:
        """Open the sidecar socket if needed and ask it to start the session."""
        self._closing = False
        if self._ws is None:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
            try:
                ws = await websockets.connect(
                    self._url,
                    additional_headers=headers,
                    open_timeout=self._open_timeout,
                    max_size=_MAX_FRAME_BYTES,
                )
            except (OSError, TimeoutError, WebSocketException) as exc:
                raise BridgeError(f"Cannot reach bridge at {self._url}: {exc}") from exc
            self._ws = ws
            self._reader = asyncio.get_running_loop().create_task(self._read_loop(ws))
            logger.info("Connected to WhatsApp bridge at %s", self._url)

        await self._send_frame({"type": "connect"})

    async def send(self, target: str, content: dict[str, Any]) -> None:
        await self._request({"type": "send", "to": target, "content": content})

    async def logout(self) -> None:
        """Log the session out on the sidecar and close the socket."""
        self._closing = True
        if self._ws is None:
            return
        try:
            await self._request({"type": "logout"})
        finally:
            await self.close()

    async def close(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None

    # --- Frame handling ---

    async def _read_loop(self, ws: Any) -> None:
        closed_by_peer = False
        try:
            async for raw in ws:
                try:
                    self.handle_frame(raw)
                except Exception:
                    logger.exception("Failed to handle bridge frame")
        except ConnectionClosed as exc:
            closed_by_peer = True
            logger.warning("Bridge connection closed: %s", exc)
        finally:
            if self._ws is ws:
                self._ws = None
            self._fail_pending(BridgeError("Bridge connection lost"))
            if not self._closing:
                self._emit(Closed(int(DisconnectReason.CONNECTION_LOST)))
            if not closed_by_peer:
                await ws.close()

    def handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Ignoring malformed bridge frame")
            return
        if not isinstance(frame, dict):
            logger.warning("Ignoring non-object bridge frame")
            return

        frame_type = frame.get("type")
        if frame_type == "connection.update":
            self._handle_connection_update(frame)
        elif frame_type == "messages.upsert":
            self._handle_upsert(frame)
        elif frame_type == "ack":
            self._handle_ack(frame)
        else:
            logger.debug("Ignoring bridge frame of type %r", frame_type)

    def _handle_connection_update(self, frame: dict[str, Any]) -> None:
        qr = frame.get("qr")
        if qr:
            self._emit(PairingChallengeIssued(str(qr)))

        connection = frame.get("connection")
        if connection == "open":
            self._emit(Opened())
        elif connection == "close":
            self._emit(Closed(_parse_status_code(frame.get("statusCode"))))

    def _handle_upsert(self, frame: dict[str, Any]) -> None:
        messages = frame.get("messages") or []
        if not isinstance(messages, list):
            return
        upsert_type = str(frame.get("upsertType", ""))
        loop = asyncio.get_running_loop()
        for handler in self._message_handlers:
            task = loop.create_task(handler(upsert_type, messages))
            self._message_tasks.add(task)
            task.add_done_callback(self._message_task_done)

    def _message_task_done(self, task: asyncio.Task[None]) -> None:
        self._message_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Message handler failed", exc_info=task.exception())

    def _handle_ack(self, frame: dict[str, Any]) -> None:
        future = self._pending.get(str(frame.get("id")))
        if future is not None and not future.done():
            future.set_result(frame)

    def _emit(self, event: ConnectionEvent) -> None:
        for handler in list(self._state_handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("State change handler failed for %r", event)

    # --- Commands ---

    async def _send_frame(self, frame: dict[str, Any]) -> None:
        if self._ws is None:
            raise BridgeError("Bridge not connected")
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as exc:
            raise BridgeError(f"Bridge connection lost: {exc}") from exc

    async def _request(self, frame: dict[str, Any]) -> dict[str, Any]:
        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send_frame({**frame, "id": request_id})
            ack = await asyncio.wait_for(future, timeout=self._ack_timeout)
        except TimeoutError as exc:
            raise BridgeError(f"No acknowledgement for {frame['type']}") from exc
        finally:
            self._pending.pop(request_id, None)

        if not ack.get("ok", False):
            raise BridgeError(str(ack.get("error") or f"{frame['type']} rejected by bridge"))
        return ack

    def _fail_pending(self, error: BridgeError) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()


def _parse_status_code(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric close status %r", value)
        return None
