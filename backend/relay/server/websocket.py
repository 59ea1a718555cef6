from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

from relay.logic.enums import CloseCode, ErrorCode
from relay.messaging.encoder import DecodeError, decode
from relay.messaging.protocol import ConnectionProtocol
from relay.messaging.types import ErrorMessage

logger = structlog.get_logger()

if TYPE_CHECKING:
    from relay.messaging.router import MessageRouter
    from relay.server.admission import AdmissionController

# Disconnect after this many consecutive decode errors
_MAX_DECODE_ERRORS = 5


class WebSocketConnection(ConnectionProtocol):
    def __init__(self, websocket: WebSocket, origin: str, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._origin = origin
        self._connection_id = connection_id or str(uuid4())

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def origin(self) -> str:
        return self._origin

    async def send_text(self, data: str) -> None:
        try:
            await self._websocket.send_text(data)
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def receive_frame(self) -> str | bytes:
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise ConnectionError("WebSocket already disconnected")
        text = message.get("text")
        if text is not None:
            return text
        return message.get("bytes") or b""

    async def close(self, code: int = 1000, reason: str = "") -> None:
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


def _frame_size(raw: str | bytes) -> int:
    return len(raw.encode()) if isinstance(raw, str) else len(raw)


async def websocket_endpoint(
    websocket: WebSocket,
    router: MessageRouter,
    admission: AdmissionController,
    *,
    max_message_bytes: int,
) -> None:
    peer_host = websocket.client.host if websocket.client is not None else None
    origin = admission.resolve_origin(peer_host, websocket.headers)
    rejection = admission.admit(origin)
    if rejection is not None:
        # A close before accept becomes a bare HTTP 403 under uvicorn, so the
        # handshake completes first and the close frame carries the reason.
        code, reason = rejection
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await websocket.accept()
            await websocket.close(code=code, reason=reason)
        return

    connection = WebSocketConnection(websocket, origin=origin)
    structlog.contextvars.bind_contextvars(connection_id=connection.connection_id)

    try:
        await websocket.accept()
        logger.info("websocket connected", origin=origin)
        await router.handle_connect(connection)

        decode_errors = 0
        while True:
            raw = await connection.receive_frame()

            if _frame_size(raw) > max_message_bytes:
                logger.info("message too big, disconnecting", size=_frame_size(raw))
                await connection.close(code=CloseCode.MESSAGE_TOO_BIG, reason="message_too_big")
                return

            try:
                data = decode(raw)
            except DecodeError as e:
                decode_errors += 1
                logger.warning("decode error", error=str(e), strikes=decode_errors)
                await connection.send_message(
                    ErrorMessage(code=ErrorCode.INVALID_MESSAGE, message=str(e)).to_wire(),
                )
                if decode_errors >= _MAX_DECODE_ERRORS:
                    logger.info("too many decode errors, disconnecting")
                    await connection.close(code=CloseCode.TOO_MANY_DECODE_ERRORS, reason="too_many_decode_errors")
                    return
                continue

            decode_errors = 0
            await router.handle_message(connection, data)
    except (WebSocketDisconnect, RuntimeError, ConnectionError):  # fmt: skip
        pass
    finally:
        logger.info("websocket disconnected")
        await router.handle_disconnect(connection)
        admission.release(origin)
        structlog.contextvars.clear_contextvars()
