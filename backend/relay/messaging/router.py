from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from relay.logic.enums import AuthFailure, CloseCode, EndReason, ErrorCode
from relay.logic.exceptions import AuthError, RelayError
from relay.messaging.types import (
    AuthChallengeMessage,
    AuthFailedMessage,
    AuthMessage,
    AuthOkMessage,
    ClientMessageType,
    CrashMessage,
    ErrorMessage,
    ObstaclePassedMessage,
    StartAttemptMessage,
    UnknownMessageTypeError,
    parse_client_message,
)

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol
    from relay.server.rate_limit import ActionRateLimiter
    from relay.session.auth_gate import AuthGate
    from relay.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_AUTH_TIMEOUT_SECONDS = 30.0


class MessageRouter:
    """
    Routes incoming messages to the auth gate and session registry.

    Every message from a connection is handled to completion before the next
    one is read, so per-connection ordering is preserved end to end. This
    class contains no transport code and can be tested with mock connections.
    """

    def __init__(
        self,
        auth_gate: AuthGate,
        registry: SessionRegistry,
        limiter: ActionRateLimiter,
        *,
        auth_timeout_seconds: float = DEFAULT_AUTH_TIMEOUT_SECONDS,
    ) -> None:
        self._auth_gate = auth_gate
        self._registry = registry
        self._limiter = limiter
        self._auth_timeout_seconds = auth_timeout_seconds
        self._connections: dict[str, ConnectionProtocol] = {}
        self._auth_timeouts: dict[str, asyncio.Task[None]] = {}  # connection_id -> task

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def handle_connect(self, connection: ConnectionProtocol) -> None:
        self._connections[connection.connection_id] = connection
        nonce = self._auth_gate.issue_challenge(connection.connection_id)
        self._auth_timeouts[connection.connection_id] = asyncio.create_task(self._auth_timeout(connection))
        await connection.send_message(AuthChallengeMessage(nonce=nonce).to_wire())

    async def handle_message(
        self,
        connection: ConnectionProtocol,
        raw_message: dict[str, Any],
    ) -> None:
        try:
            message = parse_client_message(raw_message)
        except UnknownMessageTypeError as e:
            logger.warning("unknown message type from %s: %s", connection.connection_id, e)
            await self._send_error(connection, ErrorCode.UNKNOWN_MESSAGE_TYPE, str(e))
            return
        except ValidationError as e:
            logger.warning("invalid message from %s: %s", connection.connection_id, e)
            if raw_message.get("type") == ClientMessageType.AUTH:
                await connection.send_message(
                    AuthFailedMessage(reason=AuthFailure.INVALID_AUTH_DATA, message="Malformed AUTH payload").to_wire(),
                )
            else:
                await self._send_error(connection, ErrorCode.INVALID_MESSAGE, "Malformed message payload")
            return

        if isinstance(message, AuthMessage):
            await self._handle_auth(connection, message)
            return

        player = self._auth_gate.player_for(connection.connection_id)
        if player is None:
            await self._send_error(connection, ErrorCode.NOT_AUTHENTICATED, "Authenticate first")
            return

        if not self._limiter.check(player):
            await self._send_error(connection, ErrorCode.RATE_LIMITED, "Too many messages")
            return

        try:
            await self._dispatch(connection, player, message)
        except RelayError as e:
            logger.info("request rejected for %s: %s (%s)", player, e.message, e.code)
            await self._send_error(connection, e.code, e.message)
        except Exception:
            logger.exception("unexpected error handling %s for %s", message.type, player)
            await self._send_error(connection, ErrorCode.INTERNAL_ERROR, "Internal error")

    async def _dispatch(
        self,
        connection: ConnectionProtocol,
        player: str,
        message: StartAttemptMessage | ObstaclePassedMessage | CrashMessage,
    ) -> None:
        if isinstance(message, StartAttemptMessage):
            await self._registry.begin(player, message.tournament_id, connection)
        elif isinstance(message, ObstaclePassedMessage):
            if not self._registry.record_obstacle(player, message.obstacle_id):
                logger.debug("obstacle %r dropped for %s", message.obstacle_id, player)
        elif isinstance(message, CrashMessage):
            self._registry.end(player, reason=EndReason.CRASH)

    async def _handle_auth(self, connection: ConnectionProtocol, message: AuthMessage) -> None:
        try:
            player = self._auth_gate.verify(connection.connection_id, message.address, message.signature)
        except AuthError as e:
            logger.info("auth failed for %s: %s", connection.connection_id, e.message)
            await connection.send_message(AuthFailedMessage(reason=e.reason, message=e.message).to_wire())
            return

        self._cancel_auth_timeout(connection.connection_id)
        structlog.contextvars.bind_contextvars(player=player)
        logger.info("connection %s authenticated as %s", connection.connection_id, player)
        await connection.send_message(AuthOkMessage(address=player).to_wire())

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        connection_id = connection.connection_id
        self._cancel_auth_timeout(connection_id)
        self._connections.pop(connection_id, None)

        for owner in self._registry.detach_connection(connection_id):
            self._registry.end(owner, reason=EndReason.DISCONNECT)

        player = self._auth_gate.release(connection_id)
        if player is not None and not self._auth_gate.is_player_connected(player):
            self._limiter.forget(player)

    async def _auth_timeout(self, connection: ConnectionProtocol) -> None:
        await asyncio.sleep(self._auth_timeout_seconds)
        self._auth_timeouts.pop(connection.connection_id, None)
        if connection.connection_id not in self._connections:
            return
        if self._auth_gate.is_authenticated(connection.connection_id):
            return
        logger.info("closing unauthenticated connection %s", connection.connection_id)
        await connection.close(code=CloseCode.AUTH_TIMEOUT, reason="auth_timeout")

    def _cancel_auth_timeout(self, connection_id: str) -> None:
        task = self._auth_timeouts.pop(connection_id, None)
        if task is not None and not task.done():
            task.cancel()

    def cancel_all_auth_timeouts(self) -> None:
        for task in self._auth_timeouts.values():
            if not task.done():
                task.cancel()
        self._auth_timeouts.clear()

    async def _send_error(self, connection: ConnectionProtocol, code: ErrorCode, message: str) -> None:
        await connection.send_message(ErrorMessage(code=code, message=message).to_wire())
