"""In-memory registry of live attempts, one per authenticated player."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from relay.logic import scoring
from relay.logic.enums import EndReason, ErrorCode
from relay.logic.exceptions import LedgerReadError, PreflightRejectedError, SessionAlreadyActiveError
from relay.messaging.types import AttemptStartedMessage, ErrorMessage, ScoreRecordedMessage
from relay.session.models import PlayerSession

if TYPE_CHECKING:
    import asyncio

    from pydantic import BaseModel

    from relay.ledger.client import LedgerClient
    from relay.ledger.sequencer import SubmissionOutcome, TransactionSequencer
    from relay.messaging.protocol import ConnectionProtocol

logger = structlog.get_logger()

DEFAULT_ATTEMPTS_PER_TICKET = 3
DEFAULT_MIN_OBSTACLE_INTERVAL_MS = 200
_MAX_UINT256 = 2**256 - 1


class SessionRegistry:
    """Own the PlayerSession table and every ledger write an attempt produces.

    All table mutation happens synchronously between suspension points. The
    one suspension inside an operation is the begin() preflight; the
    already-active guard runs before it and the player is held in
    `_starting` until it completes, so a concurrent begin for the same player
    is rejected rather than racing the first.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        sequencer: TransactionSequencer,
        *,
        attempts_per_ticket: int = DEFAULT_ATTEMPTS_PER_TICKET,
        max_session_duration_ms: int = scoring.MAX_ELAPSED_MS,
        min_obstacle_interval_ms: int = DEFAULT_MIN_OBSTACLE_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._sequencer = sequencer
        self._attempts_per_ticket = attempts_per_ticket
        self._max_session_duration_ms = max_session_duration_ms
        self._min_obstacle_interval_ms = min_obstacle_interval_ms
        self._clock = clock
        self._wall_clock = wall_clock
        self._sessions: dict[str, PlayerSession] = {}  # player -> PlayerSession
        self._starting: set[str] = set()  # players with a begin() suspended in preflight

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def max_session_duration_ms(self) -> int:
        return self._max_session_duration_ms

    def has_session(self, player: str) -> bool:
        return player in self._sessions

    def active_players(self) -> list[str]:
        return list(self._sessions)

    def obstacle_count(self, player: str) -> int:
        session = self._sessions.get(player)
        return session.obstacle_count if session is not None else 0

    async def begin(
        self,
        player: str,
        tournament_id: int,
        connection: ConnectionProtocol | None = None,
    ) -> asyncio.Future[SubmissionOutcome]:
        """Start an attempt after a ledger preflight check.

        The begin-attempt write is queued and this returns without waiting for
        it; ATTEMPT_STARTED reaches the connection once the write is accepted.

        Raises:
            SessionAlreadyActiveError: the player already has a live or starting attempt.
            PreflightRejectedError: the ledger says the attempt is not allowed.

        """
        if player in self._sessions or player in self._starting:
            raise SessionAlreadyActiveError(player)

        self._starting.add(player)
        try:
            await self._preflight(player, tournament_id)
        finally:
            self._starting.discard(player)

        session = PlayerSession(
            player=player,
            tournament_id=tournament_id,
            started_at=self._clock(),
            connection=connection,
        )
        self._sessions[player] = session
        logger.info("attempt started", player=player, tournament_id=tournament_id)

        async def report(outcome: SubmissionOutcome) -> None:
            if outcome.ok and outcome.tx_hash is not None:
                await _notify(
                    session.connection,
                    AttemptStartedMessage(tournament_id=tournament_id, tx_hash=outcome.tx_hash),
                )
            else:
                logger.warning(
                    "begin-attempt write failed",
                    player=player,
                    tournament_id=tournament_id,
                    error=outcome.error,
                )

        return self._sequencer.submit(
            f"startAttempt:{tournament_id}:{player}",
            lambda: self._ledger.start_attempt(tournament_id, player),
            report=report,
        )

    async def _preflight(self, player: str, tournament_id: int) -> None:
        try:
            tournament = await self._ledger.get_tournament(tournament_id)
            if tournament is None:
                raise PreflightRejectedError("Tournament not found", code=ErrorCode.TOURNAMENT_NOT_FOUND)
            if tournament.finalized:
                raise PreflightRejectedError("Tournament has ended", code=ErrorCode.TOURNAMENT_ENDED)
            if tournament.is_expired(self._wall_clock()):
                raise PreflightRejectedError("Tournament has expired", code=ErrorCode.TOURNAMENT_EXPIRED)

            entry = await self._ledger.get_entry(tournament_id, player)
        except LedgerReadError as e:
            logger.warning("preflight read failed", tournament_id=tournament_id, error=str(e))
            raise PreflightRejectedError("Ledger unavailable, try again", code=ErrorCode.LEDGER_UNAVAILABLE) from e

        if entry is None:
            raise PreflightRejectedError("Not entered in this tournament", code=ErrorCode.NOT_ENTERED)
        if not entry.has_attempts_left(self._attempts_per_ticket):
            raise PreflightRejectedError("No attempts left", code=ErrorCode.NO_ATTEMPTS_LEFT)

    def record_obstacle(self, player: str, obstacle_id: object) -> bool:
        """Accept a cleared obstacle. Returns whether it was accepted.

        Rejections are silent. A missing session, an over-age
        session, a non-positive or non-integer id, a duplicate, or an obstacle
        arriving inside the minimum interval are all just dropped.
        """
        session = self._sessions.get(player)
        if session is None:
            return False

        now = self._clock()
        if session.age_ms(now) > self._max_session_duration_ms:
            return False

        if isinstance(obstacle_id, bool) or not isinstance(obstacle_id, int):
            return False
        if obstacle_id <= 0 or obstacle_id > _MAX_UINT256:
            return False
        if obstacle_id in session.seen_obstacles:
            return False
        if (
            session.last_obstacle_at is not None
            and (now - session.last_obstacle_at) * 1000 < self._min_obstacle_interval_ms
        ):
            return False

        session.obstacle_log.append(obstacle_id)
        session.seen_obstacles.add(obstacle_id)
        session.last_obstacle_at = now

        tournament_id = session.tournament_id
        self._sequencer.submit(
            f"recordObstacle:{tournament_id}:{player}:{obstacle_id}",
            lambda: self._ledger.record_obstacle(tournament_id, player, obstacle_id),
        )
        return True

    def end(
        self,
        player: str,
        *,
        reason: EndReason = EndReason.CRASH,
    ) -> asyncio.Future[SubmissionOutcome] | None:
        """End the player's attempt and queue the authoritative score.

        Returns None when the player has no live session. The outcome of the
        score write is sent to the session's connection, if it is still attached.
        """
        session = self._sessions.pop(player, None)
        if session is None:
            return None

        elapsed_ms = min(session.age_ms(self._clock()), self._max_session_duration_ms)
        final_score = scoring.score(
            session.obstacle_count,
            elapsed_ms,
            max_elapsed_ms=self._max_session_duration_ms,
        )
        tournament_id = session.tournament_id
        logger.info(
            "attempt ended",
            player=player,
            tournament_id=tournament_id,
            reason=reason,
            obstacles=session.obstacle_count,
            elapsed_ms=int(elapsed_ms),
            score=final_score,
        )

        async def report(outcome: SubmissionOutcome) -> None:
            if outcome.ok and outcome.tx_hash is not None:
                await _notify(
                    session.connection,
                    ScoreRecordedMessage(tournament_id=tournament_id, score=final_score, tx_hash=outcome.tx_hash),
                )
                return
            logger.error(
                "score submission failed",
                player=player,
                tournament_id=tournament_id,
                score=final_score,
                error=outcome.error,
            )
            await _notify(
                session.connection,
                ErrorMessage(
                    code=ErrorCode.SCORE_SUBMISSION_FAILED,
                    message=f"Score {final_score} could not be recorded: {outcome.error}",
                ),
            )

        return self._sequencer.submit(
            f"recordAttemptEnd:{tournament_id}:{player}",
            lambda: self._ledger.record_attempt_end(tournament_id, player, final_score),
            report=report,
        )

    def detach_connection(self, connection_id: str) -> list[str]:
        """Unbind a closed connection from its sessions. Returns the affected players."""
        players = []
        for player, session in self._sessions.items():
            if session.connection_id == connection_id:
                session.connection = None
                players.append(player)
        return players

    def stale_players(self, grace_ms: int) -> list[str]:
        """Players whose attempt has outlived the maximum duration plus a grace margin."""
        now = self._clock()
        limit = self._max_session_duration_ms + grace_ms
        return [player for player, session in self._sessions.items() if session.age_ms(now) > limit]


async def _notify(connection: ConnectionProtocol | None, message: BaseModel) -> None:
    """Best-effort send to a connection that may already be gone."""
    if connection is None:
        return
    with contextlib.suppress(ConnectionError, RuntimeError, OSError):
        await connection.send_message(message.to_wire())
