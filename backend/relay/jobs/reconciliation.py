"""Periodic jobs that reconcile relay state with the ledger."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from relay.logic.enums import EndReason
from relay.logic.exceptions import LedgerReadError

if TYPE_CHECKING:
    from relay.ledger.client import LedgerClient
    from relay.ledger.sequencer import SubmissionOutcome, TransactionSequencer
    from relay.session.registry import SessionRegistry

logger = structlog.get_logger()

DEFAULT_STALE_GRACE_MS = 30_000
DEFAULT_MIN_OPERATOR_BALANCE_WEI = 10**16


class ReconciliationJobs:
    """Background loops for the stale-session sweep, tournament closure,
    fee claiming and the operator balance monitor.

    Each job is also callable directly, which is how tests drive them.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        sequencer: TransactionSequencer,
        registry: SessionRegistry,
        *,
        stale_grace_ms: int = DEFAULT_STALE_GRACE_MS,
        min_operator_balance_wei: int = DEFAULT_MIN_OPERATOR_BALANCE_WEI,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._sequencer = sequencer
        self._registry = registry
        self._stale_grace_ms = stale_grace_ms
        self._min_operator_balance_wei = min_operator_balance_wei
        self._wall_clock = wall_clock
        self._closing: set[int] = set()  # tournament ids with a finalize call in flight
        self._claim_in_flight = False
        self._tasks: dict[str, asyncio.Task[None]] = {}  # job name -> loop task

    @property
    def running_jobs(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def sweep_stale_sessions(self) -> list[str]:
        """Force-end every session past the maximum duration plus grace."""
        players = self._registry.stale_players(self._stale_grace_ms)
        for player in players:
            logger.info("force-ending stale session", player=player)
            self._registry.end(player, reason=EndReason.TIMEOUT)
        return players

    async def close_expired_tournaments(self) -> list[int]:
        """Submit the finalize call for each expired, unfinalized tournament."""
        count = await self._ledger.tournament_count()
        now = self._wall_clock()
        submitted = []
        for tournament_id in range(1, count + 1):
            if tournament_id in self._closing:
                continue
            try:
                tournament = await self._ledger.get_tournament(tournament_id)
            except LedgerReadError as e:
                logger.warning("tournament read failed, skipping", tournament_id=tournament_id, error=str(e))
                continue
            if tournament is None or tournament.finalized or not tournament.is_expired(now):
                continue

            self._closing.add(tournament_id)
            logger.info("closing expired tournament", tournament_id=tournament_id)
            self._sequencer.submit(
                f"endTournament:{tournament_id}",
                lambda tid=tournament_id: self._ledger.end_tournament(tid),
                report=self._closed_reporter(tournament_id),
            )
            submitted.append(tournament_id)
        return submitted

    def _closed_reporter(self, tournament_id: int) -> Callable[[SubmissionOutcome], Awaitable[None]]:
        async def report(outcome: SubmissionOutcome) -> None:
            self._closing.discard(tournament_id)
            if outcome.ok:
                logger.info("tournament closed", tournament_id=tournament_id, tx_hash=outcome.tx_hash)
            else:
                logger.error("tournament close failed", tournament_id=tournament_id, error=outcome.error)

        return report

    async def claim_pending_fees(self) -> bool:
        """Submit a withdraw call when the operator has a pending balance. Returns whether one was queued."""
        if self._claim_in_flight:
            return False
        pending = await self._ledger.pending_balance(self._ledger.operator_address)
        if pending <= 0:
            return False

        self._claim_in_flight = True
        logger.info("claiming operator fees", amount_wei=pending)

        async def report(outcome: SubmissionOutcome) -> None:
            self._claim_in_flight = False
            if outcome.ok:
                logger.info("operator fees claimed", amount_wei=pending, tx_hash=outcome.tx_hash)
            else:
                logger.error("fee claim failed", amount_wei=pending, error=outcome.error)

        self._sequencer.submit("withdraw", self._ledger.withdraw, report=report)
        return True

    async def check_operator_balance(self) -> int:
        """Warn when the operator's funding balance is below the configured floor."""
        balance = await self._ledger.native_balance(self._ledger.operator_address)
        if balance < self._min_operator_balance_wei:
            logger.warning(
                "operator balance low",
                address=self._ledger.operator_address,
                balance_wei=balance,
                floor_wei=self._min_operator_balance_wei,
            )
        return balance

    def start(
        self,
        *,
        stale_sweep_interval: float,
        tournament_close_interval: float,
        fee_claim_interval: float,
        balance_check_interval: float,
    ) -> None:
        """Start all job loops. The balance monitor also runs once immediately."""
        self._start("stale_sweep", self._sweep_once, stale_sweep_interval, run_first=False)
        self._start("tournament_close", self.close_expired_tournaments, tournament_close_interval, run_first=False)
        self._start("fee_claim", self.claim_pending_fees, fee_claim_interval, run_first=False)
        self._start("balance_check", self.check_operator_balance, balance_check_interval, run_first=True)

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, {}
        for task in tasks.values():
            task.cancel()
        for task in tasks.values():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _sweep_once(self) -> None:
        self.sweep_stale_sessions()

    def _start(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        interval: float,
        *,
        run_first: bool,
    ) -> None:
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            existing.cancel()
        self._tasks[name] = asyncio.create_task(self._loop(name, job, interval, run_first=run_first), name=name)

    async def _loop(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        interval: float,
        *,
        run_first: bool,
    ) -> None:
        if not run_first:
            await asyncio.sleep(interval)
        while True:
            try:
                await job()
            except LedgerReadError as e:
                logger.warning("job ledger read failed", job=name, error=str(e))
            except Exception:
                logger.exception("job failed", job=name)
            await asyncio.sleep(interval)
