"""In-memory ledger for tests: tournaments, entries and a write log."""

import asyncio
import itertools
import time
from dataclasses import replace

from relay.ledger.client import Entry, LedgerClient, Tournament
from relay.logic.exceptions import LedgerReadError, LedgerWriteError

OPERATOR_ADDRESS = "0x00000000000000000000000000000000000000aa"
TEST_TOURNAMENT_ID = 1


class MockLedger(LedgerClient):
    """Ledger stand-in that records every write as (call, args).

    Writes succeed and return sequential fake hashes unless a call name is
    listed in `fail_calls`; `write_delays` makes a call sleep first, which is
    how sequencer timeouts are exercised. Setting `reads_fail` makes every
    read raise LedgerReadError; ids in `unreadable_tournaments` fail alone.
    """

    def __init__(self, operator_address: str = OPERATOR_ADDRESS) -> None:
        self._operator_address = operator_address
        self.tournaments: dict[int, Tournament] = {}
        self.entries: dict[tuple[int, str], Entry] = {}
        self.pending_withdrawals: dict[str, int] = {}
        self.balances: dict[str, int] = {}
        self.writes: list[tuple[str, tuple]] = []
        self.fail_calls: set[str] = set()
        self.write_delays: dict[str, float] = {}
        self.reads_fail = False
        self.unreadable_tournaments: set[int] = set()
        self._hashes = itertools.count(1)

    @property
    def operator_address(self) -> str:
        return self._operator_address

    def add_tournament(self, tournament_id: int, *, end_time: float | None = None, **kwargs) -> Tournament:
        now = time.time()
        tournament = Tournament(
            id=tournament_id,
            entry_fee=kwargs.pop("entry_fee", 10**15),
            start_time=kwargs.pop("start_time", int(now) - 60),
            end_time=int(end_time if end_time is not None else now + 3600),
            **kwargs,
        )
        self.tournaments[tournament_id] = tournament
        return tournament

    def add_entry(self, tournament_id: int, player: str, *, attempts_used: int = 0, tickets: int = 1) -> Entry:
        entry = Entry(player=player, tournament_id=tournament_id, attempts_used=attempts_used, tickets=tickets)
        self.entries[(tournament_id, player)] = entry
        return entry

    def calls(self, name: str) -> list[tuple]:
        return [args for call, args in self.writes if call == name]

    async def _check_reads(self) -> None:
        await asyncio.sleep(0)
        if self.reads_fail:
            raise LedgerReadError("rpc unreachable")

    async def get_tournament(self, tournament_id: int) -> Tournament | None:
        await self._check_reads()
        if tournament_id in self.unreadable_tournaments:
            raise LedgerReadError(f"tournament {tournament_id} read failed")
        return self.tournaments.get(tournament_id)

    async def get_entry(self, tournament_id: int, player: str) -> Entry | None:
        await self._check_reads()
        return self.entries.get((tournament_id, player))

    async def tournament_count(self) -> int:
        await self._check_reads()
        return max(self.tournaments, default=0)

    async def pending_balance(self, address: str) -> int:
        await self._check_reads()
        return self.pending_withdrawals.get(address, 0)

    async def native_balance(self, address: str) -> int:
        await self._check_reads()
        return self.balances.get(address, 0)

    async def _write(self, call: str, *args) -> str:
        delay = self.write_delays.get(call)
        if delay:
            await asyncio.sleep(delay)
        self.writes.append((call, args))
        if call in self.fail_calls:
            raise LedgerWriteError(call, "execution reverted")
        return f"0x{next(self._hashes):064x}"

    async def start_attempt(self, tournament_id: int, player: str) -> str:
        tx_hash = await self._write("startAttempt", tournament_id, player)
        entry = self.entries.get((tournament_id, player))
        if entry is not None:
            self.entries[(tournament_id, player)] = replace(entry, attempts_used=entry.attempts_used + 1)
        return tx_hash

    async def record_obstacle(self, tournament_id: int, player: str, obstacle_id: int) -> str:
        return await self._write("recordObstacle", tournament_id, player, obstacle_id)

    async def record_attempt_end(self, tournament_id: int, player: str, score: int) -> str:
        return await self._write("recordAttemptEnd", tournament_id, player, score)

    async def end_tournament(self, tournament_id: int) -> str:
        tx_hash = await self._write("endTournament", tournament_id)
        tournament = self.tournaments.get(tournament_id)
        if tournament is not None:
            self.tournaments[tournament_id] = replace(tournament, ended=True)
        return tx_hash

    async def withdraw(self) -> str:
        tx_hash = await self._write("withdraw")
        self.pending_withdrawals.pop(self._operator_address, None)
        return tx_hash
