"""Ledger client interface and the records it returns.

The ledger (the MegaRally contract) is the system of record. The relay reads
tournament and entry state for preflight checks and reconciliation, and
submits operator writes. Writes must only be issued from the
TransactionSequencer so that at most one is in flight per process.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Tournament:
    """On-ledger tournament record. Times are unix seconds."""

    id: int
    entry_fee: int
    start_time: int
    end_time: int
    prize_pool: int = 0
    paid_out: int = 0
    ended: bool = False
    cancelled: bool = False
    winner: str = ZERO_ADDRESS

    @property
    def finalized(self) -> bool:
        return self.ended or self.cancelled

    def is_expired(self, now: float) -> bool:
        return now >= self.end_time


@dataclass(frozen=True)
class Entry:
    """A player's entry in a tournament."""

    player: str
    tournament_id: int
    attempts_used: int
    tickets: int
    scores: tuple[int, ...] = field(default_factory=tuple)
    total_score: int = 0
    best_score: int = 0

    def attempts_allowed(self, attempts_per_ticket: int) -> int:
        return self.tickets * attempts_per_ticket

    def has_attempts_left(self, attempts_per_ticket: int) -> bool:
        return self.attempts_used < self.attempts_allowed(attempts_per_ticket)


class LedgerClient(ABC):
    """
    Abstract interface to the external ledger.

    Read methods raise LedgerReadError on transport or decoding failures.
    Write methods return the transaction hash as a 0x-prefixed hex string
    and raise LedgerWriteError when the call is rejected or reverted.
    """

    @property
    @abstractmethod
    def operator_address(self) -> str:
        """Address of the identity that signs operator writes."""
        ...

    # reads

    @abstractmethod
    async def get_tournament(self, tournament_id: int) -> Tournament | None:
        """Return the tournament record, or None if no such tournament exists."""
        ...

    @abstractmethod
    async def get_entry(self, tournament_id: int, player: str) -> Entry | None:
        """Return the player's entry, or None if the player has not entered."""
        ...

    @abstractmethod
    async def tournament_count(self) -> int:
        """Number of tournaments created. Tournament ids run from 1 to this count."""
        ...

    @abstractmethod
    async def pending_balance(self, address: str) -> int:
        """Withdrawable balance (wei) accrued to an address on the contract."""
        ...

    @abstractmethod
    async def native_balance(self, address: str) -> int:
        """Native currency balance (wei) of an account, used to pay for gas."""
        ...

    # writes

    @abstractmethod
    async def start_attempt(self, tournament_id: int, player: str) -> str: ...

    @abstractmethod
    async def record_obstacle(self, tournament_id: int, player: str, obstacle_id: int) -> str: ...

    @abstractmethod
    async def record_attempt_end(self, tournament_id: int, player: str, score: int) -> str: ...

    @abstractmethod
    async def end_tournament(self, tournament_id: int) -> str: ...

    @abstractmethod
    async def withdraw(self) -> str: ...
