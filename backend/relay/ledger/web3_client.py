"""web3.py implementation of the LedgerClient against the MegaRally contract."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from relay.ledger.abi import MEGARALLY_ABI
from relay.ledger.client import ZERO_ADDRESS, Entry, LedgerClient, Tournament
from relay.logic.exceptions import LedgerReadError, LedgerWriteError

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount
    from web3.contract.async_contract import AsyncContractFunction

logger = structlog.get_logger()

DEFAULT_GAS_LIMIT = 500_000
DEFAULT_RECEIPT_TIMEOUT_SECONDS = 20.0

_LEDGER_EXCEPTIONS = (Web3Exception, OSError, ValueError, TimeoutError)


class Web3LedgerClient(LedgerClient):
    """Talk to the contract over JSON-RPC, signing writes with the operator key.

    Nonces are taken from the pending transaction count at send time. This is
    only safe because every write goes through the TransactionSequencer.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        chain_id: int,
        *,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
    ) -> None:
        if not private_key:
            raise ValueError("operator private key is required")
        self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._account: LocalAccount = Account.from_key(private_key)
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=MEGARALLY_ABI,
        )
        self._chain_id = chain_id
        self._gas_limit = gas_limit
        self._receipt_timeout = receipt_timeout

    @property
    def operator_address(self) -> str:
        return self._account.address

    async def _call(self, fn: AsyncContractFunction) -> Any:  # noqa: ANN401
        try:
            return await fn.call()
        except _LEDGER_EXCEPTIONS as e:
            raise LedgerReadError(f"{fn.fn_name} call failed: {e}") from e

    async def get_tournament(self, tournament_id: int) -> Tournament | None:
        raw = await self._call(self._contract.functions.tournaments(tournament_id))
        return _decode_tournament(raw)

    async def get_entry(self, tournament_id: int, player: str) -> Entry | None:
        raw = await self._call(
            self._contract.functions.getEntry(tournament_id, Web3.to_checksum_address(player)),
        )
        return _decode_entry(raw)

    async def tournament_count(self) -> int:
        return int(await self._call(self._contract.functions.tournamentCount()))

    async def pending_balance(self, address: str) -> int:
        return int(await self._call(self._contract.functions.pendingWithdrawals(Web3.to_checksum_address(address))))

    async def native_balance(self, address: str) -> int:
        try:
            return int(await self._w3.eth.get_balance(Web3.to_checksum_address(address)))
        except _LEDGER_EXCEPTIONS as e:
            raise LedgerReadError(f"get_balance failed: {e}") from e

    async def start_attempt(self, tournament_id: int, player: str) -> str:
        return await self._transact(
            self._contract.functions.startAttempt(tournament_id, Web3.to_checksum_address(player)),
            confirm=False,
        )

    async def record_obstacle(self, tournament_id: int, player: str, obstacle_id: int) -> str:
        return await self._transact(
            self._contract.functions.recordObstacle(tournament_id, Web3.to_checksum_address(player), obstacle_id),
            confirm=False,
        )

    async def record_attempt_end(self, tournament_id: int, player: str, score: int) -> str:
        return await self._transact(
            self._contract.functions.recordAttemptEnd(tournament_id, Web3.to_checksum_address(player), score),
            confirm=True,
        )

    async def end_tournament(self, tournament_id: int) -> str:
        return await self._transact(self._contract.functions.endTournament(tournament_id), confirm=True)

    async def withdraw(self) -> str:
        return await self._transact(self._contract.functions.withdraw(), confirm=True)

    async def _transact(self, fn: AsyncContractFunction, *, confirm: bool) -> str:
        """Sign and broadcast a contract call.

        With confirm=False the hash is returned as soon as the node accepts the
        transaction. With confirm=True the receipt is awaited and a reverted
        status raises LedgerWriteError.
        """
        name = fn.fn_name
        try:
            nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
            tx = await fn.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": nonce,
                    "gas": self._gas_limit,
                    "chainId": self._chain_id,
                },
            )
            signed = self._account.sign_transaction(tx)
            tx_hash = Web3.to_hex(await self._w3.eth.send_raw_transaction(signed.raw_transaction))
        except _LEDGER_EXCEPTIONS as e:
            raise LedgerWriteError(name, str(e)) from e

        logger.debug("transaction sent", call=name, tx_hash=tx_hash, nonce=nonce)
        if not confirm:
            return tx_hash

        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        except _LEDGER_EXCEPTIONS as e:
            raise LedgerWriteError(name, f"receipt not available: {e}", tx_hash=tx_hash) from e
        if receipt.get("status") != 1:
            raise LedgerWriteError(name, "transaction reverted", tx_hash=tx_hash)
        return tx_hash


def _decode_tournament(raw: Any) -> Tournament | None:  # noqa: ANN401
    """Map the `tournaments(id)` return tuple. A zero id means no such tournament."""
    tournament_id, entry_fee, start_time, end_time, prize_pool, paid_out, ended, cancelled, winner = raw
    if int(tournament_id) == 0:
        return None
    return Tournament(
        id=int(tournament_id),
        entry_fee=int(entry_fee),
        start_time=int(start_time),
        end_time=int(end_time),
        prize_pool=int(prize_pool),
        paid_out=int(paid_out),
        ended=bool(ended),
        cancelled=bool(cancelled),
        winner=str(winner),
    )


def _decode_entry(raw: Any) -> Entry | None:  # noqa: ANN401
    """Map the `getEntry` struct. Unentered players come back as a zeroed struct."""
    player, tournament_id, scores, attempts_used, tickets, total_score, best_score = raw
    if str(player) == ZERO_ADDRESS or int(tickets) == 0:
        return None
    return Entry(
        player=str(player).lower(),
        tournament_id=int(tournament_id),
        attempts_used=int(attempts_used),
        tickets=int(tickets),
        scores=tuple(int(s) for s in scores),
        total_score=int(total_score),
        best_score=int(best_score),
    )
