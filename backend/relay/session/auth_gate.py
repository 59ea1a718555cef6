"""Challenge/signature handshake binding a connection to a wallet address.

On connect the gate issues a random nonce. The client signs
"<service name> auth: <nonce>" with its wallet (EIP-191 personal_sign) and
sends the address and signature back. The gate recovers the signer and binds
the connection to the lowercased address if it matches.

Each connection gets exactly one nonce, and the nonce is consumed by the first
well-formed verification attempt whether or not it succeeds. A client whose
attempt fails must reconnect to obtain a new challenge.
"""

import re
import secrets

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct

from relay.logic.exceptions import InvalidAuthDataError, NoPendingChallengeError, SignatureMismatchError
from relay.session.models import AuthSession
from shared.validators import is_address

logger = structlog.get_logger()

NONCE_BYTES = 32  # 256 bits of entropy
_SIGNATURE_PATTERN = re.compile(r"^(0x)?[0-9a-fA-F]{130}$")


def challenge_text(service_name: str, nonce: str) -> str:
    """Build the exact text the client must sign for a nonce."""
    return f"{service_name} auth: {nonce}"


class AuthGate:
    """Own the AuthSession table, keyed by connection id."""

    def __init__(self, service_name: str) -> None:
        self._service_name = service_name
        self._sessions: dict[str, AuthSession] = {}

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    @property
    def authenticated_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.authenticated)

    def issue_challenge(self, connection_id: str) -> str:
        """Create the AuthSession for a new connection and return its nonce."""
        nonce = secrets.token_hex(NONCE_BYTES)
        self._sessions[connection_id] = AuthSession(connection_id=connection_id, nonce=nonce)
        return nonce

    def verify(self, connection_id: str, address: str, signature: str) -> str:
        """Verify a signed challenge and bind the connection to the signer.

        Returns the canonical (lowercase) player address.

        Raises:
            InvalidAuthDataError: address malformed or signature missing/malformed.
            NoPendingChallengeError: no outstanding nonce for this connection.
            SignatureMismatchError: recovered signer differs from the address.

        """
        if not is_address(address):
            raise InvalidAuthDataError("Malformed address")
        if not signature or not _SIGNATURE_PATTERN.fullmatch(signature):
            raise InvalidAuthDataError("Missing or malformed signature")

        session = self._sessions.get(connection_id)
        if session is None or session.nonce is None:
            raise NoPendingChallengeError("No pending challenge")

        nonce, session.nonce = session.nonce, None

        message = encode_defunct(text=challenge_text(self._service_name, nonce))
        try:
            recovered = Account.recover_message(message, signature=signature)
        except Exception as e:  # noqa: BLE001
            logger.debug("signature recovery failed", error=str(e))
            raise SignatureMismatchError("Signature does not recover to an address") from e

        player = address.lower()
        if recovered.lower() != player:
            raise SignatureMismatchError("Signature does not match address")

        session.player = player
        return player

    def is_authenticated(self, connection_id: str) -> bool:
        session = self._sessions.get(connection_id)
        return session is not None and session.authenticated

    def player_for(self, connection_id: str) -> str | None:
        session = self._sessions.get(connection_id)
        return session.player if session is not None else None

    def has_pending_challenge(self, connection_id: str) -> bool:
        session = self._sessions.get(connection_id)
        return session is not None and session.nonce is not None

    def is_player_connected(self, player: str) -> bool:
        """Whether any live connection is authenticated as this player."""
        return any(s.player == player for s in self._sessions.values())

    def release(self, connection_id: str) -> str | None:
        """Drop the AuthSession for a closed connection. Returns its bound player, if any."""
        session = self._sessions.pop(connection_id, None)
        return session.player if session is not None else None
