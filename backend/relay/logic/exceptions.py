"""Typed domain exceptions for the relay.

Domain code raises subclasses of RelayError rather than raw ValueError,
so the MessageRouter can convert them into client responses in one place
while still containing unexpected exceptions separately.
"""

from relay.logic.enums import AuthFailure, ErrorCode


class RelayError(Exception):
    """Base exception for client-visible rejections."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message)


class AuthError(Exception):
    """Base exception for failed AUTH attempts. Reported as AUTH_FAILED, never as ERROR."""

    reason: AuthFailure

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidAuthDataError(AuthError):
    """Address is malformed or the signature is missing or unparseable."""

    reason = AuthFailure.INVALID_AUTH_DATA


class NoPendingChallengeError(AuthError):
    """No nonce is outstanding for the connection (already consumed or never issued)."""

    reason = AuthFailure.NO_PENDING_CHALLENGE


class SignatureMismatchError(AuthError):
    """Recovered signer does not match the claimed address."""

    reason = AuthFailure.SIGNATURE_MISMATCH


class SessionRejectedError(RelayError):
    """A begin-attempt request was rejected. No session state was created."""


class SessionAlreadyActiveError(SessionRejectedError):
    code = ErrorCode.SESSION_ALREADY_ACTIVE

    def __init__(self, player: str) -> None:
        self.player = player
        super().__init__("An attempt is already in progress")


class PreflightRejectedError(SessionRejectedError):
    """The ledger preflight check failed (tournament closed, no attempts left, etc.)."""


class LedgerError(Exception):
    """Base exception for ledger client failures."""


class LedgerReadError(LedgerError):
    """A read call against the ledger failed."""


class LedgerWriteError(LedgerError):
    """A write was rejected, reverted, or could not be broadcast.

    Attributes:
        call: Contract function name (e.g. "recordAttemptEnd").
        tx_hash: Transaction hash when the failure happened after broadcast.

    """

    def __init__(self, call: str, reason: str, *, tx_hash: str | None = None) -> None:
        self.call = call
        self.reason = reason
        self.tx_hash = tx_hash
        super().__init__(f"{call} failed: {reason}")
