"""
String enum definitions shared by the relay layers.
"""

from enum import StrEnum


class ErrorCode(StrEnum):
    """Reason codes carried by ERROR messages sent to clients."""

    INVALID_MESSAGE = "invalid_message"
    UNKNOWN_MESSAGE_TYPE = "unknown_message_type"
    NOT_AUTHENTICATED = "not_authenticated"
    RATE_LIMITED = "rate_limited"
    SESSION_ALREADY_ACTIVE = "session_already_active"
    TOURNAMENT_NOT_FOUND = "tournament_not_found"
    TOURNAMENT_ENDED = "tournament_ended"
    TOURNAMENT_EXPIRED = "tournament_expired"
    NOT_ENTERED = "not_entered"
    NO_ATTEMPTS_LEFT = "no_attempts_left"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    SCORE_SUBMISSION_FAILED = "score_submission_failed"
    INTERNAL_ERROR = "internal_error"


class AuthFailure(StrEnum):
    """Reason codes for rejected AUTH attempts."""

    INVALID_AUTH_DATA = "invalid_auth_data"
    NO_PENDING_CHALLENGE = "no_pending_challenge"
    SIGNATURE_MISMATCH = "signature_mismatch"


class EndReason(StrEnum):
    """Why a player session was ended."""

    CRASH = "crash"
    DISCONNECT = "disconnect"
    TIMEOUT = "timeout"


class CloseCode:
    """WebSocket close codes and reasons used by the relay."""

    MESSAGE_TOO_BIG = 1009
    SERVER_FULL = 1013
    AUTH_TIMEOUT = 4001
    TOO_MANY_DECODE_ERRORS = 4004
    ORIGIN_LIMIT = 4029
