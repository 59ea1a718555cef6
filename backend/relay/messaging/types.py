from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from relay.logic.enums import AuthFailure, ErrorCode


class ClientMessageType(StrEnum):
    AUTH = "AUTH"
    START_ATTEMPT = "START_ATTEMPT"
    OBSTACLE_PASSED = "OBSTACLE_PASSED"
    CRASH = "CRASH"


class ServerMessageType(StrEnum):
    AUTH_CHALLENGE = "AUTH_CHALLENGE"
    AUTH_OK = "AUTH_OK"
    AUTH_FAILED = "AUTH_FAILED"
    ATTEMPT_STARTED = "ATTEMPT_STARTED"
    SCORE_RECORDED = "SCORE_RECORDED"
    ERROR = "ERROR"


class UnknownMessageTypeError(ValueError):
    def __init__(self, message_type: object) -> None:
        self.message_type = message_type
        super().__init__(f"Unknown message type: {message_type!r}")


class _WireModel(BaseModel):
    """Wire fields are camelCase (tournamentId, txHash); Python fields are snake_case.

    Outbound messages must be dumped with by_alias=True (see to_wire).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Client -> server


class AuthMessage(_WireModel):
    type: Literal[ClientMessageType.AUTH] = ClientMessageType.AUTH
    # Format checks belong to the AuthGate so they surface as AUTH_FAILED.
    address: str = Field(default="", max_length=128)
    signature: str = Field(default="", max_length=512)


class StartAttemptMessage(_WireModel):
    type: Literal[ClientMessageType.START_ATTEMPT] = ClientMessageType.START_ATTEMPT
    tournament_id: int = Field(ge=1)


class ObstaclePassedMessage(_WireModel):
    type: Literal[ClientMessageType.OBSTACLE_PASSED] = ClientMessageType.OBSTACLE_PASSED
    # Validated by the SessionRegistry: a bad id is dropped silently, not rejected.
    obstacle_id: Any = None


class CrashMessage(_WireModel):
    """End of an attempt. Any score the client attaches is ignored."""

    type: Literal[ClientMessageType.CRASH] = ClientMessageType.CRASH


ClientMessage = AuthMessage | StartAttemptMessage | ObstaclePassedMessage | CrashMessage

_client_message_adapter = TypeAdapter(Annotated[ClientMessage, Field(discriminator="type")])

_CLIENT_MESSAGE_TYPES = frozenset(ClientMessageType)


def parse_client_message(data: dict[str, Any]) -> ClientMessage:
    """Parse a raw dict into a typed ClientMessage.

    Raises UnknownMessageTypeError when `type` is missing or not a client
    message type, and pydantic ValidationError for malformed payloads.
    """
    message_type = data.get("type")
    if not isinstance(message_type, str) or message_type not in _CLIENT_MESSAGE_TYPES:
        raise UnknownMessageTypeError(message_type)
    return _client_message_adapter.validate_python(data)


# Server -> client


class AuthChallengeMessage(_WireModel):
    type: Literal[ServerMessageType.AUTH_CHALLENGE] = ServerMessageType.AUTH_CHALLENGE
    nonce: str


class AuthOkMessage(_WireModel):
    type: Literal[ServerMessageType.AUTH_OK] = ServerMessageType.AUTH_OK
    address: str


class AuthFailedMessage(_WireModel):
    type: Literal[ServerMessageType.AUTH_FAILED] = ServerMessageType.AUTH_FAILED
    reason: AuthFailure
    message: str


class AttemptStartedMessage(_WireModel):
    type: Literal[ServerMessageType.ATTEMPT_STARTED] = ServerMessageType.ATTEMPT_STARTED
    tournament_id: int
    tx_hash: str


class ScoreRecordedMessage(_WireModel):
    type: Literal[ServerMessageType.SCORE_RECORDED] = ServerMessageType.SCORE_RECORDED
    tournament_id: int
    score: int
    tx_hash: str


class ErrorMessage(_WireModel):
    type: Literal[ServerMessageType.ERROR] = ServerMessageType.ERROR
    code: ErrorCode
    message: str
