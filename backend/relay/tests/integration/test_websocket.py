"""Integration tests for the relay's WebSocket and HTTP endpoints.

These drive the full stack (admission, framing, router, registry, sequencer)
through Starlette's test client, with an in-memory ledger and a manual clock
so scores are deterministic.
"""

import time

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from relay.ledger.sequencer import TransactionSequencer
from relay.logic.enums import CloseCode, ErrorCode
from relay.messaging.types import ServerMessageType
from relay.server.app import create_app
from relay.server.settings import RelaySettings
from relay.session.registry import SessionRegistry
from relay.tests.helpers.auth import TEST_PLAYER
from relay.tests.helpers.clock import FakeClock
from relay.tests.helpers.websocket import authenticate, recv_ws, send_ws
from relay.tests.mocks import TEST_TOURNAMENT_ID, MockLedger


def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


@pytest.fixture
def ledger():
    ledger = MockLedger()
    ledger.add_tournament(TEST_TOURNAMENT_ID)
    ledger.add_entry(TEST_TOURNAMENT_ID, TEST_PLAYER, attempts_used=0, tickets=1)
    ledger.balances[ledger.operator_address] = 10**18
    return ledger


@pytest.fixture
def clock():
    return FakeClock()


def _make_client(ledger, clock, **overrides):
    settings = RelaySettings(**overrides)
    sequencer = TransactionSequencer(default_timeout=settings.tx_timeout_seconds)
    registry = SessionRegistry(ledger, sequencer, clock=clock)
    app = create_app(settings=settings, ledger=ledger, sequencer=sequencer, registry=registry)
    return TestClient(app)


@pytest.fixture
def client(ledger, clock):
    with _make_client(ledger, clock) as client:
        yield client


class TestHttpEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert "version" in body
        assert "commit" in body

    def test_status_counts(self, client):
        with client.websocket_connect("/ws") as ws:
            authenticate(ws)
            body = client.get("/status").json()

        assert body["connections"] == 1
        assert body["authenticated"] == 1
        assert body["active_sessions"] == 0
        assert body["pending_submissions"] == 0
        assert body["max_connections"] == 500


class TestAttemptFlow:
    def test_full_attempt_scenario(self, client, ledger, clock):
        """Challenge, auth, start, one obstacle, crash: the score comes from the engine."""
        with client.websocket_connect("/ws") as ws:
            ok = authenticate(ws)
            assert ok["address"] == TEST_PLAYER

            send_ws(ws, {"type": "START_ATTEMPT", "tournamentId": TEST_TOURNAMENT_ID})
            started = recv_ws(ws)
            assert started["type"] == ServerMessageType.ATTEMPT_STARTED
            assert started["tournamentId"] == TEST_TOURNAMENT_ID
            assert started["txHash"].startswith("0x")

            clock.advance_ms(300)
            send_ws(ws, {"type": "OBSTACLE_PASSED", "obstacleId": 1})
            clock.advance_ms(1350)
            send_ws(ws, {"type": "CRASH", "score": 1_000_000})

            recorded = recv_ws(ws)
            assert recorded["type"] == ServerMessageType.SCORE_RECORDED
            assert recorded["score"] == 40
            assert recorded["tournamentId"] == TEST_TOURNAMENT_ID

        assert ledger.calls("startAttempt") == [(TEST_TOURNAMENT_ID, TEST_PLAYER)]
        assert ledger.calls("recordObstacle") == [(TEST_TOURNAMENT_ID, TEST_PLAYER, 1)]
        assert ledger.calls("recordAttemptEnd") == [(TEST_TOURNAMENT_ID, TEST_PLAYER, 40)]

    def test_gameplay_before_auth_rejected(self, client):
        with client.websocket_connect("/ws") as ws:
            recv_ws(ws)  # challenge
            send_ws(ws, {"type": "START_ATTEMPT", "tournamentId": TEST_TOURNAMENT_ID})
            reply = recv_ws(ws)

        assert reply["type"] == ServerMessageType.ERROR
        assert reply["code"] == ErrorCode.NOT_AUTHENTICATED

    def test_no_attempts_left(self, client, ledger):
        ledger.add_entry(TEST_TOURNAMENT_ID, TEST_PLAYER, attempts_used=3, tickets=1)
        with client.websocket_connect("/ws") as ws:
            authenticate(ws)
            send_ws(ws, {"type": "START_ATTEMPT", "tournamentId": TEST_TOURNAMENT_ID})
            reply = recv_ws(ws)

        assert reply["code"] == ErrorCode.NO_ATTEMPTS_LEFT
        assert ledger.calls("startAttempt") == []

    def test_disconnect_mid_attempt_submits_score(self, client, ledger):
        with client.websocket_connect("/ws") as ws:
            authenticate(ws)
            send_ws(ws, {"type": "START_ATTEMPT", "tournamentId": TEST_TOURNAMENT_ID})
            recv_ws(ws)

        _wait_for(lambda: ledger.calls("recordAttemptEnd"))
        assert ledger.calls("recordAttemptEnd") == [(TEST_TOURNAMENT_ID, TEST_PLAYER, 0)]

    def test_rate_limit_over_websocket(self, client):
        with client.websocket_connect("/ws") as ws:
            authenticate(ws)
            for i in range(11):
                send_ws(ws, {"type": "OBSTACLE_PASSED", "obstacleId": i + 1})
            reply = recv_ws(ws)

        assert reply["type"] == ServerMessageType.ERROR
        assert reply["code"] == ErrorCode.RATE_LIMITED


class TestFraming:
    def test_malformed_frames_answered_then_disconnected(self, client):
        with client.websocket_connect("/ws") as ws:
            recv_ws(ws)  # challenge
            for _ in range(5):
                ws.send_text("not json")
                reply = recv_ws(ws)
                assert reply["code"] == ErrorCode.INVALID_MESSAGE

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
        assert exc_info.value.code == CloseCode.TOO_MANY_DECODE_ERRORS

    def test_good_frame_resets_strikes(self, client):
        with client.websocket_connect("/ws") as ws:
            recv_ws(ws)
            for _ in range(4):
                ws.send_text("[]")
                recv_ws(ws)
            send_ws(ws, {"type": "CRASH"})
            assert recv_ws(ws)["code"] == ErrorCode.NOT_AUTHENTICATED
            ws.send_text("[]")
            assert recv_ws(ws)["code"] == ErrorCode.INVALID_MESSAGE
            send_ws(ws, {"type": "CRASH"})
            assert recv_ws(ws)["code"] == ErrorCode.NOT_AUTHENTICATED

    def test_oversized_frame_closes(self, client):
        with client.websocket_connect("/ws") as ws:
            recv_ws(ws)
            ws.send_text('{"type":"AUTH","address":"' + "a" * 5000 + '"}')
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
        assert exc_info.value.code == CloseCode.MESSAGE_TOO_BIG


class TestAdmission:
    """Rejected sockets complete the handshake and are then closed with a reason.

    The close frame itself is checked against a real uvicorn server in
    test_live_server.py; here the focus is on relay state.
    """

    def test_server_full(self, ledger, clock):
        with _make_client(ledger, clock, max_connections=1) as client, client.websocket_connect("/ws") as ws:
            recv_ws(ws)
            with client.websocket_connect("/ws") as rejected, pytest.raises(WebSocketDisconnect) as exc_info:
                rejected.receive_text()
            assert exc_info.value.code == CloseCode.SERVER_FULL
            assert exc_info.value.reason == "server_full"
            assert client.app.state.admission.connection_count == 1
            assert client.app.state.router.connection_count == 1

    def test_origin_limit(self, ledger, clock):
        with _make_client(ledger, clock, max_connections_per_origin=1) as client, client.websocket_connect("/ws") as ws:
            recv_ws(ws)
            with client.websocket_connect("/ws") as rejected, pytest.raises(WebSocketDisconnect) as exc_info:
                rejected.receive_text()
            assert exc_info.value.code == CloseCode.ORIGIN_LIMIT
            assert exc_info.value.reason == "too_many_connections_from_origin"
            assert client.app.state.admission.connection_count == 1

    def test_rejected_socket_gets_no_challenge(self, ledger, clock):
        with _make_client(ledger, clock, max_connections=1) as client, client.websocket_connect("/ws") as ws:
            recv_ws(ws)
            with client.websocket_connect("/ws") as rejected, pytest.raises(WebSocketDisconnect):
                rejected.receive_text()
            assert client.app.state.auth_gate.connection_count == 1

    def test_slot_released_on_disconnect(self, ledger, clock):
        with _make_client(ledger, clock, max_connections=1) as client:
            with client.websocket_connect("/ws") as ws:
                recv_ws(ws)
            _wait_for(lambda: client.app.state.admission.connection_count == 0)
            with client.websocket_connect("/ws") as ws:
                assert recv_ws(ws)["type"] == ServerMessageType.AUTH_CHALLENGE
