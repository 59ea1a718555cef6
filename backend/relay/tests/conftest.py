import pytest

from relay.ledger.sequencer import TransactionSequencer
from relay.messaging.router import MessageRouter
from relay.server.rate_limit import ActionRateLimiter
from relay.session.auth_gate import AuthGate
from relay.session.registry import SessionRegistry
from relay.tests.helpers.auth import TEST_PLAYER, TEST_SERVICE_NAME
from relay.tests.helpers.clock import FakeClock
from relay.tests.mocks import TEST_TOURNAMENT_ID, MockLedger


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    """Ledger with one open tournament that TEST_PLAYER has entered with one ticket."""
    ledger = MockLedger()
    ledger.add_tournament(TEST_TOURNAMENT_ID)
    ledger.add_entry(TEST_TOURNAMENT_ID, TEST_PLAYER)
    return ledger


@pytest.fixture
async def sequencer():
    sequencer = TransactionSequencer(default_timeout=1.0)
    yield sequencer
    await sequencer.stop()


@pytest.fixture
def registry(ledger, sequencer, clock):
    return SessionRegistry(ledger, sequencer, clock=clock)


@pytest.fixture
def auth_gate():
    return AuthGate(TEST_SERVICE_NAME)


@pytest.fixture
def limiter():
    return ActionRateLimiter(window_seconds=1.0, max_actions=10)


@pytest.fixture
async def router(auth_gate, registry, limiter):
    router = MessageRouter(auth_gate, registry, limiter)
    yield router
    router.cancel_all_auth_timeouts()
