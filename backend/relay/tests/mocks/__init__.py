from relay.tests.mocks.connection import MockConnection
from relay.tests.mocks.ledger import OPERATOR_ADDRESS, TEST_TOURNAMENT_ID, MockLedger

__all__ = ["OPERATOR_ADDRESS", "TEST_TOURNAMENT_ID", "MockConnection", "MockLedger"]
