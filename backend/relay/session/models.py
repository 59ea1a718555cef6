from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol


@dataclass
class AuthSession:
    """Authentication state of one live connection.

    Lifecycle:
    - Created on connect with a freshly issued nonce
    - On a verification attempt the nonce is cleared (single use)
    - On successful verification `player` is bound
    - Removed from the AuthGate when the connection closes
    """

    connection_id: str
    nonce: str | None
    player: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.player is not None


@dataclass
class PlayerSession:
    """One in-progress attempt by an authenticated player.

    Timestamps are monotonic seconds from the registry's clock. The obstacle
    log preserves acceptance order; `seen_obstacles` backs the dedup check.
    """

    player: str
    tournament_id: int
    started_at: float
    connection: ConnectionProtocol | None = None
    obstacle_log: list[int] = field(default_factory=list)
    seen_obstacles: set[int] = field(default_factory=set)
    last_obstacle_at: float | None = None

    @property
    def obstacle_count(self) -> int:
        return len(self.obstacle_log)

    @property
    def connection_id(self) -> str | None:
        return self.connection.connection_id if self.connection is not None else None

    def age_ms(self, now: float) -> float:
        return (now - self.started_at) * 1000


@dataclass
class RateWindow:
    """Fixed-window action counter for one player."""

    window_start: float
    count: int = 0
