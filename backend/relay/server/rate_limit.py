"""Fixed-window per-player action limiter for gameplay messages."""

import time

from relay.session.models import RateWindow


class ActionRateLimiter:
    """Allow at most `max_actions` per player within each `window_seconds` window.

    The window resets on the first action after it has fully elapsed, so
    counts never carry over between windows.
    """

    def __init__(self, window_seconds: float = 1.0, max_actions: int = 10) -> None:
        self._window_seconds = window_seconds
        self._max_actions = max_actions
        self._windows: dict[str, RateWindow] = {}

    @property
    def tracked_players(self) -> int:
        return len(self._windows)

    def check(self, player: str) -> bool:
        """Record one action. Returns True if allowed, False if rate-limited."""
        now = time.monotonic()
        window = self._windows.get(player)
        if window is None or now - window.window_start >= self._window_seconds:
            window = RateWindow(window_start=now)
            self._windows[player] = window

        if window.count >= self._max_actions:
            return False
        window.count += 1
        return True

    def forget(self, player: str) -> None:
        self._windows.pop(player, None)
