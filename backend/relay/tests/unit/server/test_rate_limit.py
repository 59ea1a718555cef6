"""Tests for the fixed-window per-player action limiter."""

from unittest.mock import patch

from relay.server.rate_limit import ActionRateLimiter


class TestActionRateLimiter:
    def test_allows_up_to_max_actions(self):
        limiter = ActionRateLimiter(window_seconds=1.0, max_actions=10)
        assert all(limiter.check("p1") for _ in range(10))

    def test_eleventh_action_in_window_rejected(self):
        limiter = ActionRateLimiter(window_seconds=1.0, max_actions=10)
        results = [limiter.check("p1") for _ in range(11)]
        assert results[:10] == [True] * 10
        assert results[10] is False

    def test_players_are_independent(self):
        limiter = ActionRateLimiter(window_seconds=1.0, max_actions=2)
        limiter.check("p1")
        limiter.check("p1")
        assert limiter.check("p1") is False
        assert limiter.check("p2") is True

    def test_window_resets_after_elapsed(self):
        limiter = ActionRateLimiter(window_seconds=1.0, max_actions=3)
        with patch("relay.server.rate_limit.time") as mock_time:
            mock_time.monotonic.return_value = 100.0
            for _ in range(3):
                limiter.check("p1")
            assert limiter.check("p1") is False

            mock_time.monotonic.return_value = 100.999
            assert limiter.check("p1") is False

            mock_time.monotonic.return_value = 101.0
            assert limiter.check("p1") is True

    def test_count_does_not_carry_over(self):
        limiter = ActionRateLimiter(window_seconds=1.0, max_actions=3)
        with patch("relay.server.rate_limit.time") as mock_time:
            mock_time.monotonic.return_value = 10.0
            for _ in range(3):
                limiter.check("p1")
            mock_time.monotonic.return_value = 11.5
            assert all(limiter.check("p1") for _ in range(3))
            assert limiter.check("p1") is False

    def test_forget_drops_window(self):
        limiter = ActionRateLimiter(window_seconds=1.0, max_actions=1)
        limiter.check("p1")
        assert limiter.tracked_players == 1

        limiter.forget("p1")
        limiter.forget("p1")
        assert limiter.tracked_players == 0
        assert limiter.check("p1") is True
