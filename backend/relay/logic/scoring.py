"""
Authoritative score calculation for a single attempt.

The relay never trusts client-reported scores. The score is derived only from
the number of accepted obstacles and the server-measured attempt duration,
using the same tuning as the runner client: the world scrolls in fixed 16 ms
frames, speed ramps linearly from OBSTACLE_SPEED_START to MAX_SPEED, each
frame adds DISTANCE_SCORE_RATE scaled by relative speed, and every cleared
obstacle adds OBSTACLE_BONUS.

Arithmetic is exact (Fraction), so the result is identical on every platform
for the same inputs.
"""

import math
from fractions import Fraction

FRAME_MS = 16
OBSTACLE_SPEED_START = Fraction(6)
OBSTACLE_SPEED_INCREMENT = Fraction(8, 10_000)
MAX_SPEED = Fraction(14)
DISTANCE_SCORE_RATE = Fraction(15, 100)
OBSTACLE_BONUS = 25

# Sessions are capped at 10 minutes; anything longer scores as exactly 10 minutes.
MAX_ELAPSED_MS = 600_000

# First frame index at which speed reaches MAX_SPEED.
_RAMP_FRAMES = int((MAX_SPEED - OBSTACLE_SPEED_START) / OBSTACLE_SPEED_INCREMENT)


def frame_count(elapsed_ms: float, max_elapsed_ms: int = MAX_ELAPSED_MS) -> int:
    """Number of whole frames in the (capped) elapsed time."""
    capped = min(max(elapsed_ms, 0), max_elapsed_ms)
    return int(capped // FRAME_MS)


def distance_points(frames: int) -> Fraction:
    """Exact distance component accumulated over the first `frames` frames.

    Frame f runs at speed min(MAX_SPEED, START + f * INCREMENT) and contributes
    DISTANCE_SCORE_RATE * speed / START. The ramp is summed in closed form.
    """
    if frames <= 0:
        return Fraction(0)
    ramp = min(frames, _RAMP_FRAMES)
    plateau = frames - ramp
    speed_sum = ramp * OBSTACLE_SPEED_START + OBSTACLE_SPEED_INCREMENT * ramp * (ramp - 1) / 2
    speed_sum += plateau * MAX_SPEED
    return DISTANCE_SCORE_RATE * speed_sum / OBSTACLE_SPEED_START


def score(obstacle_count: int, elapsed_ms: float, *, max_elapsed_ms: int = MAX_ELAPSED_MS) -> int:
    """Compute the integer score for an attempt.

    Raises ValueError for a negative obstacle count.
    """
    if obstacle_count < 0:
        raise ValueError(f"obstacle_count must be non-negative, got {obstacle_count}")
    total = distance_points(frame_count(elapsed_ms, max_elapsed_ms)) + obstacle_count * OBSTACLE_BONUS
    return math.floor(total)
