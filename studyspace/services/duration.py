"""Net study time calculation."""

import math
from datetime import datetime


def calculate_duration(
    start_time: datetime,
    observation_time: datetime,
    accumulated_pause_seconds: float = 0.0,
) -> float:
    """Return elapsed study seconds between start and observation, minus pauses.

    The result is clamped at zero so clock skew or a corrupted accumulator never
    yields a negative duration. Non-finite results also collapse to zero.
    """
    elapsed = (observation_time - start_time).total_seconds()
    seconds = elapsed - float(accumulated_pause_seconds or 0.0)
    if not math.isfinite(seconds):
        return 0.0
    return max(0.0, seconds)
