from __future__ import annotations

import random


def compute_backoff(
    attempt: int, delay: float = 5.0, factor: float = 2.0, jitter: float = 0.0
) -> float:
    """Compute exponential backoff with optional jitter.

    ``attempt`` is the number of attempts already made (1 for the first
    retry), so the first retry waits ``delay`` seconds.
    """
    backoff = delay * factor ** max(attempt - 1, 0)
    return backoff + random.uniform(0, jitter)
