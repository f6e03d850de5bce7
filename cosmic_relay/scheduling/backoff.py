"""
Next-run delay calculation for scheduled sources.

Computes delays as: min(base * multiplier^failures, max_delay) + jitter,
where base is the source's effective interval and jitter is drawn fresh
for every scheduled run from [-jitter_ms, +jitter_ms].
"""

import random


class BackoffPolicy:
    """
    Exponential backoff with additive jitter, in milliseconds.

    Usage:
        policy = BackoffPolicy(base_ms=20_000, max_delay_ms=3_600_000)
        policy.interval_delay()      # after a success
        policy.failure_delay(3)      # after the 3rd consecutive failure
    """

    def __init__(
        self,
        base_ms: int,
        max_delay_ms: int,
        multiplier: float = 2.0,
        jitter_ms: int = 0,
        rng: random.Random | None = None,
    ):
        self.base_ms = base_ms
        self.max_delay_ms = max_delay_ms
        self.multiplier = multiplier
        self.jitter_ms = jitter_ms
        self._rng = rng or random.Random()

    def jitter(self) -> int:
        """Uniform random offset in [-jitter_ms, +jitter_ms]."""
        if not self.jitter_ms:
            return 0
        return self._rng.randint(-self.jitter_ms, self.jitter_ms)

    def backoff(self, failures: int) -> int:
        """Capped exponential delay for ``failures`` consecutive failures, without jitter."""
        try:
            delay = self.base_ms * (self.multiplier ** failures)
        except OverflowError:
            return self.max_delay_ms
        return int(min(delay, self.max_delay_ms))

    def interval_delay(self) -> int:
        """Delay until the next run after a success."""
        return max(0, self.base_ms + self.jitter())

    def failure_delay(self, failures: int) -> int:
        """Delay until the retry after ``failures`` consecutive failures."""
        return max(0, self.backoff(failures) + self.jitter())
