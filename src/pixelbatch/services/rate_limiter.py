"""Inter-item delay for a single batch job.

The limiter is per job: it spaces out one job's items against the external
generation API. Many jobs running at once can still exceed the API's
aggregate limit.
"""

import random
from dataclasses import dataclass, field

BASE_RATE_LIMIT_DELAY_MS = 100
MIN_JITTER_MS = 20
MAX_JITTER_MS = 100


def compute_delay(
    base_ms: int,
    jitter_min_ms: int,
    jitter_max_ms: int,
    rng: random.Random | None = None,
) -> int:
    """Return ``base_ms`` plus a uniform jitter in ``[jitter_min_ms, jitter_max_ms]``."""
    source = rng or random
    return base_ms + source.randint(jitter_min_ms, jitter_max_ms)


@dataclass
class RateLimitPolicy:
    base_ms: int = BASE_RATE_LIMIT_DELAY_MS
    jitter_min_ms: int = MIN_JITTER_MS
    jitter_max_ms: int = MAX_JITTER_MS
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.base_ms < 0 or self.jitter_min_ms < 0:
            raise ValueError("rate limit delays must be non-negative")
        if self.jitter_min_ms > self.jitter_max_ms:
            raise ValueError(
                f"jitter_min_ms ({self.jitter_min_ms}) exceeds jitter_max_ms ({self.jitter_max_ms})"
            )

    @property
    def min_delay_ms(self) -> int:
        return self.base_ms + self.jitter_min_ms

    @property
    def max_delay_ms(self) -> int:
        return self.base_ms + self.jitter_max_ms

    def next_delay_ms(self) -> int:
        return compute_delay(self.base_ms, self.jitter_min_ms, self.jitter_max_ms, self.rng)
