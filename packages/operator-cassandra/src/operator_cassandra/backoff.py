"""
Error backoff for the reconcile controller.

A key whose pass ends in Error() is retried after an exponentially growing
delay with jitter, so a persistently failing cluster does not hammer the
orchestration API and many failing clusters do not retry in lockstep. Any
non-error result resets the key's failure count.
"""

import random
from dataclasses import dataclass, field

from operator_cassandra.config import settings


@dataclass
class BackoffConfig:
    """
    Exponential backoff with jitter.

    Attributes:
        min_wait_seconds: Wait after the first failure (default 1.0)
        max_wait_seconds: Upper bound on any wait, jitter included (default 300.0)
        exponential_base: Base for exponential calculation (default 2.0)
        jitter_fraction: Fraction of wait time to add as jitter (default 0.1)

    Example:
        config = BackoffConfig(min_wait_seconds=2.0)
        config.delay(attempt=2)
        # Returns ~8-8.8 seconds (2s * 2^2 + jitter)
    """

    min_wait_seconds: float = settings.backoff_min_seconds
    max_wait_seconds: float = settings.backoff_max_seconds
    exponential_base: float = 2.0
    jitter_fraction: float = 0.1

    def delay(self, attempt: int) -> float:
        """
        Seconds to wait before retry number `attempt` (0 for the first retry).

        Formula: min(max_wait, min_wait * base^attempt + random(0, wait * jitter))
        """
        wait = min(
            self.max_wait_seconds,
            self.min_wait_seconds * (self.exponential_base**attempt),
        )
        jitter = random.uniform(0, wait * self.jitter_fraction)
        return min(self.max_wait_seconds, wait + jitter)


@dataclass
class KeyBackoff:
    """Failure counts per work queue key."""

    config: BackoffConfig = field(default_factory=BackoffConfig)
    failures: dict[str, int] = field(default_factory=dict)

    def next_delay(self, key: str) -> float:
        """Record a failure for `key` and return how long to wait before retrying it."""
        attempt = self.failures.get(key, 0)
        self.failures[key] = attempt + 1
        return self.config.delay(attempt)

    def reset(self, key: str) -> None:
        self.failures.pop(key, None)
