"""
Retry decisions for a chunk that failed against one provider tier.

``RetryPolicy.next`` has no side effects: the orchestrator owns the attempt
counters and applies whatever decision comes back.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True, slots=True)
class RetryAfter:
    delay: float


@dataclass(frozen=True, slots=True)
class ShrinkAndRetry:
    pass


@dataclass(frozen=True, slots=True)
class Escalate:
    reason: str


Decision = Union[RetryAfter, ShrinkAndRetry, Escalate]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def with_max_retries(self, max_retries: int) -> "RetryPolicy":
        return RetryPolicy(
            max_retries=max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            jitter=self.jitter,
            rng=self.rng,
        )

    def backoff(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * (self.multiplier ** max(attempt - 1, 0)))
        if self.jitter and delay:
            delay += delay * self.rng.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    def next(
        self,
        attempt: int,
        error_class: ErrorClass,
        *,
        shrunk: bool = False,
        chunk_size: int = 1,
        retry_after: float | None = None,
    ) -> Decision:
        """Decide what to do after the ``attempt``-th failure (1-based) of a chunk."""
        if error_class is ErrorClass.PERMANENT:
            return Escalate("permanent provider error")
        if error_class is ErrorClass.RATE_LIMITED:
            return Escalate("rate limit exhausted")
        if attempt <= self.max_retries and not shrunk:
            delay = self.backoff(attempt)
            if retry_after is not None:
                delay = max(delay, min(retry_after, self.max_delay))
            return RetryAfter(delay)
        if not shrunk and chunk_size > 1:
            return ShrinkAndRetry()
        return Escalate(f"retries exhausted after {attempt} attempts")
