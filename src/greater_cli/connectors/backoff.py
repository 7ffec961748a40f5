"""
Exponential backoff for remote fetches.

Raw file hosts answer transient trouble with 5xx or 429. Those are retried
with an exponentially growing delay: 1s, 2s, 4s, ... capped at max_delay_ms.
Jitter is optional and can be seeded for deterministic tests.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass
class BackoffConfig:
    """Configuration for exponential backoff."""

    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    multiplier: float = 2.0
    jitter_factor: float = 0.0  # 0.2 = ±20% jitter
    max_attempts: int = 3

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")
        if not 0.0 <= self.jitter_factor < 1.0:
            raise ValueError(f"jitter_factor must be in [0, 1), got {self.jitter_factor}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")


@dataclass
class BackoffState:
    """Mutable state for backoff tracking."""

    attempt: int = 0

    def record_error(self) -> None:
        """Record a failed attempt."""
        self.attempt += 1

    def exhausted(self, config: BackoffConfig) -> bool:
        return self.attempt >= config.max_attempts


def compute_backoff_delay(
    config: BackoffConfig,
    state: BackoffState,
    retry_after_ms: int | None = None,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Compute the delay before the next attempt.

    Args:
        config: Backoff configuration.
        state: Current backoff state (attempt = failures so far).
        retry_after_ms: Server-provided delay (Retry-After header), honoured as a floor.
        rng: Optional seeded Random instance for deterministic jitter.

    Returns:
        Delay in milliseconds. 0 before the first failure.
    """
    if state.attempt == 0:
        return 0

    delay = config.base_delay_ms * (config.multiplier ** (state.attempt - 1))

    if config.jitter_factor > 0:
        low = 1.0 - config.jitter_factor
        high = 1.0 + config.jitter_factor
        delay *= rng.uniform(low, high) if rng is not None else random.uniform(low, high)

    delay = min(delay, config.max_delay_ms)

    if retry_after_ms is not None and retry_after_ms > 0:
        delay = max(delay, retry_after_ms)

    return int(delay)
