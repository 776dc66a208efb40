"""
Retry backoff for transient stage failures.

The delay before attempt ``n + 1`` is ``base * 2 ** (n - 1)`` scaled by a
random factor in ``[1, 1 + jitter]`` and capped. With ``jitter <= 1`` the
sequence is non-decreasing: the smallest next delay equals the largest
previous one.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable

from django.conf import settings


@dataclass
class BackoffPolicy:
    base: float = 2.0
    cap: float = 60.0
    jitter: float = 0.5
    max_attempts: int = 4
    rand: Callable[[], float] = random.random

    def __post_init__(self):
        if self.base <= 0 or self.cap <= 0:
            raise ValueError("backoff base and cap must be positive")
        if not 0 <= self.jitter <= 1:
            raise ValueError("backoff jitter must be within [0, 1]")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            base=settings.ORCHESTRATION_BACKOFF_BASE_SECONDS,
            cap=settings.ORCHESTRATION_BACKOFF_CAP_SECONDS,
            jitter=settings.ORCHESTRATION_BACKOFF_JITTER,
            max_attempts=settings.ORCHESTRATION_MAX_ATTEMPTS_PER_STAGE,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        raw = self.base * (2 ** (max(attempt, 1) - 1))
        return min(self.cap, raw * (1 + self.jitter * self.rand()))

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts
