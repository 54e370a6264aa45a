"""Exponential backoff policy shared by the HTTP client and job retries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class BackoffPolicy:
    """delay(n) = base * 2**n, capped at max_seconds.

    `n` is the zero-based retry index: the first retry waits `base_seconds`.
    """

    base_seconds: float
    max_seconds: float
    max_attempts: int

    def delay_for(self, retry_index: int) -> float:
        if retry_index < 0:
            retry_index = 0
        # Avoid float overflow for silly indexes; the cap wins long before that.
        exponent = min(retry_index, 62)
        return min(self.base_seconds * (2**exponent), self.max_seconds)

    def can_retry(self, attempts_made: int, max_attempts: int | None = None) -> bool:
        limit = self.max_attempts if max_attempts is None else max_attempts
        return attempts_made < limit

    def next_retry_at(
        self,
        attempts_made: int,
        now: datetime,
        *,
        max_attempts: int | None = None,
    ) -> datetime | None:
        """When a job that has used `attempts_made` attempts may run again, or None if exhausted."""
        if not self.can_retry(attempts_made, max_attempts):
            return None
        return now + timedelta(seconds=self.delay_for(attempts_made - 1))


def http_backoff(settings) -> BackoffPolicy:
    return BackoffPolicy(
        base_seconds=settings.http_backoff_base_seconds,
        max_seconds=settings.http_backoff_max_seconds,
        max_attempts=settings.http_max_retries,
    )


def job_backoff(settings) -> BackoffPolicy:
    return BackoffPolicy(
        base_seconds=settings.job_backoff_base_seconds,
        max_seconds=settings.job_backoff_max_seconds,
        max_attempts=settings.job_max_attempts,
    )
