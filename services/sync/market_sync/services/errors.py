"""Error taxonomy for provider calls and sync jobs.

Every non-2xx provider response maps to exactly one ProviderError subclass:
- AuthError: token missing/expired/revoked (one refresh-and-retry)
- RateLimitError: 429, carries the provider's retry-after
- ValidationError: malformed request, permanent
- NotFoundError: no match, permanent but not alarming
- TransientServerError: 5xx, timeouts, connection drops, retryable

PermanentJobError is raised by the sync layer when retrying a job can never help
(e.g. a required provider mapping is missing).
"""

from __future__ import annotations

from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Mapping

DEFAULT_RETRY_AFTER_SECONDS = 5.0


class ConfigurationError(RuntimeError):
    """Required configuration is missing. Fatal at startup."""


class ProviderError(RuntimeError):
    """Base class for classified provider failures."""

    retryable = False
    permanent = False

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class AuthError(ProviderError):
    pass


class RateLimitError(ProviderError):
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retry_after_seconds: float = DEFAULT_RETRY_AFTER_SECONDS,
        provider: str | None = None,
        status_code: int | None = 429,
    ):
        super().__init__(message, provider=provider, status_code=status_code)
        self.retry_after_seconds = retry_after_seconds


class ValidationError(ProviderError):
    permanent = True

    def __init__(
        self,
        message: str,
        *,
        details: Any = None,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, provider=provider, status_code=status_code)
        self.details = details


class NotFoundError(ProviderError):
    permanent = True


class TransientServerError(ProviderError):
    retryable = True


class PermanentJobError(RuntimeError):
    """Job-level failure that must not be retried."""

    MISSING_MAPPING = "MISSING_MAPPING"
    STYLE_NOT_FOUND = "STYLE_NOT_FOUND"
    PROVIDER_NOT_CONFIGURED = "PROVIDER_NOT_CONFIGURED"

    def __init__(self, kind: str, message: str):
        super().__init__(f"{kind}: {message}")
        self.kind = kind


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float:
    """Parse a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return max(0.0, delta)


def classify_status(
    status_code: int,
    *,
    body: str = "",
    headers: Mapping[str, str] | None = None,
    provider: str | None = None,
) -> ProviderError:
    """Map a non-2xx HTTP status to exactly one ProviderError."""
    snippet = body[:200] if body else ""
    message = f"{provider or 'provider'} HTTP {status_code}: {snippet}".rstrip(": ")

    if status_code in (401, 403):
        return AuthError(message, provider=provider, status_code=status_code)
    if status_code == 429:
        retry_after = parse_retry_after((headers or {}).get("retry-after"))
        return RateLimitError(
            message,
            retry_after_seconds=retry_after,
            provider=provider,
            status_code=status_code,
        )
    if status_code == 404:
        return NotFoundError(message, provider=provider, status_code=status_code)
    if status_code >= 500:
        return TransientServerError(message, provider=provider, status_code=status_code)
    # 400, 409, 422 and any other 4xx: the request itself is wrong.
    return ValidationError(message, details=snippet or None, provider=provider, status_code=status_code)
