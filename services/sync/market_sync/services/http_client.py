"""Resilient HTTP client shared by every provider adapter.

Handles:
- Access-token lifecycle (proactive refresh inside a safety margin)
- One forced refresh + retry on AuthError, then surface it
- 429: sleep for the provider's Retry-After (capped), then retry
- 5xx / timeouts / connection errors: exponential backoff, then retry
  (token-endpoint outages included)
- ValidationError / NotFoundError: never retried

Sleep and clock are injectable so retry behaviour is testable without waiting.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
import math
import time
from typing import Any

import httpx

from market_sync.services.backoff import BackoffPolicy
from market_sync.services.errors import (
    AuthError,
    ProviderError,
    RateLimitError,
    TransientServerError,
    classify_status,
)

logger = logging.getLogger("uvicorn.error")

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


def mask_secret(value: str | None) -> str:
    if not value:
        return "<empty>"
    return f"{value[:8]}..."


@dataclass
class AccessToken:
    value: str
    expires_at: float = math.inf

    def expires_within(self, margin_seconds: float, now: float) -> bool:
        return self.expires_at - margin_seconds <= now


class TokenSource(ABC):
    """Produces bearer tokens for a provider."""

    @abstractmethod
    async def fetch(self) -> AccessToken: ...

    async def aclose(self) -> None:
        return None


class StaticTokenSource(TokenSource):
    """Long-lived token (e.g. a personal access token). Refresh returns the same value."""

    def __init__(self, token: str):
        self._token = token

    async def fetch(self) -> AccessToken:
        if not self._token:
            raise AuthError("No access token configured")
        return AccessToken(value=self._token)


class OAuthTokenSource(TokenSource):
    """OAuth2 token endpoint (client_credentials or refresh_token grant).

    If the token endpoint rotates the refresh token, the new one is kept for the
    next refresh.
    """

    def __init__(
        self,
        *,
        token_url: str,
        form: dict[str, str],
        provider: str,
        basic_auth: tuple[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: ClockFn = time.time,
    ):
        self.token_url = token_url
        self.provider = provider
        self._form = dict(form)
        self._basic_auth = basic_auth
        self._clock = clock
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def fetch(self) -> AccessToken:
        logger.info(f"[{self.provider}] requesting access token grant={self._form.get('grant_type')}")
        try:
            resp = await self._http.post(
                self.token_url,
                data=self._form,
                auth=self._basic_auth,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise TransientServerError(f"{self.provider} token request timed out", provider=self.provider) from e
        except httpx.TransportError as e:
            raise TransientServerError(f"{self.provider} token request failed: {e}", provider=self.provider) from e

        if resp.status_code >= 400:
            err = classify_status(resp.status_code, body=resp.text, headers=resp.headers, provider=self.provider)
            if resp.status_code in (400, 401, 403):
                # Bad/revoked credentials: refreshing again will not help.
                raise AuthError(str(err), provider=self.provider, status_code=resp.status_code)
            raise err

        data = resp.json()
        token = data.get("access_token")
        if not token:
            raise AuthError(f"{self.provider} token response missing access_token", provider=self.provider)
        expires_in = float(data.get("expires_in") or 7200)
        if data.get("refresh_token") and "refresh_token" in self._form:
            self._form["refresh_token"] = str(data["refresh_token"])
        logger.info(f"[{self.provider}] access token obtained token={mask_secret(token)} expires_in={expires_in:.0f}s")
        return AccessToken(value=str(token), expires_at=self._clock() + expires_in)

    async def aclose(self) -> None:
        await self._http.aclose()


class ProviderHttpClient:
    """One provider's outbound HTTP, wrapped with auth and retry policy."""

    def __init__(
        self,
        provider: str,
        base_url: str,
        *,
        token_source: TokenSource | None = None,
        default_headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        backoff: BackoffPolicy | None = None,
        rate_limit_max_wait: float = 60.0,
        token_refresh_margin: float = 300.0,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.time,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.token_source = token_source
        self.backoff = backoff or BackoffPolicy(base_seconds=1.0, max_seconds=16.0, max_attempts=3)
        self.rate_limit_max_wait = rate_limit_max_wait
        self.token_refresh_margin = token_refresh_margin
        self._sleep = sleep
        self._clock = clock
        self._token: AccessToken | None = None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Accept": "application/json", **(default_headers or {})},
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()
        if self.token_source is not None:
            await self.token_source.aclose()

    # ============================================================
    # Token lifecycle
    # ============================================================

    async def _auth_headers(self) -> dict[str, str]:
        if self.token_source is None:
            return {}
        now = self._clock()
        if self._token is None or self._token.expires_within(self.token_refresh_margin, now):
            if self._token is not None:
                logger.info(f"[{self.provider}] access token expiring soon, refreshing")
            self._token = await self.token_source.fetch()
        return {"Authorization": f"Bearer {self._token.value}"}

    # ============================================================
    # Requests
    # ============================================================

    async def _attempt(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response | ProviderError:
        """One try: token (refreshed if due) plus the request.

        Token-endpoint outages and transport failures are returned as errors so
        the caller applies its retry policy to them. Rejected credentials raise.
        """
        try:
            auth = await self._auth_headers()
        except AuthError:
            raise
        except ProviderError as e:
            logger.warning(f"[{self.provider}] token refresh failed: {e}")
            return e

        try:
            return await self._http.request(
                method,
                path,
                params=params,
                json=json,
                headers={**auth, **(headers or {})},
            )
        except httpx.TimeoutException as e:
            err: ProviderError = TransientServerError(
                f"{self.provider} {method} {path} timed out", provider=self.provider
            )
            err.__cause__ = e
        except httpx.TransportError as e:
            err = TransientServerError(f"{self.provider} {method} {path} failed: {e}", provider=self.provider)
            err.__cause__ = e
        return err

    async def get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return await self.request_json("GET", path, params=params)

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform a request and return the decoded JSON body (None for empty bodies).

        Raises a ProviderError subclass once the retry policy gives up.
        """
        refreshed = False
        retries = 0

        while True:
            outcome = await self._attempt(method, path, params=params, json=json, headers=headers)
            if isinstance(outcome, httpx.Response):
                if outcome.status_code < 400:
                    if not outcome.content:
                        return None
                    return outcome.json()
                err = classify_status(
                    outcome.status_code, body=outcome.text, headers=outcome.headers, provider=self.provider
                )
            else:
                err = outcome

            if isinstance(err, AuthError):
                if refreshed or self.token_source is None:
                    raise err
                refreshed = True
                logger.warning(f"[{self.provider}] auth rejected, refreshing token and retrying once")
                # next attempt fetches a new token
                self._token = None
                continue

            if isinstance(err, RateLimitError):
                if retries >= self.backoff.max_attempts:
                    raise err
                wait = min(err.retry_after_seconds, self.rate_limit_max_wait)
                logger.warning(
                    f"[{self.provider}] rate limited on {path}, sleeping {wait:.1f}s "
                    f"(retry {retries + 1}/{self.backoff.max_attempts})"
                )
                await self._sleep(wait)
                retries += 1
                continue

            if err.retryable:
                if retries >= self.backoff.max_attempts:
                    raise err
                wait = self.backoff.delay_for(retries)
                logger.warning(
                    f"[{self.provider}] {err} - retrying in {wait:.1f}s "
                    f"(retry {retries + 1}/{self.backoff.max_attempts})"
                )
                await self._sleep(wait)
                retries += 1
                continue

            raise err
