"""Login with Amazon (LWA) refresh-token exchange and access token caching."""

from __future__ import annotations

import logging
import time
from typing import Callable

import httpx

from sellerpulse.ingest.exceptions import (
    CredentialsMissingError,
    InvalidUpstreamResponseError,
    RateLimitedError,
    TokenExchangeError,
    UpstreamError,
)
from sellerpulse.ingest.models import CachedToken
from sellerpulse.utils.retry import parse_retry_after, retry_async

logger = logging.getLogger(__name__)

TOKEN_SAFETY_MARGIN = 60
DEFAULT_EXPIRES_IN = 3600
# Statuses meaning the credentials themselves were refused.
TOKEN_REJECTED_STATUSES = frozenset({400, 401, 403})


class LwaTokenProvider:
    """Exchanges a refresh token for an access token and caches the result.

    One provider serves one seller account; the cache holds a single token.
    """

    def __init__(
        self,
        *,
        service: str,
        client_id: str | None,
        client_secret: str | None,
        refresh_token: str | None,
        token_url: str,
        session: httpx.AsyncClient,
        credential_names: tuple[str, str, str],
        clock: Callable[[], float] = time.time,
        safety_margin: int = TOKEN_SAFETY_MARGIN,
    ) -> None:
        self.service = service
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.token_url = token_url
        self.session = session
        self.credential_names = credential_names
        self.safety_margin = safety_margin
        self._clock = clock
        self._cached: CachedToken | None = None

    @property
    def cached(self) -> CachedToken | None:
        return self._cached

    @cached.setter
    def cached(self, token: CachedToken | None) -> None:
        self._cached = token

    @property
    def cache_key(self) -> tuple[str, str | None, str | None]:
        return (self.service, self.client_id, self.refresh_token)

    def missing_credentials(self) -> list[str]:
        values = (self.client_id, self.client_secret, self.refresh_token)
        return [name for name, value in zip(self.credential_names, values) if not value]

    def ensure_configured(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise CredentialsMissingError(self.service, missing)

    def invalidate(self) -> None:
        self._cached = None

    async def get_access_token(self) -> str:
        self.ensure_configured()
        now = self._clock()
        if self._cached is not None and self._cached.is_valid(now):
            return self._cached.value

        logger.info("%s: exchanging refresh token for access token", self.service)
        response = await retry_async(self.session.post)(
            self.token_url,
            data={
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if response.status_code == 429:
            raise RateLimitedError(parse_retry_after(response.headers.get("Retry-After")))
        if response.status_code in TOKEN_REJECTED_STATUSES:
            raise TokenExchangeError(response.status_code, response.text)
        if not response.is_success:
            logger.error("%s: token endpoint returned %s", self.service, response.status_code)
            raise UpstreamError(response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidUpstreamResponseError(f"{self.service}: token response is not JSON") from exc
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise InvalidUpstreamResponseError(f"{self.service}: token response has no access_token")
        expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        self._cached = CachedToken(value=token, expires_at=now + expires_in - self.safety_margin)
        return token
