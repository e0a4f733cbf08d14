"""Per-process ingestion dependencies."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Callable, MutableMapping

import httpx
from sqlalchemy.engine import Engine

from sellerpulse.db.gateway import PersistenceGateway
from sellerpulse.db.session import create_engine_from_env
from sellerpulse.ingest.ads_api import AmazonAdsClient
from sellerpulse.ingest.auth import LwaTokenProvider
from sellerpulse.ingest.models import CachedToken
from sellerpulse.ingest.sp_api import SPAPIClient
from sellerpulse.utils.rate_limit import RateLimiter


def sales_limiter_from_env() -> RateLimiter:
    return RateLimiter(
        capacity=int(os.environ.get("SALES_RATE_BURST", "5")),
        refill_rate=float(os.environ.get("SALES_RATE_PER_SECOND", "1")),
    )


def ads_limiter_from_env() -> RateLimiter:
    return RateLimiter(
        capacity=int(os.environ.get("ADS_RATE_BURST", "10")),
        refill_rate=float(os.environ.get("ADS_RATE_PER_SECOND", "2")),
    )


@dataclass(slots=True)
class IngestionServices:
    """Everything an ingestion run touches, built once and passed by reference."""

    gateway: PersistenceGateway
    sp_api: SPAPIClient
    ads: AmazonAdsClient
    sales_limiter: RateLimiter = field(default_factory=sales_limiter_from_env)
    ads_limiter: RateLimiter = field(default_factory=ads_limiter_from_env)
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def from_env(
        cls,
        *,
        engine: Engine | None = None,
        sales_limiter: RateLimiter | None = None,
        ads_limiter: RateLimiter | None = None,
    ) -> "IngestionServices":
        session = httpx.AsyncClient(timeout=30.0)
        return cls(
            gateway=PersistenceGateway(engine or create_engine_from_env()),
            sp_api=SPAPIClient.from_env(session=session),
            ads=AmazonAdsClient.from_env(session=session),
            sales_limiter=sales_limiter or sales_limiter_from_env(),
            ads_limiter=ads_limiter or ads_limiter_from_env(),
        )

    def token_providers(self) -> list[LwaTokenProvider]:
        return [self.sp_api.tokens, self.ads.tokens]

    def restore_tokens(self, store: MutableMapping[tuple, CachedToken]) -> None:
        """Seed empty token caches from a store that outlives this instance."""
        for provider in self.token_providers():
            if provider.cached is None:
                provider.cached = store.get(provider.cache_key)

    def save_tokens(self, store: MutableMapping[tuple, CachedToken]) -> None:
        for provider in self.token_providers():
            if provider.cached is not None:
                store[provider.cache_key] = provider.cached

    async def close(self) -> None:
        await self.sp_api.close()
        if self.ads.session is not self.sp_api.session:
            await self.ads.close()
