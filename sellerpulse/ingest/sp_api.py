"""Amazon Selling Partner API client."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import time
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import urlparse

import httpx

from sellerpulse.ingest import get_region
from sellerpulse.ingest.auth import LwaTokenProvider
from sellerpulse.ingest.exceptions import (
    InvalidParameterError,
    InvalidUpstreamResponseError,
    RateLimitedError,
    UpstreamError,
)
from sellerpulse.ingest.models import ApiResponse, OrdersResult, RateLimitInfo, Region, SalesResult
from sellerpulse.ingest.normalize import (
    dedupe_orders,
    drop_zero_volume,
    group_line_items,
    map_granularity,
    order_from_payload,
)
from sellerpulse.utils.dates import amz_timestamp, interval_bounds, latest_created_before
from sellerpulse.utils.retry import parse_retry_after, retry_async

logger = logging.getLogger(__name__)

DEFAULT_MARKETPLACE_ID = "ATVPDKIKX0DER"
DEFAULT_GRANULARITY_TZ = "America/New_York"
ORDER_METRICS_PATH = "/sales/v1/orderMetrics"
ORDERS_PATH = "/orders/v0/orders"
LWA_CREDENTIALS = ("LWA_CLIENT_ID", "LWA_CLIENT_SECRET", "LWA_REFRESH_TOKEN")


def decode_json(response: httpx.Response, service: str) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        raise InvalidUpstreamResponseError(f"{service}: response body is not valid JSON") from exc


def raise_for_upstream(response: httpx.Response, rate_limit: RateLimitInfo, service: str) -> None:
    if response.is_success:
        return
    logger.error("%s error response: %s", service, response.status_code)
    if response.status_code == 429:
        raise RateLimitedError(parse_retry_after(response.headers.get("Retry-After")), rate_limit)
    raise UpstreamError(response.status_code, response.text, rate_limit)


class SPAPIClient:
    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        refresh_token: str | None,
        region: Region,
        marketplace_id: str = DEFAULT_MARKETPLACE_ID,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        granularity_tz: str = DEFAULT_GRANULARITY_TZ,
        session: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.region = region
        self.marketplace_id = marketplace_id
        self.aws_access_key_id = aws_access_key_id
        self.aws_secret_access_key = aws_secret_access_key
        self.granularity_tz = granularity_tz
        self.session = session or httpx.AsyncClient(timeout=30.0)
        self.tokens = LwaTokenProvider(
            service="SP-API",
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            token_url=region.lwa,
            session=self.session,
            credential_names=LWA_CREDENTIALS,
            clock=clock,
        )

    @classmethod
    def from_env(cls, *, session: httpx.AsyncClient | None = None) -> "SPAPIClient":
        return cls(
            client_id=os.environ.get("LWA_CLIENT_ID"),
            client_secret=os.environ.get("LWA_CLIENT_SECRET"),
            refresh_token=os.environ.get("LWA_REFRESH_TOKEN"),
            region=get_region(os.environ.get("SP_API_REGION", "na")),
            marketplace_id=os.environ.get("SP_API_MARKETPLACE_ID", DEFAULT_MARKETPLACE_ID),
            aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
            granularity_tz=os.environ.get("SP_API_GRANULARITY_TZ", DEFAULT_GRANULARITY_TZ),
            session=session,
        )

    async def close(self) -> None:
        await self.session.aclose()

    async def get_access_token(self) -> str:
        return await self.tokens.get_access_token()

    def signature_header(self, method: str, path: str, timestamp: str) -> str:
        """Authorization header in AWS4-HMAC-SHA256 shape.

        Only method, path and timestamp are signed; this is not a SigV4
        canonical request.
        """
        day = timestamp[:8]
        scope = f"{day}/us-east-1/execute-api/aws4_request"
        secret = (self.aws_secret_access_key or "").encode()
        message = f"{method.upper()}\n{path}\n{timestamp}".encode()
        signature = hmac.new(secret, message, hashlib.sha256).hexdigest()
        return (
            f"AWS4-HMAC-SHA256 Credential={self.aws_access_key_id}/{scope}, "
            f"SignedHeaders=host;x-amz-date, Signature={signature}"
        )

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> ApiResponse:
        access_token = await self.get_access_token()
        timestamp = amz_timestamp()
        request_headers = {
            "x-amz-access-token": access_token,
            "x-amz-date": timestamp,
            "Content-Type": "application/json",
            **(headers or {}),
        }
        if self.aws_access_key_id:
            request_headers["Authorization"] = self.signature_header(
                method, urlparse(endpoint).path, timestamp
            )
        response = await retry_async(self.session.request)(
            method,
            f"{self.region.sp_api}{endpoint}",
            headers=request_headers,
            params=params,
            json=body,
        )
        rate_limit = RateLimitInfo.from_headers(response.headers)
        raise_for_upstream(response, rate_limit, "SP-API")
        return ApiResponse(data=decode_json(response, "SP-API"), rate_limit=rate_limit)

    async def get_sales_data(self, start: str, end: str, granularity: str = "Daily") -> SalesResult:
        logger.info("SP-API: fetching sales data %s to %s (%s)", start, end, granularity)
        self.tokens.ensure_configured()
        try:
            start_iso, end_iso = interval_bounds(start, end)
        except ValueError as exc:
            raise InvalidParameterError(str(exc)) from exc
        upstream_granularity = map_granularity(granularity)
        params = {
            "marketplaceIds": self.marketplace_id,
            "interval": f"{start_iso}--{end_iso}",
            "granularity": upstream_granularity,
        }
        if upstream_granularity in {"Hour", "Day"}:
            params["granularityTimeZone"] = self.granularity_tz

        response = await self.request(ORDER_METRICS_PATH, params=params)
        payload = response.data.get("payload") if isinstance(response.data, dict) else None
        if not isinstance(payload, list):
            raise InvalidUpstreamResponseError("SP-API returned invalid response structure")

        grouped = group_line_items(
            payload,
            marketplace_id=self.marketplace_id,
            granularity=upstream_granularity,
            fallback_date=start,
        )
        metrics = drop_zero_volume(grouped)
        logger.info(
            "SP-API: %s line items, %s dates, %s non-zero",
            len(payload),
            len(grouped),
            len(metrics),
        )
        return SalesResult(
            metrics=metrics,
            rate_limit=response.rate_limit,
            total_records_processed=len(payload),
            non_zero_records=len(metrics),
        )

    async def get_orders_data(
        self,
        start: str,
        end: str,
        marketplace_ids: Sequence[str] | None = None,
        *,
        max_pages: int = 10,
        now: datetime | None = None,
    ) -> OrdersResult:
        logger.info("SP-API: fetching orders %s to %s", start, end)
        self.tokens.ensure_configured()
        try:
            created_after, created_before = interval_bounds(start, end)
        except ValueError as exc:
            raise InvalidParameterError(str(exc)) from exc
        created_before = latest_created_before(created_before, now)
        if created_before <= created_after:
            logger.info("SP-API: no orders window before %s yet", created_before)
            return OrdersResult(orders=[], rate_limit=RateLimitInfo(), pages=0)
        marketplaces = list(marketplace_ids or [self.marketplace_id])
        params: dict[str, Any] = {
            "MarketplaceIds": ",".join(marketplaces),
            "CreatedAfter": created_after,
            "CreatedBefore": created_before,
        }
        orders = []
        rate_limit = RateLimitInfo()
        pages = 0
        while pages < max_pages:
            response = await self.request(ORDERS_PATH, params=params)
            rate_limit = response.rate_limit
            pages += 1
            payload = response.data.get("payload") if isinstance(response.data, dict) else None
            if not isinstance(payload, dict) or not isinstance(payload.get("Orders", []), list):
                raise InvalidUpstreamResponseError("SP-API returned invalid orders structure")
            for item in payload.get("Orders", []):
                record = order_from_payload(item, marketplace_id=marketplaces[0])
                if record is not None:
                    orders.append(record)
            next_token = payload.get("NextToken")
            if not next_token:
                break
            params = {"MarketplaceIds": params["MarketplaceIds"], "NextToken": next_token}
        else:
            logger.warning("SP-API: orders truncated after %s pages", max_pages)
        return OrdersResult(orders=dedupe_orders(orders), rate_limit=rate_limit, pages=pages)
