"""Amazon Ads API client: campaigns and campaign performance reports."""

from __future__ import annotations

import asyncio
import copy
import gzip
import json
import logging
import os
import time
from typing import Any, Awaitable, Callable, Mapping

import httpx

from sellerpulse.ingest import get_region
from sellerpulse.ingest.auth import LwaTokenProvider
from sellerpulse.ingest.exceptions import (
    CredentialsMissingError,
    InvalidParameterError,
    InvalidUpstreamResponseError,
    ReportTimeoutError,
    UpstreamError,
)
from sellerpulse.ingest.models import ApiResponse, CampaignsResult, RateLimitInfo, Region
from sellerpulse.ingest.normalize import dedupe_campaigns, join_campaign_metrics
from sellerpulse.ingest.sp_api import decode_json, raise_for_upstream
from sellerpulse.utils.dates import parse_iso_date
from sellerpulse.utils.retry import poll_until, retry_async

logger = logging.getLogger(__name__)

CAMPAIGNS_LIST_PATH = "/sp/campaigns/list"
REPORTS_PATH = "/reporting/reports"
CAMPAIGNS_MEDIA_TYPE = "application/vnd.spCampaign.v3+json"
REPORT_MEDIA_TYPE = "application/vnd.createasyncreportrequest.v3+json"
REPORT_COLUMNS = ["campaignId", "impressions", "clicks", "cost", "sales7d", "purchases7d"]
ADS_CREDENTIALS = ("ADS_CLIENT_ID", "ADS_CLIENT_SECRET", "ADS_REFRESH_TOKEN")
DEFAULT_REPORT_ATTEMPTS = 8


class AmazonAdsClient:
    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        refresh_token: str | None,
        profile_id: str | None,
        region: Region,
        session: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        report_max_attempts: int = DEFAULT_REPORT_ATTEMPTS,
        report_initial_delay: float = 2.0,
        report_max_delay: float = 60.0,
    ) -> None:
        self.client_id = client_id
        self.profile_id = profile_id
        self.region = region
        self.session = session or httpx.AsyncClient(timeout=30.0)
        self.report_max_attempts = report_max_attempts
        self.report_initial_delay = report_initial_delay
        self.report_max_delay = report_max_delay
        self._sleep = sleeper
        self.tokens = LwaTokenProvider(
            service="Ads API",
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            token_url=region.lwa,
            session=self.session,
            credential_names=ADS_CREDENTIALS,
            clock=clock,
        )

    @classmethod
    def from_env(cls, *, session: httpx.AsyncClient | None = None) -> "AmazonAdsClient":
        return cls(
            client_id=os.environ.get("ADS_CLIENT_ID"),
            client_secret=os.environ.get("ADS_CLIENT_SECRET"),
            refresh_token=os.environ.get("ADS_REFRESH_TOKEN"),
            profile_id=os.environ.get("ADS_PROFILE_ID"),
            region=get_region(os.environ.get("ADS_API_REGION", "na")),
            session=session,
            report_max_attempts=int(os.environ.get("ADS_REPORT_MAX_ATTEMPTS", DEFAULT_REPORT_ATTEMPTS)),
        )

    async def close(self) -> None:
        await self.session.aclose()

    def with_profile(self, profile_id: str | None) -> "AmazonAdsClient":
        """Client for another advertising profile sharing session and token cache."""
        if not profile_id or profile_id == self.profile_id:
            return self
        clone = copy.copy(self)
        clone.profile_id = str(profile_id)
        return clone

    def ensure_configured(self) -> None:
        missing = self.tokens.missing_credentials()
        if not self.profile_id:
            missing.append("ADS_PROFILE_ID")
        if missing:
            raise CredentialsMissingError("Ads API", missing)

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> ApiResponse:
        self.ensure_configured()
        access_token = await self.tokens.get_access_token()
        request_headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Amazon-Advertising-API-ClientId": self.client_id or "",
            "Amazon-Advertising-API-Scope": str(self.profile_id),
            **(headers or {}),
        }
        response = await retry_async(self.session.request)(
            method,
            f"{self.region.ads_api}{endpoint}",
            headers=request_headers,
            params=params,
            content=json.dumps(body) if body is not None else None,
        )
        rate_limit = RateLimitInfo.from_headers(response.headers)
        raise_for_upstream(response, rate_limit, "Ads API")
        return ApiResponse(data=decode_json(response, "Ads API"), rate_limit=rate_limit)

    async def list_campaigns(self, *, max_pages: int = 20) -> list[dict[str, Any]]:
        headers = {"Content-Type": CAMPAIGNS_MEDIA_TYPE, "Accept": CAMPAIGNS_MEDIA_TYPE}
        body: dict[str, Any] = {"maxResults": 100}
        campaigns: list[dict[str, Any]] = []
        for _ in range(max_pages):
            response = await self.request(CAMPAIGNS_LIST_PATH, method="POST", headers=headers, body=body)
            data = response.data if isinstance(response.data, dict) else {}
            page = data.get("campaigns")
            if not isinstance(page, list):
                raise InvalidUpstreamResponseError("Ads API returned invalid campaigns structure")
            campaigns.extend(page)
            next_token = data.get("nextToken")
            if not next_token:
                break
            body = {"maxResults": 100, "nextToken": next_token}
        return campaigns

    async def request_campaign_report(self, start: str, end: str) -> str:
        body = {
            "name": f"sp campaigns {start} - {end}",
            "startDate": start,
            "endDate": end,
            "configuration": {
                "adProduct": "SPONSORED_PRODUCTS",
                "groupBy": ["campaign"],
                "columns": REPORT_COLUMNS,
                "reportTypeId": "spCampaigns",
                "timeUnit": "SUMMARY",
                "format": "GZIP_JSON",
            },
        }
        response = await self.request(
            REPORTS_PATH, method="POST", headers={"Content-Type": REPORT_MEDIA_TYPE}, body=body
        )
        report_id = response.data.get("reportId") if isinstance(response.data, dict) else None
        if not report_id:
            raise InvalidUpstreamResponseError("Ads API report request returned no reportId")
        logger.info("Ads API: requested campaign report %s", report_id)
        return str(report_id)

    async def report_status(self, report_id: str) -> dict[str, Any]:
        response = await self.request(f"{REPORTS_PATH}/{report_id}")
        if not isinstance(response.data, dict):
            raise InvalidUpstreamResponseError("Ads API returned invalid report status")
        return response.data

    async def wait_for_report(self, report_id: str) -> str:
        """Poll the report until it completes and return its download url."""

        async def probe() -> str | None:
            status = await self.report_status(report_id)
            state = str(status.get("status", "")).upper()
            if state == "COMPLETED":
                url = status.get("url")
                if not url:
                    raise InvalidUpstreamResponseError(f"Report {report_id} completed without url")
                return url
            if state in {"FAILURE", "FAILED", "CANCELLED"}:
                raise UpstreamError(200, json.dumps(status))
            return None

        url = await poll_until(
            probe,
            max_attempts=self.report_max_attempts,
            initial_delay=self.report_initial_delay,
            max_delay=self.report_max_delay,
            sleeper=self._sleep,
        )
        if url is None:
            raise ReportTimeoutError(report_id, self.report_max_attempts)
        return url

    async def download_report(self, url: str) -> list[dict[str, Any]]:
        response = await retry_async(self.session.get)(url)
        raise_for_upstream(response, RateLimitInfo.from_headers(response.headers), "Ads API")
        content = response.content
        if content[:2] == b"\x1f\x8b":
            content = gzip.decompress(content)
        try:
            rows = json.loads(content or b"[]")
        except ValueError as exc:
            raise InvalidUpstreamResponseError("Ads API report is not valid JSON") from exc
        if not isinstance(rows, list):
            raise InvalidUpstreamResponseError("Ads API report is not a list of rows")
        return rows

    async def get_campaigns_data(self, start: str, end: str) -> CampaignsResult:
        logger.info("Ads API: fetching campaigns %s to %s for profile %s", start, end, self.profile_id)
        self.ensure_configured()
        try:
            parse_iso_date(start)
            parse_iso_date(end)
        except ValueError as exc:
            raise InvalidParameterError(str(exc)) from exc
        campaigns = await self.list_campaigns()
        if not campaigns:
            return CampaignsResult(campaigns=[], report_id=None)
        report_id = await self.request_campaign_report(start, end)
        url = await self.wait_for_report(report_id)
        rows = await self.download_report(url)
        records = join_campaign_metrics(campaigns, rows, account_id=str(self.profile_id))
        logger.info("Ads API: %s campaigns, %s report rows", len(records), len(rows))
        return CampaignsResult(campaigns=dedupe_campaigns(records), report_id=report_id)
