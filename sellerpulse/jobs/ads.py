"""Advertising campaigns ingestion run."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping

from dotenv import load_dotenv

from sellerpulse.ingest.exceptions import InvalidParameterError
from sellerpulse.ingest.models import CampaignRecord
from sellerpulse.ingest.normalize import dedupe_campaigns
from sellerpulse.jobs.outcome import IngestionOutcome, RunTimer, failure_details, failure_outcome, log_safely
from sellerpulse.jobs.services import IngestionServices
from sellerpulse.utils.dates import format_date, is_valid_iso_date, today_in_tz, yesterday

logger = logging.getLogger(__name__)

SOURCE = "ads-api-cron"


def summarize_campaigns(campaigns: Iterable[CampaignRecord]) -> dict[str, Any]:
    impressions = 0
    clicks = 0
    spend = Decimal("0")
    sales = Decimal("0")
    for campaign in campaigns:
        impressions += campaign.impressions
        clicks += campaign.clicks
        spend += campaign.spend
        sales += campaign.sales
    return {
        "totalImpressions": impressions,
        "totalClicks": clicks,
        "totalSpend": round(float(spend), 2),
        "totalSales": round(float(sales), 2),
        "averageCTR": round(clicks / impressions * 100, 3) if impressions else 0.0,
        "averageROAS": round(float(sales / spend), 2) if spend else 0.0,
    }


def resolve_ads_dates(params: Mapping[str, Any], today: date) -> tuple[str, str]:
    start_date = params.get("startDate") or format_date(yesterday(today))
    end_date = params.get("endDate") or format_date(today)
    for name, value in (("startDate", start_date), ("endDate", end_date)):
        if not is_valid_iso_date(value):
            raise InvalidParameterError(f"{name} must be YYYY-MM-DD, got {value!r}")
    if start_date > end_date:
        raise InvalidParameterError(f"startDate {start_date} is after endDate {end_date}")
    return start_date, end_date


async def run_ads_ingestion(
    services: IngestionServices,
    params: Mapping[str, Any] | None = None,
    *,
    source: str = "cron",
    user_agent: str | None = None,
    today: date | None = None,
) -> IngestionOutcome:
    timer = RunTimer(services.clock)
    gateway = services.gateway
    params = params or {}
    client = services.ads.with_profile(params.get("profileId"))
    campaign_type = str(params.get("campaignType") or "all")
    log_id: int | None = None
    try:
        log_id = log_safely(
            gateway,
            "ads",
            "started",
            {
                "startDate": params.get("startDate"),
                "endDate": params.get("endDate"),
                "campaignType": campaign_type,
                "profileId": client.profile_id,
                "source": source,
                "userAgent": user_agent,
            },
        )
        start_date, end_date = resolve_ads_dates(params, today or today_in_tz())
        date_range = {"startDate": start_date, "endDate": end_date, "campaignType": campaign_type}
        logger.info("Starting ads ingestion for %s to %s, campaign type %s", start_date, end_date, campaign_type)

        await services.ads_limiter.acquire()
        result = await client.get_campaigns_data(start_date, end_date)

        campaigns = result.campaigns
        if campaign_type != "all":
            campaigns = [campaign for campaign in campaigns if campaign.campaign_type == campaign_type]
        campaigns = dedupe_campaigns(campaigns)

        if not campaigns:
            log_safely(
                gateway,
                "ads",
                "completed",
                {
                    "recordsProcessed": 0,
                    "message": "No campaigns data available for date range",
                    "duration": timer.elapsed_ms,
                },
            )
            return IngestionOutcome(
                200,
                {
                    "success": True,
                    "message": "No ads data available for the specified date range",
                    "recordsProcessed": {"campaigns": 0, "total": 0},
                    "summary": summarize_campaigns([]),
                    "dateRange": date_range,
                    "profileId": client.profile_id,
                    "duration": timer.duration,
                    "logId": log_id,
                },
            )

        count = gateway.upsert_campaigns(campaigns, SOURCE)
        summary = summarize_campaigns(campaigns)
        log_safely(
            gateway,
            "ads",
            "completed",
            {
                "recordsProcessed": count,
                "campaignsProcessed": count,
                "campaignTypeFilter": campaign_type,
                "reportId": result.report_id,
                "duration": timer.elapsed_ms,
                "profileId": client.profile_id,
            },
        )
        logger.info("Ads ingestion complete: %s campaigns", count)
        return IngestionOutcome(
            200,
            {
                "success": True,
                "message": "Ads data ingestion completed successfully",
                "recordsProcessed": {"campaigns": count, "total": count},
                "summary": summary,
                "dateRange": date_range,
                "profileId": client.profile_id,
                "duration": timer.duration,
                "logId": log_id,
            },
        )
    except Exception as exc:
        logger.exception("Ads ingestion failed")
        log_safely(gateway, "ads", "failed", failure_details(exc, timer, profileId=client.profile_id))
        return failure_outcome(
            exc,
            service="Amazon Ads API",
            timer=timer,
            log_id=log_id,
            distinguish_auth=True,
            extra={"profileId": client.profile_id},
        )


async def main() -> None:
    load_dotenv()
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    services = IngestionServices.from_env()
    try:
        outcome = await run_ads_ingestion(services, source="cli")
    finally:
        await services.close()
    print(json.dumps(outcome.body, indent=2, default=str))
    if not outcome.ok:
        raise SystemExit(1)


if __name__ == "__main__":
    asyncio.run(main())
