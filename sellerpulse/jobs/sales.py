"""Sales and orders ingestion run."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import date
from typing import Any, Mapping

from dotenv import load_dotenv

from sellerpulse.jobs.outcome import (
    IngestionOutcome,
    RunTimer,
    failure_details,
    failure_outcome,
    log_safely,
    parse_flag,
)
from sellerpulse.jobs.services import IngestionServices
from sellerpulse.utils.dates import format_date, is_valid_iso_date, resolve_date_template, today_in_tz, yesterday

logger = logging.getLogger(__name__)

SOURCE = "sp-api-cron"


def resolve_sales_date(value: Any, name: str, today: date) -> str:
    fallback = format_date(yesterday(today))
    if value in (None, ""):
        return fallback
    resolved = resolve_date_template(value, today)
    if not is_valid_iso_date(resolved):
        logger.warning("Invalid %s %r received, using fallback %s", name, value, fallback)
        return fallback
    return resolved


async def run_sales_ingestion(
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
    log_id: int | None = None
    try:
        current = today or today_in_tz()
        start_date = resolve_sales_date(params.get("startDate"), "startDate", current)
        end_date = resolve_sales_date(params.get("endDate"), "endDate", current)
        granularity = str(params.get("granularity") or "Daily")
        include_orders = parse_flag(params.get("includeOrders"), default=True)
        date_range = {"startDate": start_date, "endDate": end_date, "granularity": granularity}
        logger.info("Starting sales ingestion for %s to %s", start_date, end_date)

        log_id = log_safely(
            gateway,
            "sales",
            "started",
            {**date_range, "source": source, "userAgent": user_agent},
        )

        await services.sales_limiter.acquire()
        try:
            sales = await services.sp_api.get_sales_data(start_date, end_date, granularity)
        except Exception as exc:
            logger.exception("SP-API sales data fetch failed")
            log_safely(gateway, "sales", "failed", failure_details(exc, timer, phase="sp_api_fetch"))
            return failure_outcome(exc, service="SP-API", timer=timer, log_id=log_id)

        if not sales.metrics:
            logger.info("No sales data found for %s to %s", start_date, end_date)
            log_safely(
                gateway,
                "sales",
                "completed",
                {
                    "recordsProcessed": 0,
                    "message": "No sales data available for date range",
                    "duration": timer.elapsed_ms,
                    "totalRecordsProcessed": sales.total_records_processed,
                },
            )
            return IngestionOutcome(
                200,
                {
                    "success": True,
                    "message": "No sales data available for the specified date range",
                    "recordsProcessed": {"sales": 0, "orders": 0, "total": 0},
                    "totalRecordsScanned": sales.total_records_processed,
                    "dateRange": date_range,
                    "duration": timer.duration,
                    "logId": log_id,
                },
            )

        sales_count = gateway.upsert_sales_metrics(sales.metrics, SOURCE)
        orders_count = 0
        if include_orders:
            orders_count = await _ingest_orders(services, start_date, end_date, timer)

        total = sales_count + orders_count
        log_safely(
            gateway,
            "sales",
            "completed",
            {
                "recordsProcessed": total,
                "salesRecords": sales_count,
                "orderRecords": orders_count,
                "totalRecordsScanned": sales.total_records_processed,
                "nonZeroRecords": sales.non_zero_records,
                "duration": timer.elapsed_ms,
                "rateLimitInfo": sales.rate_limit.as_dict(),
            },
        )
        logger.info("Sales ingestion complete: %s sales, %s orders", sales_count, orders_count)
        return IngestionOutcome(
            200,
            {
                "success": True,
                "message": "Sales data ingestion completed successfully",
                "recordsProcessed": {"sales": sales_count, "orders": orders_count, "total": total},
                "totalRecordsScanned": sales.total_records_processed,
                "nonZeroRecords": sales.non_zero_records,
                "dateRange": date_range,
                "duration": timer.duration,
                "logId": log_id,
                "rateLimitInfo": sales.rate_limit.as_dict(),
            },
        )
    except Exception as exc:
        logger.exception("Sales ingestion failed")
        log_safely(gateway, "sales", "failed", failure_details(exc, timer))
        return failure_outcome(exc, service="SP-API", timer=timer, log_id=log_id)


async def _ingest_orders(services: IngestionServices, start_date: str, end_date: str, timer: RunTimer) -> int:
    """Fetch and store orders; failures are reported but never fail the sales run."""
    try:
        await services.sales_limiter.acquire()
        result = await services.sp_api.get_orders_data(start_date, end_date)
        count = services.gateway.upsert_orders(result.orders, SOURCE) if result.orders else 0
    except Exception as exc:
        logger.warning("Failed to fetch/process orders data (non-critical): %s", exc)
        log_safely(services.gateway, "orders", "failed", failure_details(exc, timer))
        return 0
    log_safely(
        services.gateway,
        "orders",
        "completed",
        {"recordsProcessed": count, "pages": result.pages, "startDate": start_date, "endDate": end_date},
    )
    return count


async def main() -> None:
    load_dotenv()
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    services = IngestionServices.from_env()
    try:
        outcome = await run_sales_ingestion(services, source="cli")
    finally:
        await services.close()
    print(json.dumps(outcome.body, indent=2, default=str))
    if not outcome.ok:
        raise SystemExit(1)


if __name__ == "__main__":
    asyncio.run(main())
