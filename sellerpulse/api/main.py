"""FastAPI application exposing the ingestion triggers and read endpoints."""

from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Any

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from sellerpulse.api.auth import require_cron_secret
from sellerpulse.jobs.ads import run_ads_ingestion
from sellerpulse.jobs.outcome import IngestionOutcome
from sellerpulse.jobs.sales import run_sales_ingestion
from sellerpulse.jobs.services import IngestionServices
from sellerpulse.utils.dates import today_in_tz

logger = logging.getLogger(__name__)

MARKETPLACE_IDS = {"US": "ATVPDKIKX0DER", "CA": "A2EUQ1WTGCTBG2", "MX": "A1AM78C64UM0Y8"}
SUMMARY_DEFAULT_DAYS = 30


@asynccontextmanager
async def lifespan(app: FastAPI):
    load_dotenv()
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    if getattr(app.state, "services", None) is None:
        app.state.services = IngestionServices.from_env()
    try:
        yield
    finally:
        await app.state.services.close()


app = FastAPI(title="SellerPulse Ingestion API", lifespan=lifespan)


class SalesIngestParams(BaseModel):
    """Fields are left untyped: the run falls back or rejects bad values itself."""

    model_config = ConfigDict(extra="ignore")

    startDate: Any = None
    endDate: Any = None
    granularity: Any = None
    includeOrders: Any = None


class AdsIngestParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    startDate: Any = None
    endDate: Any = None
    campaignType: Any = None
    profileId: Any = None


class IngestionLog(BaseModel):
    id: int
    type: str
    status: str
    details: dict[str, Any]
    created_at: Any


class SummaryMetrics(BaseModel):
    revenue: float
    orders: int
    unitsSold: int
    adSpend: float


class SalesAdSpendPoint(BaseModel):
    date: date
    sales: float
    adSpend: float


class SalesSummary(BaseModel):
    marketplaceId: str
    startDate: date
    endDate: date
    metrics: SummaryMetrics
    salesAdSpendData: list[SalesAdSpendPoint]


def get_services(request: Request) -> IngestionServices:
    return request.app.state.services


async def request_params(request: Request) -> dict[str, Any]:
    if request.method == "POST":
        body = await request.body()
        if not body:
            return {}
        try:
            data = json.loads(body)
        except ValueError:
            logger.warning("Ignoring non-JSON request body")
            return {}
        return data if isinstance(data, dict) else {}
    return dict(request.query_params)


def render(outcome: IngestionOutcome) -> JSONResponse:
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.api_route(
    "/api/cron/ingest-sales",
    methods=["GET", "POST"],
    dependencies=[Depends(require_cron_secret)],
)
async def ingest_sales(request: Request, services: IngestionServices = Depends(get_services)) -> JSONResponse:
    params = SalesIngestParams.model_validate(await request_params(request))
    outcome = await run_sales_ingestion(
        services,
        params.model_dump(exclude_none=True),
        user_agent=request.headers.get("user-agent"),
    )
    return render(outcome)


@app.api_route(
    "/api/cron/ingest-ads",
    methods=["GET", "POST"],
    dependencies=[Depends(require_cron_secret)],
)
async def ingest_ads(request: Request, services: IngestionServices = Depends(get_services)) -> JSONResponse:
    params = AdsIngestParams.model_validate(await request_params(request))
    outcome = await run_ads_ingestion(
        services,
        params.model_dump(exclude_none=True),
        user_agent=request.headers.get("user-agent"),
    )
    return render(outcome)


@app.get(
    "/api/ingestion/logs",
    response_model=list[IngestionLog],
    dependencies=[Depends(require_cron_secret)],
)
async def ingestion_logs(
    limit: int = Query(20, ge=1, le=500),
    type: str | None = Query(None, pattern="^(sales|ads|orders)$"),
    services: IngestionServices = Depends(get_services),
) -> list[dict[str, Any]]:
    return services.gateway.read_recent_logs(limit, type)


@app.get(
    "/api/sales/summary",
    response_model=SalesSummary,
    dependencies=[Depends(require_cron_secret)],
)
async def sales_summary(
    marketplace: str | None = Query(None, pattern="^(US|CA|MX)$"),
    startDate: date | None = None,
    endDate: date | None = None,
    services: IngestionServices = Depends(get_services),
):
    marketplace_id = MARKETPLACE_IDS[marketplace] if marketplace else services.sp_api.marketplace_id
    end = endDate or today_in_tz()
    start = startDate or end - timedelta(days=SUMMARY_DEFAULT_DAYS)
    if start > end:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid parameter", "message": f"startDate {start} is after endDate {end}"},
        )
    summary = services.gateway.sales_summary(marketplace_id, start, end)
    return {"marketplaceId": marketplace_id, "startDate": start, "endDate": end, **summary}
