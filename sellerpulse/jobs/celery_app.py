"""Celery configuration for scheduled ingestion runs."""

from __future__ import annotations

import asyncio
import functools
import os

from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

from sellerpulse.db.session import create_engine_from_env
from sellerpulse.jobs.services import IngestionServices, ads_limiter_from_env, sales_limiter_from_env
from sellerpulse.utils.dates import timezone_name

load_dotenv()

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("sellerpulse", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "ingest-sales": {
        "task": "sellerpulse.jobs.sales.run",
        "schedule": crontab(hour=int(os.environ.get("SALES_CRON_HOUR", "6")), minute=15),
    },
    "ingest-ads": {
        "task": "sellerpulse.jobs.ads.run",
        "schedule": crontab(hour=int(os.environ.get("ADS_CRON_HOUR", "7")), minute=15),
    },
}


@functools.lru_cache(maxsize=None)
def worker_resources():
    """Engine, rate limiters and LWA token store shared by every task run in this worker process."""
    return create_engine_from_env(), sales_limiter_from_env(), ads_limiter_from_env(), {}


async def _run(runner, params: dict | None) -> dict:
    engine, sales_limiter, ads_limiter, tokens = worker_resources()
    services = IngestionServices.from_env(
        engine=engine, sales_limiter=sales_limiter, ads_limiter=ads_limiter
    )
    services.restore_tokens(tokens)
    try:
        outcome = await runner(services, params, source="celery")
    finally:
        services.save_tokens(tokens)
        await services.close()
    return {"status_code": outcome.status_code, **outcome.body}


@celery_app.task(name="sellerpulse.jobs.sales.run")
def run_sales_task(params: dict | None = None):  # pragma: no cover - executed by worker
    from sellerpulse.jobs.sales import run_sales_ingestion

    return asyncio.run(_run(run_sales_ingestion, params))


@celery_app.task(name="sellerpulse.jobs.ads.run")
def run_ads_task(params: dict | None = None):  # pragma: no cover - executed by worker
    from sellerpulse.jobs.ads import run_ads_ingestion

    return asyncio.run(_run(run_ads_ingestion, params))
