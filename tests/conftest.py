import sqlite3
from decimal import Decimal

import pytest
from sqlalchemy import Column, Date, DateTime, Integer, MetaData, Numeric, Table, Text, UniqueConstraint, create_engine

from sellerpulse.db.gateway import PersistenceGateway
from sellerpulse.ingest import get_region
from sellerpulse.ingest.ads_api import AmazonAdsClient
from sellerpulse.ingest.sp_api import SPAPIClient
from sellerpulse.jobs.services import IngestionServices
from sellerpulse.utils.rate_limit import RateLimiter

# Postgres binds Decimal natively; the in-memory SQLite driver needs an adapter.
sqlite3.register_adapter(Decimal, str)

metadata = MetaData()

sales_metrics = Table(
    "sales_metrics",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("date", Date, nullable=False),
    Column("marketplace_id", Text, nullable=False),
    Column("granularity", Text, nullable=False),
    Column("units_ordered", Integer),
    Column("units_shipped", Integer),
    Column("ordered_product_sales", Numeric),
    Column("shipped_product_sales", Numeric),
    Column("total_order_items", Integer),
    Column("order_count", Integer),
    Column("sessions", Integer),
    Column("page_views", Integer),
    Column("currency", Text),
    Column("source", Text),
    UniqueConstraint("date", "marketplace_id", "granularity"),
)

orders = Table(
    "orders",
    metadata,
    Column("order_id", Text, primary_key=True),
    Column("marketplace_id", Text),
    Column("order_date", DateTime),
    Column("status", Text),
    Column("order_total", Numeric),
    Column("currency", Text),
    Column("items_shipped", Integer),
    Column("items_unshipped", Integer),
    Column("buyer_email", Text),
    Column("fulfillment_channel", Text),
    Column("source", Text),
)

ads_campaigns = Table(
    "ads_campaigns",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("campaign_id", Text, nullable=False),
    Column("account_id", Text, nullable=False),
    Column("campaign_name", Text),
    Column("campaign_type", Text),
    Column("status", Text),
    Column("daily_budget", Numeric),
    Column("impressions", Integer),
    Column("clicks", Integer),
    Column("spend", Numeric),
    Column("sales", Numeric),
    Column("orders", Integer),
    Column("start_date", Date),
    Column("end_date", Date),
    Column("updated_at", DateTime),
    Column("source", Text),
    UniqueConstraint("campaign_id", "account_id"),
)

ingestion_logs = Table(
    "ingestion_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("type", Text, nullable=False),
    Column("status", Text, nullable=False),
    Column("details", Text),
    Column("created_at", DateTime),
)

LWA_URL = "https://api.amazon.com/auth/o2/token"
SP_API_URL = "https://sellingpartnerapi-na.amazon.com"
ADS_API_URL = "https://advertising-api.amazon.com"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleeper:
    """Records requested sleeps and advances the paired clock instead of waiting."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


def token_response(token: str = "Atza|token", expires_in: int = 3600) -> dict:
    return {"access_token": token, "token_type": "bearer", "expires_in": expires_in}


@pytest.fixture()
def engine():
    engine = create_engine("sqlite:///:memory:", future=True)
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def gateway(engine):
    return PersistenceGateway(engine)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def sleeper(clock):
    return FakeSleeper(clock)


@pytest.fixture()
def region():
    return get_region("na")


def make_sp_client(session, region, clock=None, **overrides) -> SPAPIClient:
    options = {
        "client_id": "amzn1.application-oa2-client.test",
        "client_secret": "secret",
        "refresh_token": "Atzr|refresh",
        "region": region,
        "marketplace_id": "ATVPDKIKX0DER",
        "session": session,
    }
    if clock is not None:
        options["clock"] = clock
    options.update(overrides)
    return SPAPIClient(**options)


def make_ads_client(session, region, sleeper=None, **overrides) -> AmazonAdsClient:
    options = {
        "client_id": "amzn1.application-oa2-client.ads",
        "client_secret": "secret",
        "refresh_token": "Atzr|ads-refresh",
        "profile_id": "111",
        "region": region,
        "session": session,
        "sleeper": sleeper or FakeSleeper(),
        "report_max_attempts": 3,
    }
    options.update(overrides)
    return AmazonAdsClient(**options)


def make_services(gateway, session, region, **overrides) -> IngestionServices:
    clock = FakeClock()
    options = {
        "gateway": gateway,
        "sp_api": make_sp_client(session, region),
        "ads": make_ads_client(session, region),
        "sales_limiter": RateLimiter(5, 1.0, clock=clock, sleeper=FakeSleeper(clock)),
        "ads_limiter": RateLimiter(10, 2.0, clock=clock, sleeper=FakeSleeper(clock)),
        "clock": clock,
    }
    options.update(overrides)
    return IngestionServices(**options)
