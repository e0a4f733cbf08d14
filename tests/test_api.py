from datetime import date, timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
import respx
from sqlalchemy import text

from conftest import LWA_URL, SP_API_URL, make_services, token_response
from sellerpulse.ingest.models import CampaignRecord, DailyMetricRecord
from sellerpulse.api.main import app, get_services
from sellerpulse.utils.dates import format_date, today_in_tz, yesterday

SECRET = "cron-secret-value"


@pytest_asyncio.fixture()
async def api(monkeypatch, gateway, region):
    monkeypatch.setenv("CRON_SECRET", SECRET)
    async with respx.mock(assert_all_called=False) as router:
        async with httpx.AsyncClient() as session:
            services = make_services(gateway, session, region)
            app.dependency_overrides[get_services] = lambda: services
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                yield client, router
    app.dependency_overrides.clear()


def log_count(engine):
    with engine.connect() as conn:
        return conn.execute(text("SELECT COUNT(*) FROM ingestion_logs")).scalar()


@pytest.mark.asyncio
async def test_health(api):
    client, _ = api
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/api/cron/ingest-sales", "/api/cron/ingest-ads"])
@pytest.mark.parametrize("headers", [{}, {"x-cron-secret": "wrong"}])
async def test_bad_secret_rejected_before_any_work(api, engine, path, headers):
    client, router = api
    sp_api = router.get(f"{SP_API_URL}/sales/v1/orderMetrics")
    token = router.post(LWA_URL)

    response = await client.post(path, json={"startDate": "2024-01-01"}, headers=headers)

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "Unauthorized"
    assert not sp_api.called
    assert not token.called
    assert log_count(engine) == 0


@pytest.mark.asyncio
async def test_unsupported_method(api):
    client, _ = api
    response = await client.put("/api/cron/ingest-sales", headers={"x-cron-secret": SECRET})
    assert response.status_code == 405


@pytest.mark.asyncio
async def test_sales_trigger_via_get_query_params(api, engine):
    client, router = api
    router.post(LWA_URL).mock(return_value=httpx.Response(200, json=token_response()))
    metrics = router.get(f"{SP_API_URL}/sales/v1/orderMetrics").mock(
        return_value=httpx.Response(
            200,
            json={"payload": [{"interval": "2024-01-01T00:00Z", "unitCount": 3, "totalSales": {"amount": 30}}]},
        )
    )
    router.get(f"{SP_API_URL}/orders/v0/orders").mock(
        return_value=httpx.Response(200, json={"payload": {"Orders": []}})
    )

    response = await client.get(
        "/api/cron/ingest-sales",
        params={"startDate": "2024-01-01", "endDate": "2024-01-01"},
        headers={"x-cron-secret": SECRET, "user-agent": "scheduler/2.0"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["recordsProcessed"] == {"sales": 1, "orders": 0, "total": 1}
    assert body["logId"] is not None
    assert metrics.called

    logs = await client.get(
        "/api/ingestion/logs", params={"type": "sales"}, headers={"x-cron-secret": SECRET}
    )
    assert logs.status_code == 200
    entries = logs.json()
    assert [entry["status"] for entry in entries] == ["completed", "started"]
    assert entries[1]["details"]["userAgent"] == "scheduler/2.0"


@pytest.mark.asyncio
async def test_ads_trigger_rejects_bad_dates(api, engine):
    client, router = api
    response = await client.post(
        "/api/cron/ingest-ads",
        json={"startDate": "2024-02-31"},
        headers={"x-cron-secret": SECRET},
    )
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert not router.calls


@pytest.mark.asyncio
async def test_non_json_body_uses_default_dates(api):
    client, router = api
    router.post(LWA_URL).mock(return_value=httpx.Response(200, json=token_response()))
    router.get(f"{SP_API_URL}/sales/v1/orderMetrics").mock(
        return_value=httpx.Response(200, json={"payload": []})
    )
    response = await client.post(
        "/api/cron/ingest-sales",
        content=b"not json",
        headers={"x-cron-secret": SECRET, "content-type": "text/plain"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["recordsProcessed"]["total"] == 0
    assert body["dateRange"]["startDate"] == format_date(yesterday())


@pytest.mark.asyncio
async def test_logs_endpoint_validates_type(api):
    client, _ = api
    response = await client.get(
        "/api/ingestion/logs", params={"type": "inventory"}, headers={"x-cron-secret": SECRET}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_mistyped_sales_fields_fall_back_instead_of_failing(api):
    client, router = api
    router.post(LWA_URL).mock(return_value=httpx.Response(200, json=token_response()))
    metrics = router.get(f"{SP_API_URL}/sales/v1/orderMetrics").mock(
        return_value=httpx.Response(200, json={"payload": []})
    )
    router.get(f"{SP_API_URL}/orders/v0/orders").mock(
        return_value=httpx.Response(200, json={"payload": {"Orders": []}})
    )
    response = await client.post(
        "/api/cron/ingest-sales",
        json={"startDate": 20240101, "endDate": ["2024-01-01"], "granularity": 7},
        headers={"x-cron-secret": SECRET},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["dateRange"]["startDate"] == format_date(yesterday())
    assert body["dateRange"]["endDate"] == format_date(yesterday())
    assert metrics.calls.last.request.url.params["granularity"] == "Day"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"startDate": 20240101}, {"endDate": {"day": 1}}, {"profileId": 222, "startDate": True}])
async def test_mistyped_ads_dates_rejected(api, payload):
    client, router = api
    response = await client.post("/api/cron/ingest-ads", json=payload, headers={"x-cron-secret": SECRET})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid parameter"
    assert not router.calls


def seed_summary(gateway):
    gateway.upsert_sales_metrics(
        [
            DailyMetricRecord(date(2024, 1, 1), "ATVPDKIKX0DER", "Day", units_ordered=5, ordered_product_sales=Decimal("50.00"), order_count=4),
            DailyMetricRecord(date(2024, 1, 2), "ATVPDKIKX0DER", "Day", units_ordered=1, ordered_product_sales=Decimal("19.99"), order_count=1),
            DailyMetricRecord(date(2024, 1, 2), "A2EUQ1WTGCTBG2", "Day", units_ordered=2, ordered_product_sales=Decimal("25.00"), order_count=2),
        ],
        "sp-api-cron",
    )
    gateway.upsert_campaigns(
        [CampaignRecord("1", "111", "Brand", spend=Decimal("12.50"), start_date=date(2024, 1, 2))],
        "ads-api-cron",
    )


@pytest.mark.asyncio
async def test_sales_summary(api, gateway):
    client, router = api
    seed_summary(gateway)
    response = await client.get(
        "/api/sales/summary",
        params={"startDate": "2024-01-01", "endDate": "2024-01-31"},
        headers={"x-cron-secret": SECRET},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["marketplaceId"] == "ATVPDKIKX0DER"
    assert body["startDate"] == "2024-01-01"
    assert body["metrics"] == {"revenue": 69.99, "orders": 5, "unitsSold": 6, "adSpend": 12.5}
    assert body["salesAdSpendData"] == [
        {"date": "2024-01-01", "sales": 50.0, "adSpend": 0.0},
        {"date": "2024-01-02", "sales": 19.99, "adSpend": 12.5},
    ]
    assert not router.calls


@pytest.mark.asyncio
async def test_sales_summary_by_marketplace_code(api, gateway):
    client, _ = api
    seed_summary(gateway)
    response = await client.get(
        "/api/sales/summary",
        params={"marketplace": "CA", "startDate": "2024-01-01", "endDate": "2024-01-31"},
        headers={"x-cron-secret": SECRET},
    )
    body = response.json()
    assert body["marketplaceId"] == "A2EUQ1WTGCTBG2"
    assert body["metrics"]["revenue"] == 25.0
    assert body["metrics"]["orders"] == 2


@pytest.mark.asyncio
async def test_sales_summary_defaults_to_last_thirty_days(api):
    client, _ = api
    response = await client.get("/api/sales/summary", headers={"x-cron-secret": SECRET})
    assert response.status_code == 200
    body = response.json()
    today = today_in_tz()
    assert body["endDate"] == format_date(today)
    assert body["startDate"] == format_date(today - timedelta(days=30))
    assert body["salesAdSpendData"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "params,headers,status",
    [
        ({}, {}, 401),
        ({"marketplace": "DE"}, {"x-cron-secret": SECRET}, 422),
        ({"startDate": "2024-02-31"}, {"x-cron-secret": SECRET}, 422),
        ({"startDate": "2024-02-02", "endDate": "2024-02-01"}, {"x-cron-secret": SECRET}, 400),
    ],
)
async def test_sales_summary_rejections(api, params, headers, status):
    client, _ = api
    response = await client.get("/api/sales/summary", params=params, headers=headers)
    assert response.status_code == status
