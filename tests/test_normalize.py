from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from sellerpulse.ingest.exceptions import InvalidUpstreamResponseError
from sellerpulse.ingest.models import CampaignRecord, DailyMetricRecord, OrderRecord
from sellerpulse.ingest.normalize import (
    dedupe_campaigns,
    dedupe_orders,
    drop_zero_volume,
    group_line_items,
    join_campaign_metrics,
    map_granularity,
    order_from_payload,
)


def test_line_items_grouped_by_day_and_zero_rows_dropped():
    items = [
        {"interval": "2024-01-01T00:00Z", "unitCount": 3, "totalSales": {"amount": 30}},
        {"interval": "2024-01-01T12:00Z", "unitCount": 2, "totalSales": {"amount": 20}},
        {"interval": "2024-01-02T00:00Z", "unitCount": 0, "totalSales": {"amount": 0}},
    ]
    grouped = group_line_items(items, marketplace_id="ATVPDKIKX0DER", granularity="Day", fallback_date="2024-01-01")
    assert [record.date for record in grouped] == [date(2024, 1, 1), date(2024, 1, 2)]

    records = drop_zero_volume(grouped)
    assert len(records) == 1
    record = records[0]
    assert record.date == date(2024, 1, 1)
    assert record.units_ordered == 5
    assert record.ordered_product_sales == Decimal("50")


def test_field_rules_accept_alternative_names():
    items = [
        {
            "interval": "2024-01-03T00:00:00-05:00--2024-01-04T00:00:00-05:00",
            "unitsOrdered": "4",
            "totalOrderItems": 3,
            "orderCount": 2,
            "orderedProductSales": {"amount": "19.98", "currencyCode": "EUR"},
        },
        {"unitCount": 1, "totalSales": "5.01"},
    ]
    records = group_line_items(items, marketplace_id="A1PA6795UKMFR9", granularity="Day", fallback_date="2024-01-02")
    by_day = {record.date: record for record in records}
    assert by_day[date(2024, 1, 3)].units_ordered == 4
    assert by_day[date(2024, 1, 3)].total_order_items == 3
    assert by_day[date(2024, 1, 3)].order_count == 2
    assert by_day[date(2024, 1, 3)].ordered_product_sales == Decimal("19.98")
    assert by_day[date(2024, 1, 3)].currency == "EUR"
    assert by_day[date(2024, 1, 2)].ordered_product_sales == Decimal("5.01")


@pytest.mark.parametrize(
    "items",
    [
        [{"interval": "2024-13-45T00:00Z", "unitCount": 1}],
        [{"interval": "2024-01-01T00:00Z", "unitCount": 1}, "not an object"],
        [None],
    ],
)
def test_malformed_line_items_rejected(items):
    with pytest.raises(InvalidUpstreamResponseError):
        group_line_items(items, marketplace_id="ATVPDKIKX0DER", granularity="Day", fallback_date="2024-01-01")


def test_map_granularity():
    assert map_granularity("Daily") == "Day"
    assert map_granularity("Hourly") == "Hour"
    assert map_granularity("Week") == "Week"
    assert map_granularity("Fortnightly") == "Day"


def test_orders_deduplicated_last_wins():
    first = order_from_payload(
        {"AmazonOrderId": "111-1", "OrderStatus": "Pending", "PurchaseDate": "2024-01-01T10:00:00Z"},
        marketplace_id="ATVPDKIKX0DER",
    )
    second = order_from_payload(
        {
            "AmazonOrderId": "111-1",
            "OrderStatus": "Shipped",
            "OrderTotal": {"Amount": "12.50", "CurrencyCode": "USD"},
            "NumberOfItemsShipped": 2,
        },
        marketplace_id="ATVPDKIKX0DER",
    )
    assert order_from_payload({"OrderStatus": "Shipped"}, marketplace_id="ATVPDKIKX0DER") is None

    orders = dedupe_orders([first, second])
    assert len(orders) == 1
    assert orders[0].status == "Shipped"
    assert orders[0].order_total == Decimal("12.50")
    assert orders[0].items_shipped == 2
    assert first.order_date == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)


def test_campaign_metrics_joined_by_campaign_id():
    campaigns = [
        {"campaignId": 1, "name": "Brand", "state": "ENABLED", "budget": {"budget": 25.0}, "startDate": "2024-01-01"},
        {"campaignId": "2", "name": "Generic", "state": "PAUSED"},
        {"name": "missing id"},
    ]
    rows = [
        {"campaignId": 1, "impressions": 1000, "clicks": 25, "cost": 12.5, "sales7d": 50.0, "purchases7d": 3},
    ]
    records = join_campaign_metrics(campaigns, rows, account_id="111")
    assert [record.campaign_id for record in records] == ["1", "2"]
    brand, generic = records
    assert brand.impressions == 1000
    assert brand.spend == Decimal("12.5")
    assert brand.sales == Decimal("50.0")
    assert brand.orders == 3
    assert brand.daily_budget == Decimal("25.0")
    assert brand.start_date == date(2024, 1, 1)
    assert generic.status == "paused"
    assert generic.impressions == 0
    assert generic.spend == Decimal("0")


def test_dedupe_campaigns_prefers_most_recent_update():
    older = CampaignRecord("1", "111", "old", updated_at=datetime(2024, 1, 2, tzinfo=timezone.utc))
    newer = CampaignRecord("1", "111", "new", updated_at=datetime(2024, 1, 3, tzinfo=timezone.utc))
    other_account = CampaignRecord("1", "222", "other")

    assert [c.name for c in dedupe_campaigns([newer, older, other_account])] == ["new", "other"]
    assert [c.name for c in dedupe_campaigns([older, newer])] == ["new"]


def test_dedupe_campaigns_without_timestamps_keeps_later_entry():
    first = CampaignRecord("1", "111", "first")
    second = CampaignRecord("1", "111", "second")
    assert [c.name for c in dedupe_campaigns([first, second])] == ["second"]


def test_rows_keep_decimal_amounts():
    metric = DailyMetricRecord(
        date=date(2024, 1, 1),
        marketplace_id="ATVPDKIKX0DER",
        granularity="Day",
        ordered_product_sales=Decimal("1234567.89"),
    )
    order = OrderRecord("111-1", "ATVPDKIKX0DER", None, "Shipped", order_total=Decimal("0.10"))
    campaign = CampaignRecord("1", "111", "Brand", daily_budget=Decimal("12.30"), spend=Decimal("0.07"))

    assert metric.as_row()["ordered_product_sales"] == Decimal("1234567.89")
    assert order.as_row()["order_total"] == Decimal("0.10")
    row = campaign.as_row()
    assert isinstance(row["spend"], Decimal)
    assert row["daily_budget"] == Decimal("12.30")
    assert CampaignRecord("2", "111", "Generic").as_row()["daily_budget"] is None
