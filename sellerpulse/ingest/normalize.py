"""Normalization of raw SP-API and Ads API payloads into canonical records.

Upstream responses name the same metric differently depending on endpoint
version. Each metric is read through an ordered tuple of dotted paths
(``FIELD_RULES``); the first path present in the item wins.

Aggregation here is additive. Feed it raw upstream line items only: running
already-grouped output through ``group_line_items`` again double counts.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Sequence

from sellerpulse.ingest.exceptions import InvalidUpstreamResponseError
from sellerpulse.ingest.models import CampaignRecord, DailyMetricRecord, OrderRecord

logger = logging.getLogger(__name__)

FIELD_RULES: dict[str, tuple[str, ...]] = {
    "unit_count": ("unitCount", "unitsOrdered"),
    "order_item_count": ("orderItemCount", "totalOrderItems"),
    "order_count": ("orderCount",),
    "total_sales": ("totalSales.amount", "orderedProductSales.amount", "totalSales"),
    "currency": ("totalSales.currencyCode", "orderedProductSales.currencyCode"),
}

REPORT_RULES: dict[str, tuple[str, ...]] = {
    "impressions": ("impressions",),
    "clicks": ("clicks",),
    "spend": ("cost", "spend"),
    "sales": ("sales7d", "attributedSales7d", "sales14d"),
    "orders": ("purchases7d", "attributedConversions7d", "purchases14d"),
}

GRANULARITY_MAP = {
    "Daily": "Day",
    "Hourly": "Hour",
    "Weekly": "Week",
    "Monthly": "Month",
    "Day": "Day",
    "Hour": "Hour",
    "Week": "Week",
    "Month": "Month",
}

CAMPAIGN_STATES = {"ENABLED": "enabled", "PAUSED": "paused", "ARCHIVED": "archived"}


def lookup(item: Mapping[str, Any], path: str) -> Any:
    current: Any = item
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def extract(item: Mapping[str, Any], metric: str, rules: Mapping[str, Sequence[str]] = FIELD_RULES) -> Any:
    for path in rules[metric]:
        value = lookup(item, path)
        if value is not None and not isinstance(value, Mapping):
            return value
    return None


def to_int(value: Any) -> int:
    if value in (None, ""):
        return 0
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return 0


def to_decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def map_granularity(granularity: str) -> str:
    mapped = GRANULARITY_MAP.get(granularity)
    if mapped is None:
        logger.warning("Unknown granularity %r, using Day", granularity)
        return "Day"
    return mapped


def interval_date(item: Mapping[str, Any], fallback: str) -> str:
    interval = item.get("interval")
    if isinstance(interval, str) and interval:
        return interval.split("T")[0]
    return fallback


def group_line_items(
    items: Iterable[Mapping[str, Any]],
    *,
    marketplace_id: str,
    granularity: str,
    fallback_date: str,
) -> list[DailyMetricRecord]:
    """Sum line items sharing a calendar date into one record per date."""
    grouped: OrderedDict[str, DailyMetricRecord] = OrderedDict()
    for item in items:
        if not isinstance(item, Mapping):
            raise InvalidUpstreamResponseError(f"SP-API line item is not an object: {item!r}")
        day = interval_date(item, fallback_date)
        record = grouped.get(day)
        if record is None:
            try:
                parsed = date.fromisoformat(day)
            except ValueError as exc:
                raise InvalidUpstreamResponseError(f"SP-API line item has a malformed interval: {day!r}") from exc
            record = DailyMetricRecord(
                date=parsed,
                marketplace_id=marketplace_id,
                granularity=granularity,
            )
            grouped[day] = record
        units = to_int(extract(item, "unit_count"))
        sales = to_decimal(extract(item, "total_sales"))
        record.units_ordered += units
        record.units_shipped += units
        record.total_order_items += to_int(extract(item, "order_item_count"))
        record.order_count += to_int(extract(item, "order_count"))
        record.ordered_product_sales += sales
        record.shipped_product_sales += sales
        currency = extract(item, "currency")
        if currency:
            record.currency = str(currency)
    return sorted(grouped.values(), key=lambda record: record.date)


def is_zero_volume(record: DailyMetricRecord) -> bool:
    return (
        record.units_ordered == 0
        and record.total_order_items == 0
        and record.ordered_product_sales == 0
    )


def drop_zero_volume(records: Iterable[DailyMetricRecord]) -> list[DailyMetricRecord]:
    return [record for record in records if not is_zero_volume(record)]


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_day(value: Any) -> date | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def order_from_payload(item: Mapping[str, Any], *, marketplace_id: str) -> OrderRecord | None:
    order_id = item.get("AmazonOrderId")
    if not order_id:
        return None
    total = item.get("OrderTotal") or {}
    buyer = item.get("BuyerInfo") or {}
    return OrderRecord(
        order_id=str(order_id),
        marketplace_id=item.get("MarketplaceId") or marketplace_id,
        order_date=parse_timestamp(item.get("PurchaseDate")),
        status=item.get("OrderStatus"),
        order_total=to_decimal(total.get("Amount")),
        currency=total.get("CurrencyCode") or "USD",
        items_shipped=to_int(item.get("NumberOfItemsShipped")),
        items_unshipped=to_int(item.get("NumberOfItemsUnshipped")),
        buyer_email=buyer.get("BuyerEmail"),
        fulfillment_channel=item.get("FulfillmentChannel"),
    )


def dedupe_orders(orders: Iterable[OrderRecord]) -> list[OrderRecord]:
    """Keep one record per order id; a later occurrence replaces an earlier one."""
    latest: OrderedDict[str, OrderRecord] = OrderedDict()
    for order in orders:
        latest.pop(order.order_id, None)
        latest[order.order_id] = order
    return list(latest.values())


def campaign_from_payload(
    item: Mapping[str, Any],
    metrics: Mapping[str, Any] | None,
    *,
    account_id: str,
) -> CampaignRecord:
    metrics = metrics or {}
    budget = lookup(item, "budget.budget")
    if budget is None:
        budget = item.get("dailyBudget")
    state = str(item.get("state") or "ENABLED").upper()
    return CampaignRecord(
        campaign_id=str(item["campaignId"]),
        account_id=account_id,
        name=item.get("name") or str(item["campaignId"]),
        campaign_type=item.get("campaignType") or "sponsored_products",
        status=CAMPAIGN_STATES.get(state, state.lower()),
        daily_budget=to_decimal(budget) if budget is not None else None,
        impressions=to_int(extract(metrics, "impressions", REPORT_RULES)),
        clicks=to_int(extract(metrics, "clicks", REPORT_RULES)),
        spend=to_decimal(extract(metrics, "spend", REPORT_RULES)),
        sales=to_decimal(extract(metrics, "sales", REPORT_RULES)),
        orders=to_int(extract(metrics, "orders", REPORT_RULES)),
        start_date=parse_day(item.get("startDate")),
        end_date=parse_day(item.get("endDate")),
        updated_at=parse_timestamp(lookup(item, "extendedData.lastUpdateDateTime")),
    )


def join_campaign_metrics(
    campaigns: Iterable[Mapping[str, Any]],
    report_rows: Iterable[Mapping[str, Any]],
    *,
    account_id: str,
) -> list[CampaignRecord]:
    """Attach report metrics to campaign metadata by campaign id."""
    metrics_by_id: dict[str, Mapping[str, Any]] = {}
    for row in report_rows:
        campaign_id = row.get("campaignId")
        if campaign_id is not None:
            metrics_by_id[str(campaign_id)] = row
    records = []
    for item in campaigns:
        if item.get("campaignId") is None:
            continue
        records.append(
            campaign_from_payload(item, metrics_by_id.get(str(item["campaignId"])), account_id=account_id)
        )
    return records


def dedupe_campaigns(campaigns: Iterable[CampaignRecord]) -> list[CampaignRecord]:
    """One record per (campaign_id, account_id): the most recently updated wins.

    Records with equal or missing ``updated_at`` resolve to the later entry.
    """
    chosen: OrderedDict[tuple[str, str], CampaignRecord] = OrderedDict()
    for campaign in campaigns:
        key = (campaign.campaign_id, campaign.account_id)
        current = chosen.get(key)
        if current is not None and _is_newer(current, campaign):
            continue
        chosen.pop(key, None)
        chosen[key] = campaign
    return list(chosen.values())


def _is_newer(current: CampaignRecord, candidate: CampaignRecord) -> bool:
    if current.updated_at is None or candidate.updated_at is None:
        return False
    return current.updated_at > candidate.updated_at
