"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

import httpx


@dataclass(slots=True)
class Region:
    name: str
    sp_api: str
    lwa: str
    ads_api: str


@dataclass(slots=True)
class CachedToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(slots=True)
class RateLimitInfo:
    limit: str | None = None
    remaining: str | None = None

    @classmethod
    def from_headers(cls, headers: httpx.Headers) -> "RateLimitInfo":
        return cls(
            limit=headers.get("x-amzn-RateLimit-Limit"),
            remaining=headers.get("x-amzn-RateLimit-Remaining"),
        )

    def as_dict(self) -> dict[str, str | None]:
        return {"limit": self.limit, "remaining": self.remaining}


@dataclass(slots=True)
class ApiResponse:
    data: Any
    rate_limit: RateLimitInfo


@dataclass(slots=True)
class DailyMetricRecord:
    date: date
    marketplace_id: str
    granularity: str
    units_ordered: int = 0
    units_shipped: int = 0
    ordered_product_sales: Decimal = Decimal("0")
    shipped_product_sales: Decimal = Decimal("0")
    total_order_items: int = 0
    order_count: int = 0
    sessions: int = 0
    page_views: int = 0
    currency: str = "USD"
    source: str = "sp-api"

    def as_row(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "marketplace_id": self.marketplace_id,
            "granularity": self.granularity,
            "units_ordered": self.units_ordered,
            "units_shipped": self.units_shipped,
            "ordered_product_sales": self.ordered_product_sales,
            "shipped_product_sales": self.shipped_product_sales,
            "total_order_items": self.total_order_items,
            "order_count": self.order_count,
            "sessions": self.sessions,
            "page_views": self.page_views,
            "currency": self.currency,
            "source": self.source,
        }


@dataclass(slots=True)
class OrderRecord:
    order_id: str
    marketplace_id: str
    order_date: datetime | None
    status: str | None
    order_total: Decimal = Decimal("0")
    currency: str = "USD"
    items_shipped: int = 0
    items_unshipped: int = 0
    buyer_email: str | None = None
    fulfillment_channel: str | None = None
    source: str = "sp-api"

    def as_row(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "marketplace_id": self.marketplace_id,
            "order_date": self.order_date,
            "status": self.status,
            "order_total": self.order_total,
            "currency": self.currency,
            "items_shipped": self.items_shipped,
            "items_unshipped": self.items_unshipped,
            "buyer_email": self.buyer_email,
            "fulfillment_channel": self.fulfillment_channel,
            "source": self.source,
        }


@dataclass(slots=True)
class CampaignRecord:
    campaign_id: str
    account_id: str
    name: str
    campaign_type: str = "sponsored_products"
    status: str = "enabled"
    daily_budget: Decimal | None = None
    impressions: int = 0
    clicks: int = 0
    spend: Decimal = Decimal("0")
    sales: Decimal = Decimal("0")
    orders: int = 0
    start_date: date | None = None
    end_date: date | None = None
    updated_at: datetime | None = None
    source: str = "ads-api"

    def as_row(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "account_id": self.account_id,
            "campaign_name": self.name,
            "campaign_type": self.campaign_type,
            "status": self.status,
            "daily_budget": self.daily_budget,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "spend": self.spend,
            "sales": self.sales,
            "orders": self.orders,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "updated_at": self.updated_at,
            "source": self.source,
        }


@dataclass(slots=True)
class SalesResult:
    metrics: list[DailyMetricRecord]
    rate_limit: RateLimitInfo
    total_records_processed: int
    non_zero_records: int


@dataclass(slots=True)
class OrdersResult:
    orders: list[OrderRecord]
    rate_limit: RateLimitInfo
    pages: int = 1


@dataclass(slots=True)
class CampaignsResult:
    campaigns: list[CampaignRecord]
    report_id: str | None
    rate_limit: RateLimitInfo = field(default_factory=RateLimitInfo)


def region_from_mapping(name: str, data: Mapping[str, str]) -> Region:
    return Region(name=name, sp_api=data["sp_api"], lwa=data["lwa"], ads_api=data["ads_api"])
