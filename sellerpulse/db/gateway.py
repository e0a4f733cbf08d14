"""Persistence gateway: conflict-key upserts, the ingestion audit log and the sales summary read."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text

from sellerpulse.ingest.models import CampaignRecord, DailyMetricRecord, OrderRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500

TABLE_COLUMNS: dict[str, frozenset[str]] = {
    "sales_metrics": frozenset(
        {
            "date",
            "marketplace_id",
            "granularity",
            "units_ordered",
            "units_shipped",
            "ordered_product_sales",
            "shipped_product_sales",
            "total_order_items",
            "order_count",
            "sessions",
            "page_views",
            "currency",
            "source",
        }
    ),
    "orders": frozenset(
        {
            "order_id",
            "marketplace_id",
            "order_date",
            "status",
            "order_total",
            "currency",
            "items_shipped",
            "items_unshipped",
            "buyer_email",
            "fulfillment_channel",
            "source",
        }
    ),
    "ads_campaigns": frozenset(
        {
            "campaign_id",
            "account_id",
            "campaign_name",
            "campaign_type",
            "status",
            "daily_budget",
            "impressions",
            "clicks",
            "spend",
            "sales",
            "orders",
            "start_date",
            "end_date",
            "updated_at",
            "source",
        }
    ),
}

SALES_CONFLICT_KEY = ("date", "marketplace_id", "granularity")
ORDERS_CONFLICT_KEY = ("order_id",)
CAMPAIGNS_CONFLICT_KEY = ("campaign_id", "account_id")

LOG_TYPES = {"sales", "ads", "orders"}
LOG_STATUSES = {"started", "completed", "failed"}


def build_upsert_sql(table: str, columns: Sequence[str], conflict_columns: Sequence[str]) -> str:
    known = TABLE_COLUMNS.get(table)
    if known is None:
        raise ValueError(f"Unknown table {table!r}")
    unknown = [column for column in (*columns, *conflict_columns) if column not in known]
    if unknown:
        raise ValueError(f"Unknown columns for {table}: {unknown}")
    updates = [column for column in columns if column not in conflict_columns]
    placeholders = ", ".join(f":{column}" for column in columns)
    if updates:
        action = "DO UPDATE SET " + ", ".join(f"{column} = EXCLUDED.{column}" for column in updates)
    else:
        action = "DO NOTHING"
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT ({', '.join(conflict_columns)}) {action}"
    )


def chunked(rows: Sequence[Mapping[str, Any]], size: int) -> Iterable[Sequence[Mapping[str, Any]]]:
    for offset in range(0, len(rows), size):
        yield rows[offset : offset + size]


class PersistenceGateway:
    """Writes ingestion output to the relational store.

    Upserts do no in-batch merging: callers hand over rows that are already
    unique per conflict key. Store errors propagate unchanged.
    """

    def __init__(self, engine: Engine, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.engine = engine
        self.batch_size = batch_size

    def upsert(
        self,
        table: str,
        records: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
    ) -> int:
        if not records:
            return 0
        columns = list(records[0].keys())
        statement = text(build_upsert_sql(table, columns, conflict_columns))
        affected = 0
        with self.engine.begin() as conn:
            for batch in chunked(records, self.batch_size):
                result = conn.execute(statement, [dict(row) for row in batch])
                affected += result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(batch)
        logger.info("Upserted %s rows into %s", affected, table)
        return affected

    def upsert_sales_metrics(self, metrics: Iterable[DailyMetricRecord], source: str) -> int:
        rows = []
        for record in metrics:
            row = record.as_row()
            row["source"] = source
            rows.append(row)
        return self.upsert("sales_metrics", rows, SALES_CONFLICT_KEY)

    def upsert_orders(self, orders: Iterable[OrderRecord], source: str) -> int:
        rows = []
        for record in orders:
            row = record.as_row()
            row["source"] = source
            rows.append(row)
        return self.upsert("orders", rows, ORDERS_CONFLICT_KEY)

    def upsert_campaigns(self, campaigns: Iterable[CampaignRecord], source: str) -> int:
        rows = []
        for record in campaigns:
            row = record.as_row()
            row["source"] = source
            rows.append(row)
        return self.upsert("ads_campaigns", rows, CAMPAIGNS_CONFLICT_KEY)

    def append_log(self, log_type: str, status: str, details: Mapping[str, Any]) -> int | None:
        """Insert an audit entry; returns its id, or None if the store rejected it."""
        if log_type not in LOG_TYPES or status not in LOG_STATUSES:
            raise ValueError(f"Invalid log entry {log_type}/{status}")
        payload = json.dumps(dict(details), default=str)
        try:
            with self.engine.begin() as conn:
                details_sql = ":details" if conn.dialect.name == "sqlite" else "CAST(:details AS JSONB)"
                result = conn.execute(
                    text(
                        f"""
                        INSERT INTO ingestion_logs (type, status, details, created_at)
                        VALUES (:type, :status, {details_sql}, :created_at)
                        RETURNING id
                        """
                    ),
                    {
                        "type": log_type,
                        "status": status,
                        "details": payload,
                        "created_at": datetime.now(timezone.utc),
                    },
                )
                return int(result.scalar_one())
        except SQLAlchemyError:
            logger.exception("Failed to write %s/%s ingestion log", log_type, status)
            return None

    def read_recent_logs(self, limit: int = 20, log_type: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT id, type, status, details, created_at FROM ingestion_logs"
        params: dict[str, Any] = {"limit": max(1, min(limit, 500))}
        if log_type:
            query += " WHERE type = :type"
            params["type"] = log_type
        query += " ORDER BY created_at DESC, id DESC LIMIT :limit"
        with self.engine.connect() as conn:
            rows = [dict(row) for row in conn.execute(text(query), params).mappings()]
        for row in rows:
            if isinstance(row["details"], str):
                row["details"] = json.loads(row["details"])
        return rows

    def sales_summary(self, marketplace_id: str, start: date, end: date) -> dict[str, Any]:
        """Totals and a per-date sales/ad-spend series for ``[start, end]``.

        Campaign rows carry report totals without a per-day breakdown, so ad
        spend is attributed to each campaign's ``start_date``. Campaigns with
        no start date are left out.
        """
        bounds = {"start": start, "end": end}
        with self.engine.connect() as conn:
            sales_rows = conn.execute(
                text(
                    """
                    SELECT date,
                           SUM(ordered_product_sales) AS sales,
                           SUM(order_count) AS orders,
                           SUM(units_ordered) AS units
                    FROM sales_metrics
                    WHERE marketplace_id = :marketplace_id
                      AND granularity = 'Day'
                      AND date BETWEEN :start AND :end
                    GROUP BY date
                    """
                ),
                {"marketplace_id": marketplace_id, **bounds},
            ).fetchall()
            spend_rows = conn.execute(
                text(
                    """
                    SELECT start_date AS date, SUM(spend) AS spend
                    FROM ads_campaigns
                    WHERE start_date BETWEEN :start AND :end
                    GROUP BY start_date
                    """
                ),
                bounds,
            ).fetchall()

        series: dict[date, dict[str, Any]] = {}

        def point(day: Any) -> dict[str, Any]:
            key = as_date(day)
            return series.setdefault(key, {"date": key, "sales": Decimal("0"), "adSpend": Decimal("0")})

        revenue = Decimal("0")
        orders = units = 0
        for row in sales_rows:
            sales = as_decimal(row.sales)
            point(row.date)["sales"] += sales
            revenue += sales
            orders += int(row.orders or 0)
            units += int(row.units or 0)
        ad_spend = Decimal("0")
        for row in spend_rows:
            spend = as_decimal(row.spend)
            point(row.date)["adSpend"] += spend
            ad_spend += spend

        return {
            "metrics": {"revenue": revenue, "orders": orders, "unitsSold": units, "adSpend": ad_spend},
            "salesAdSpendData": [series[day] for day in sorted(series)],
        }


def as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def as_decimal(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")
