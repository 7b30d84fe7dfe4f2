"""
Vendor Sales Analytics

Polars aggregations over a vendor's order lines. Input rows are one per
order line (only the vendor's own lines, cancelled orders excluded):

- revenue and orders per month over a trailing window
- top categories by revenue
- headline totals (revenue, orders, units, distinct customers)
- per-customer spend
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import polars as pl
import structlog

logger = structlog.get_logger(__name__)

LINE_SCHEMA = {
    "order_id": pl.Utf8,
    "user_id": pl.Utf8,
    "category_id": pl.Utf8,
    "created_at": pl.Datetime,
    "quantity": pl.Int64,
    "price": pl.Float64,
}


def lines_frame(rows: List[Dict[str, Any]]) -> pl.DataFrame:
    """Build the order-line frame with a revenue column; empty input keeps the schema."""
    df = pl.DataFrame(rows, schema=LINE_SCHEMA)
    return df.with_columns((pl.col("price") * pl.col("quantity")).alias("revenue"))


def trailing_months(now: datetime, months: int) -> List[str]:
    """Month keys ("YYYY-MM") of the last `months` months, oldest first."""
    keys = []
    year, month = now.year, now.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def revenue_by_month(df: pl.DataFrame, months: int, now: datetime) -> List[Dict[str, Any]]:
    keys = trailing_months(now, months)
    monthly = (
        df.with_columns(pl.col("created_at").dt.strftime("%Y-%m").alias("month"))
        .filter(pl.col("month").is_in(keys))
        .group_by("month")
        .agg([
            pl.col("revenue").sum().alias("revenue"),
            pl.col("order_id").n_unique().alias("orders"),
        ])
    )
    found = {row["month"]: row for row in monthly.to_dicts()}

    # zero-fill months without sales
    return [
        {
            "month": key,
            "revenue": round(found[key]["revenue"], 2) if key in found else 0.0,
            "orders": found[key]["orders"] if key in found else 0,
        }
        for key in keys
    ]


def top_categories(df: pl.DataFrame, limit: int = 5) -> List[Dict[str, Any]]:
    ranked = (
        df.filter(pl.col("category_id").is_not_null())
        .group_by("category_id")
        .agg([
            pl.col("revenue").sum().alias("revenue"),
            pl.col("quantity").sum().alias("quantity"),
        ])
        .sort(["revenue", "category_id"], descending=[True, False])
        .head(limit)
    )
    return [
        {"category_id": row["category_id"], "revenue": round(row["revenue"], 2), "quantity": row["quantity"]}
        for row in ranked.to_dicts()
    ]


def sales_totals(df: pl.DataFrame) -> Dict[str, Any]:
    if df.is_empty():
        return {
            "total_revenue": 0.0,
            "total_orders": 0,
            "units_sold": 0,
            "total_customers": 0,
            "average_order_value": 0.0,
        }

    revenue = float(df["revenue"].sum())
    orders = df["order_id"].n_unique()
    return {
        "total_revenue": round(revenue, 2),
        "total_orders": orders,
        "units_sold": int(df["quantity"].sum()),
        "total_customers": df["user_id"].n_unique(),
        "average_order_value": round(revenue / orders, 2) if orders else 0.0,
    }


def customer_spend(df: pl.DataFrame) -> List[Dict[str, Any]]:
    """Per-customer orders, units and spend, biggest spenders first."""
    customers = (
        df.group_by("user_id")
        .agg([
            pl.col("order_id").n_unique().alias("orders"),
            pl.col("quantity").sum().alias("units"),
            pl.col("revenue").sum().alias("total_spent"),
            pl.col("created_at").max().alias("last_order_at"),
        ])
        .sort(["total_spent", "user_id"], descending=[True, False])
    )
    return [
        {
            "user_id": row["user_id"],
            "orders": row["orders"],
            "units": row["units"],
            "total_spent": round(row["total_spent"], 2),
            "last_order_at": row["last_order_at"],
        }
        for row in customers.to_dicts()
    ]


def summarize_vendor_sales(
    df: pl.DataFrame,
    months: int,
    now: Optional[datetime] = None,
    category_limit: int = 5,
) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    summary = {
        "totals": sales_totals(df),
        "revenue_by_month": revenue_by_month(df, months, now),
        "top_categories": top_categories(df, category_limit),
    }
    logger.debug("Vendor sales summarised", rows=df.height, months=months)
    return summary
