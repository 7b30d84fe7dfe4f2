"""
Admin Dashboard

Marketplace-wide figures for the admin console:
- headline totals (revenue, orders, customers, products)
- revenue per day over a trailing week, zero-filled
- units ordered per vendor, platform lines grouped as "Platform"
- products per category
- per-product sales: recent buyers and units/revenue per month

Cancelled orders are left out of every revenue and order figure.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import uuid

import polars as pl
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.products import ProductService
from marketplace.database.models import Category, Order, OrderItem, OrderStatus, Product, Shop, User, utcnow
from marketplace.errors import AuthorizationError
from marketplace.principal import Principal
from marketplace.vendors.analytics import trailing_months

logger = structlog.get_logger(__name__)

PLATFORM = "Platform"
UNCATEGORIZED = "Uncategorized"
RECENT_BUYER_STATUSES = (OrderStatus.SHIPPED, OrderStatus.DELIVERED)


# =============================================================================
# AGGREGATIONS
# =============================================================================

def revenue_by_day(rows: List[Dict[str, Any]], days: int, now: datetime) -> List[Dict[str, Any]]:
    """Revenue per calendar day ("YYYY-MM-DD"), oldest first, one entry per day."""
    keys = [(now - timedelta(days=offset)).strftime("%Y-%m-%d") for offset in range(days - 1, -1, -1)]
    df = pl.DataFrame(rows, schema={"created_at": pl.Datetime, "total_price": pl.Float64})
    daily = (
        df.with_columns(pl.col("created_at").dt.strftime("%Y-%m-%d").alias("day"))
        .filter(pl.col("day").is_in(keys))
        .group_by("day")
        .agg(pl.col("total_price").sum().alias("revenue"))
    )
    found = {row["day"]: row["revenue"] for row in daily.to_dicts()}
    return [{"name": key, "value": round(found.get(key, 0.0), 2)} for key in keys]


def units_by_vendor(
    rows: List[Dict[str, Any]],
    shop_names: Dict[str, str],
    limit: int = 10,
) -> List[Dict[str, Any]]:
    df = pl.DataFrame(rows, schema={"vendor_id": pl.Utf8, "quantity": pl.Int64})
    ranked = (
        df.group_by("vendor_id")
        .agg(pl.col("quantity").sum().alias("units"))
        .sort(["units", "vendor_id"], descending=[True, False], nulls_last=True)
        .head(limit)
    )
    return [
        {
            "name": shop_names.get(row["vendor_id"], PLATFORM) if row["vendor_id"] else PLATFORM,
            "value": row["units"],
        }
        for row in ranked.to_dicts()
    ]


def product_sales_by_month(rows: List[Dict[str, Any]], months: int, now: datetime) -> List[Dict[str, Any]]:
    keys = trailing_months(now, months)
    df = pl.DataFrame(
        rows,
        schema={"created_at": pl.Datetime, "quantity": pl.Int64, "price": pl.Float64},
    )
    monthly = (
        df.with_columns([
            pl.col("created_at").dt.strftime("%Y-%m").alias("month"),
            (pl.col("price") * pl.col("quantity")).alias("revenue"),
        ])
        .filter(pl.col("month").is_in(keys))
        .group_by("month")
        .agg([
            pl.col("quantity").sum().alias("count"),
            pl.col("revenue").sum().alias("revenue"),
        ])
    )
    found = {row["month"]: row for row in monthly.to_dicts()}

    return [
        {
            "month": key,
            "count": found[key]["count"] if key in found else 0,
            "revenue": round(found[key]["revenue"], 2) if key in found else 0.0,
        }
        for key in keys
    ]


# =============================================================================
# SERVICE
# =============================================================================

class AdminDashboard:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def dashboard_stats(self, admin: Principal, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Headline numbers and chart series for the admin home page.

        Returns:
            Dictionary with totals, revenue_by_day (7 days), orders_by_vendor
            (top 10 by units) and products_by_category
        """
        self._require_admin(admin)
        now = now or utcnow()
        live_order = Order.status != OrderStatus.CANCELLED

        totals = (await self.session.execute(
            select(
                func.count(Order.id).label("orders"),
                func.coalesce(func.sum(Order.total_price), 0).label("revenue"),
            ).where(live_order)
        )).one()
        total_customers = await self.session.scalar(select(func.count(User.id)))
        total_products = await self.session.scalar(select(func.count(Product.id)))

        since = (now - timedelta(days=6)).replace(hour=0, minute=0, second=0, microsecond=0)
        recent = await self.session.execute(
            select(Order.created_at, Order.total_price).where(live_order, Order.created_at >= since)
        )
        daily = revenue_by_day(
            [{"created_at": row.created_at, "total_price": float(row.total_price)} for row in recent],
            7,
            now,
        )

        lines = await self.session.execute(
            select(OrderItem.vendor_id, OrderItem.quantity)
            .join(Order, Order.id == OrderItem.order_id)
            .where(live_order)
        )
        line_rows = [
            {"vendor_id": str(row.vendor_id) if row.vendor_id else None, "quantity": row.quantity}
            for row in lines
        ]
        shops = await self.session.execute(select(Shop.id, Shop.name))
        by_vendor = units_by_vendor(line_rows, {str(row.id): row.name for row in shops})

        logger.debug("Admin dashboard computed", orders=totals.orders, lines=len(line_rows))
        return {
            "total_revenue": round(float(totals.revenue), 2),
            "total_orders": totals.orders,
            "total_customers": total_customers or 0,
            "total_products": total_products or 0,
            "revenue_by_day": daily,
            "orders_by_vendor": by_vendor,
            "products_by_category": await self._products_by_category(),
        }

    async def product_stats(
        self,
        admin: Principal,
        product_id: uuid.UUID,
        months: int = 12,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Product analytics plus its ten most recent buyers and monthly sales."""
        self._require_admin(admin)
        now = now or utcnow()
        stats = await ProductService(self.session).product_analytics(admin, product_id)

        recent = (await self.session.execute(
            select(
                Order.id,
                Order.user_id,
                Order.total_price,
                Order.created_at,
                func.sum(OrderItem.quantity).label("quantity"),
            )
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(OrderItem.product_id == product_id, Order.status.in_(RECENT_BUYER_STATUSES))
            .group_by(Order.id, Order.user_id, Order.total_price, Order.created_at)
            .order_by(Order.created_at.desc())
            .limit(10)
        )).all()
        users = {}
        if recent:
            result = await self.session.execute(
                select(User.id, User.name, User.email).where(User.id.in_(list({row.user_id for row in recent})))
            )
            users = {row.id: row for row in result}

        sales = await self.session.execute(
            select(Order.created_at, OrderItem.quantity, OrderItem.price)
            .join(Order, Order.id == OrderItem.order_id)
            .where(OrderItem.product_id == product_id, Order.status != OrderStatus.CANCELLED)
        )

        stats["recent_buyers"] = [
            {
                "user_id": str(row.user_id),
                "name": users[row.user_id].name if row.user_id in users else None,
                "email": users[row.user_id].email if row.user_id in users else None,
                "order_total": float(row.total_price),
                "quantity": int(row.quantity),
                "date": row.created_at,
            }
            for row in recent
        ]
        stats["sales_by_month"] = product_sales_by_month(
            [
                {"created_at": row.created_at, "quantity": row.quantity, "price": float(row.price)}
                for row in sales
            ],
            months,
            now,
        )
        return stats

    async def _products_by_category(self) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(Category.name, func.count(Product.id).label("count"))
            .select_from(Product)
            .outerjoin(Category, Category.id == Product.category_id)
            .group_by(Category.name)
            .order_by(func.count(Product.id).desc(), Category.name)
        )
        return [{"name": row.name or UNCATEGORIZED, "value": row.count} for row in result]

    def _require_admin(self, admin: Principal) -> None:
        if not admin.is_admin:
            raise AuthorizationError("Only admins can view marketplace statistics", code="ADMIN_ONLY")
