"""
Catalog Search

Read-only queries behind the storefront listings and the shopping
assistant: product search, best deals, top shops, shop search and
site-wide stats. Nothing in this module writes.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import String, cast, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import get_settings
from marketplace.database.models import Product, ProductStatus, Shop, ShopStatus, StockStatus

logger = structlog.get_logger(__name__)
settings = get_settings()


class CatalogSearch:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def search_products(
        self,
        query: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        category_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> List[Product]:
        """Active products matching text and filters, best sellers first."""
        statement = select(Product).where(Product.status == ProductStatus.ACTIVE)

        if query:
            pattern = f"%{query.strip()}%"
            statement = statement.where(or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                Product.brand.ilike(pattern),
                cast(Product.tags, String).ilike(pattern),
            ))
        if min_price is not None:
            statement = statement.where(Product.price >= min_price)
        if max_price is not None:
            statement = statement.where(Product.price <= max_price)
        if category_id is not None:
            statement = statement.where(
                or_(Product.category_id == category_id, Product.subcategory_id == category_id)
            )

        result = await self.session.execute(
            statement
            .order_by(desc(Product.total_orders), desc(Product.average_rating), Product.name)
            .limit(limit or settings.catalog.search_limit)
        )
        products = list(result.scalars().all())
        logger.debug("Product search", query=query, results=len(products))
        return products

    async def best_deals(self, limit: Optional[int] = None) -> List[Product]:
        """Active, discounted, in-stock products with the deepest discount first."""
        result = await self.session.execute(
            select(Product)
            .where(
                Product.status == ProductStatus.ACTIVE,
                Product.is_on_sale.is_(True),
                Product.stock_status == StockStatus.IN_STOCK,
            )
            .order_by(desc(Product.discount_value), desc(Product.total_orders))
            .limit(limit or settings.catalog.search_limit)
        )
        return list(result.scalars().all())

    async def top_shops(self, limit: Optional[int] = None) -> List[Shop]:
        result = await self.session.execute(
            select(Shop)
            .where(Shop.status == ShopStatus.APPROVED, Shop.is_active.is_(True))
            .order_by(desc(Shop.average_rating), desc(Shop.total_orders))
            .limit(limit or settings.catalog.search_limit)
        )
        return list(result.scalars().all())

    async def search_shops(self, query: Optional[str] = None, limit: int = 6) -> List[Shop]:
        statement = select(Shop).where(Shop.status == ShopStatus.APPROVED, Shop.is_active.is_(True))
        if query and query.strip():
            pattern = f"%{query.strip()}%"
            statement = statement.where(or_(Shop.name.ilike(pattern), Shop.description.ilike(pattern)))

        result = await self.session.execute(
            statement.order_by(desc(Shop.average_rating), desc(Shop.total_orders)).limit(limit)
        )
        return list(result.scalars().all())

    async def site_stats(self) -> Dict[str, Any]:
        total_products = await self.session.scalar(
            select(func.count(Product.id)).where(Product.status == ProductStatus.ACTIVE)
        )
        total_shops = await self.session.scalar(
            select(func.count(Shop.id)).where(Shop.status == ShopStatus.APPROVED)
        )
        brands = await self.session.execute(
            select(Product.brand, func.count(Product.id).label("products"))
            .where(Product.status == ProductStatus.ACTIVE, Product.brand.is_not(None), Product.brand != "")
            .group_by(Product.brand)
            .order_by(desc("products"), Product.brand)
            .limit(10)
        )
        return {
            "total_products": total_products or 0,
            "total_shops": total_shops or 0,
            "popular_brands": [{"name": row.brand, "count": row.products} for row in brands],
        }
