"""
Product Service

Catalog writes with their denormalised side effects:
- create: category and shop product counters, new_product follower fan-out
- update: category moves, active counters, vendor moves, discount fan-out
  when a discount becomes active
- delete: removes carts, wishlists, reviews and notifications that point
  at the product, detaches order lines and decrements counters
- approval workflow, admin bulk update and delete, per-product analytics
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.pricing import generate_sku, generate_slug, product_discount_active
from marketplace.config import get_settings
from marketplace.database.models import (
    ApprovalStatus,
    CartItem,
    Category,
    DiscountType,
    NotificationType,
    OrderItem,
    Product,
    ProductStatus,
    Review,
    Shop,
    ShopStatus,
    WishlistItem,
    utcnow,
)
from marketplace.errors import AuthorizationError, NotFoundError, ValidationError
from marketplace.fanout import SideEffectRunner
from marketplace.principal import Principal
from marketplace.schemas import BulkProductUpdate, DiscountInput, ProductCreate, ProductUpdate
from marketplace.social.notifications import NotificationService, discount_message, new_product_message

logger = structlog.get_logger(__name__)
settings = get_settings()

# Columns a PATCH may change but never clear
REQUIRED_FIELDS = frozenset({
    "name",
    "price",
    "stock",
    "low_stock_threshold",
    "track_inventory",
    "allow_backorders",
    "status",
    "is_featured",
    "tags",
    "colors",
    "sizes",
    "images",
})

# Fields a bulk update may set
BULK_FIELDS = ("status", "category_id", "is_featured")


@dataclass
class PlacementSnapshot:
    """Fields whose change drives counter side effects"""
    category_id: Optional[uuid.UUID]
    vendor_id: Optional[uuid.UUID]
    is_active: bool
    discount_active: bool

    @classmethod
    def of(cls, product: Product) -> "PlacementSnapshot":
        return cls(
            category_id=product.category_id,
            vendor_id=product.vendor_id,
            is_active=product.status == ProductStatus.ACTIVE,
            discount_active=product_discount_active(product),
        )


def same_offer(product: Product, discount: DiscountInput) -> bool:
    """Same kind, value and window as the discount already on the product."""
    return (
        product.discount_type == discount.type
        and product.discount_value == discount.value
        and product.discount_start == discount.start_date
        and product.discount_end == discount.end_date
    )


def apply_discount(product: Product, discount: Optional[DiscountInput]) -> None:
    """Replace the discount window; usage is only reset for a new offer."""
    if discount is None:
        discount = DiscountInput(type=DiscountType.NONE)
    keep_usage = same_offer(product, discount) and product.discount_used_count is not None
    product.discount_type = discount.type
    product.discount_value = discount.value
    product.discount_start = discount.start_date
    product.discount_end = discount.end_date
    product.discount_min_quantity = discount.min_quantity
    product.discount_max_uses = discount.max_uses
    if not keep_usage:
        product.discount_used_count = 0


class ProductService:
    def __init__(self, session: AsyncSession, notifications: Optional[NotificationService] = None):
        self.session = session
        self.notifications = notifications or NotificationService(session)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_product(self, actor: Principal, payload: ProductCreate) -> Product:
        await self._require_category(payload.category_id)
        if payload.subcategory_id:
            await self._require_category(payload.subcategory_id)
        vendor_id = await self._resolve_vendor(actor, payload.vendor_id)

        now = utcnow()
        product = Product(
            name=payload.name,
            slug=generate_slug(payload.name, now),
            sku=payload.sku or generate_sku(now),
            description=payload.description,
            short_description=payload.short_description,
            barcode=payload.barcode,
            brand=payload.brand,
            price=payload.price,
            compare_at_price=payload.compare_at_price,
            cost_price=payload.cost_price,
            stock=payload.stock,
            low_stock_threshold=(
                payload.low_stock_threshold
                if payload.low_stock_threshold is not None
                else settings.catalog.default_low_stock_threshold
            ),
            track_inventory=payload.track_inventory,
            allow_backorders=payload.allow_backorders,
            category_id=payload.category_id,
            subcategory_id=payload.subcategory_id,
            vendor_id=vendor_id,
            created_by_id=actor.id,
            is_admin_product=actor.is_admin and vendor_id is None,
            tags=list(payload.tags),
            colors=list(payload.colors),
            sizes=list(payload.sizes),
            images=[image.model_dump() for image in payload.images],
            status=payload.status,
            is_featured=payload.is_featured,
            approval_status=ApprovalStatus.APPROVED,
            total_orders=0,
            views=0,
        )
        apply_discount(product, payload.discount)
        if product.status == ProductStatus.ACTIVE:
            product.is_published = True
            product.published_at = now

        self.session.add(product)
        await self.session.commit()

        product_id, name = product.id, product.name
        snapshot = PlacementSnapshot.of(product)
        logger.info(
            "Product created",
            product_id=str(product_id),
            vendor_id=str(vendor_id) if vendor_id else None,
            category_id=str(snapshot.category_id),
        )

        runner = SideEffectRunner(self.session, "create_product", product_id=str(product_id))
        await runner.run(
            "category_counters",
            lambda: self._adjust_category(snapshot.category_id, 1, 1 if snapshot.is_active else 0),
        )
        if vendor_id:
            await runner.run("shop_products", lambda: self._adjust_shop_products(vendor_id, 1))
            await runner.run("follower_fanout", lambda: self._announce_new_product(vendor_id, product_id, name))
        runner.finish()

        return await self._reload(product_id)

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_product(self, actor: Principal, product_id: uuid.UUID, payload: ProductUpdate) -> Product:
        product = await self._reload(product_id)
        await self._assert_can_edit(actor, product)

        data = payload.model_dump(exclude_unset=True)
        cleared = sorted(key for key in REQUIRED_FIELDS if key in data and data[key] is None)
        if cleared:
            raise ValidationError(
                "Required fields cannot be cleared", code="FIELD_REQUIRED", details={"fields": cleared}
            )
        before = PlacementSnapshot.of(product)

        if "vendor_id" in data:
            if not actor.is_admin:
                raise AuthorizationError("Only admins can move products between shops", code="ADMIN_ONLY")
            if data["vendor_id"] is not None and await self.session.get(Shop, data["vendor_id"]) is None:
                raise NotFoundError("Shop not found", code="SHOP_NOT_FOUND")
            product.is_admin_product = data["vendor_id"] is None
        if data.get("category_id"):
            await self._require_category(data["category_id"])
        elif "category_id" in data:
            raise ValidationError("Category is required", code="CATEGORY_REQUIRED")
        if data.get("subcategory_id"):
            await self._require_category(data["subcategory_id"])

        if "discount" in data:
            data.pop("discount")
            apply_discount(product, payload.discount)
        if "images" in data:
            data["images"] = [image.model_dump() for image in payload.images or []]
        if data.get("name") and data["name"] != product.name:
            product.slug = generate_slug(data["name"])

        for key, value in data.items():
            setattr(product, key, value)

        if product.status == ProductStatus.ACTIVE and not product.is_published:
            product.is_published = True
            product.published_at = utcnow()

        await self.session.commit()

        after = PlacementSnapshot.of(product)
        name = product.name
        logger.info("Product updated", product_id=str(product_id), fields=sorted(data))

        runner = SideEffectRunner(self.session, "update_product", product_id=str(product_id))
        if before.category_id != after.category_id:
            await runner.run("category_move", lambda: self._move_category(before, after))
        elif before.is_active != after.is_active:
            await runner.run(
                "category_active",
                lambda: self._adjust_category(after.category_id, 0, 1 if after.is_active else -1),
            )
        if before.vendor_id != after.vendor_id:
            await runner.run("shop_move", lambda: self._move_shop(before.vendor_id, after.vendor_id))
        if after.vendor_id and after.discount_active and not before.discount_active:
            await runner.run("discount_fanout", lambda: self._announce_discount(after.vendor_id, product_id))
        runner.finish()

        return await self._reload(product_id)

    async def review_product(
        self,
        actor: Principal,
        product_id: uuid.UUID,
        decision: ApprovalStatus,
        notes: Optional[str] = None,
    ) -> Product:
        """Admin approval workflow"""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can review products", code="ADMIN_ONLY")
        if decision == ApprovalStatus.PENDING:
            raise ValidationError("Decision must approve, reject or request changes", code="INVALID_DECISION")

        product = await self.get_product(product_id)
        product.approval_status = decision
        product.approval_notes = notes
        product.approved_by_id = actor.id
        product.approved_at = utcnow() if decision == ApprovalStatus.APPROVED else None
        await self.session.commit()

        logger.info("Product reviewed", product_id=str(product_id), decision=decision.value)
        return product

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_product(self, actor: Principal, product_id: uuid.UUID) -> None:
        product = await self.get_product(product_id)
        await self._assert_can_edit(actor, product)
        await self.purge(product)

    # =========================================================================
    # BULK
    # =========================================================================

    async def bulk_update(self, admin: Principal, payload: BulkProductUpdate) -> int:
        """
        Apply status, category or featured changes to many products.

        Each product goes through update_product so category counters and
        discount fan-out stay consistent. Unknown ids are skipped.

        Returns:
            Number of products updated
        """
        if not admin.is_admin:
            raise AuthorizationError("Only admins can bulk update products", code="ADMIN_ONLY")
        changes = payload.model_dump(include=set(BULK_FIELDS), exclude_none=True)
        if not changes:
            raise ValidationError("No valid updates provided", code="NO_UPDATES", details={"allowed": list(BULK_FIELDS)})
        if "category_id" in changes:
            await self._require_category(changes["category_id"])

        update_payload = ProductUpdate(**changes)
        updated = 0
        for product_id in dict.fromkeys(payload.product_ids):
            if await self.session.get(Product, product_id) is None:
                continue
            await self.update_product(admin, product_id, update_payload)
            updated += 1

        logger.info(
            "Products bulk updated",
            requested=len(payload.product_ids),
            updated=updated,
            fields=sorted(changes),
        )
        return updated

    async def bulk_delete(self, admin: Principal, product_ids: List[uuid.UUID]) -> int:
        if not admin.is_admin:
            raise AuthorizationError("Only admins can bulk delete products", code="ADMIN_ONLY")

        removed = 0
        for product_id in dict.fromkeys(product_ids):
            product = await self.session.get(Product, product_id)
            if product is None:
                continue
            await self.purge(product)
            removed += 1

        logger.info("Products bulk deleted", requested=len(product_ids), deleted=removed)
        return removed

    async def purge(self, product: Product) -> None:
        """Remove a product and everything that points at it."""
        product_id = product.id
        snapshot = PlacementSnapshot.of(product)

        await self.session.execute(delete(WishlistItem).where(WishlistItem.product_id == product_id))
        await self.session.execute(delete(CartItem).where(CartItem.product_id == product_id))
        await self.session.execute(delete(Review).where(Review.product_id == product_id))
        await self.notifications.delete_for_product(product_id)
        await self.session.execute(
            update(OrderItem)
            .where(OrderItem.product_id == product_id)
            .values(product_id=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.delete(product)
        await self.session.commit()

        logger.info("Product deleted", product_id=str(product_id))

        runner = SideEffectRunner(self.session, "delete_product", product_id=str(product_id))
        await runner.run(
            "category_counters",
            lambda: self._adjust_category(snapshot.category_id, -1, -1 if snapshot.is_active else 0),
        )
        if snapshot.vendor_id:
            await runner.run("shop_products", lambda: self._adjust_shop_products(snapshot.vendor_id, -1))
        runner.finish()

    # =========================================================================
    # READS
    # =========================================================================

    async def get_product(self, product_id: uuid.UUID) -> Product:
        product = await self.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND", details={"product_id": str(product_id)})
        return product

    async def list_products(
        self,
        category_id: Optional[uuid.UUID] = None,
        vendor_id: Optional[uuid.UUID] = None,
        status: Optional[ProductStatus] = ProductStatus.ACTIVE,
        page: int = 1,
        limit: int = 20,
    ) -> List[Product]:
        query = select(Product)
        if status:
            query = query.where(Product.status == status)
        if category_id:
            query = query.where((Product.category_id == category_id) | (Product.subcategory_id == category_id))
        if vendor_id:
            query = query.where(Product.vendor_id == vendor_id)

        result = await self.session.execute(
            query.order_by(Product.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all())

    async def product_analytics(self, actor: Principal, product_id: uuid.UUID) -> Dict[str, Any]:
        product = await self.get_product(product_id)
        await self._assert_can_edit(actor, product)

        insights = product.buyer_insights or {}
        top_regions = [
            {
                "region": ", ".join(part for part in (loc.get("city"), loc.get("state"), loc.get("country")) if part)
                or "Unknown",
                "count": loc.get("count", 0),
            }
            for loc in insights.get("top_locations", [])
        ]
        return {
            "product_id": str(product.id),
            "name": product.name,
            "stats": {
                "views": product.views,
                "unique_views": product.unique_views,
                "added_to_cart": product.added_to_cart,
                "added_to_wishlist": product.added_to_wishlist,
                "total_orders": product.total_orders,
                "total_quantity_sold": product.total_quantity_sold,
                "total_revenue": float(product.total_revenue or 0),
                "total_profit": float(product.total_profit or 0),
                "conversion_rate": product.conversion_rate,
                "last_sold_at": product.last_sold_at.isoformat() if product.last_sold_at else None,
            },
            "ratings": {
                "average_rating": round(product.average_rating or 0, 1),
                "total_reviews": product.total_reviews,
                "distribution": product.rating_distribution,
            },
            "buyer_insights": {
                "total_buyers": insights.get("total_buyers", 0),
                "repeat_buyers": insights.get("repeat_buyers", 0),
                "repeat_buyer_rate": insights.get("repeat_buyer_rate", 0),
                "average_order_quantity": insights.get("average_order_quantity", 0),
                "buyers_by_month": insights.get("buyers_by_month", []),
            },
            "top_regions": top_regions,
        }

    # =========================================================================
    # SIDE EFFECTS
    # =========================================================================

    async def _adjust_category(self, category_id: Optional[uuid.UUID], total: int, active: int) -> None:
        if category_id is None:
            return
        await self.session.execute(
            update(Category)
            .where(Category.id == category_id)
            .values(
                total_products=Category.total_products + total,
                active_products=Category.active_products + active,
            )
            .execution_options(synchronize_session=False)
        )

    async def _move_category(self, before: PlacementSnapshot, after: PlacementSnapshot) -> None:
        await self._adjust_category(before.category_id, -1, -1 if before.is_active else 0)
        await self._adjust_category(after.category_id, 1, 1 if after.is_active else 0)

    async def _adjust_shop_products(self, shop_id: uuid.UUID, delta: int) -> None:
        await self.session.execute(
            update(Shop)
            .where(Shop.id == shop_id)
            .values(total_products=Shop.total_products + delta)
            .execution_options(synchronize_session=False)
        )

    async def _move_shop(self, old_vendor: Optional[uuid.UUID], new_vendor: Optional[uuid.UUID]) -> None:
        if old_vendor:
            await self._adjust_shop_products(old_vendor, -1)
        if new_vendor:
            await self._adjust_shop_products(new_vendor, 1)

    async def _announce_new_product(self, shop_id: uuid.UUID, product_id: uuid.UUID, product_name: str) -> None:
        shop = await self.session.get(Shop, shop_id)
        if shop is None:
            return
        await self.notifications.notify_followers(
            shop_id,
            NotificationType.NEW_PRODUCT,
            "New Product",
            new_product_message(shop.name, product_name),
            product_id=product_id,
        )

    async def _announce_discount(self, shop_id: uuid.UUID, product_id: uuid.UUID) -> None:
        shop = await self.session.get(Shop, shop_id)
        product = await self.session.get(Product, product_id)
        if shop is None or product is None:
            return
        await self.notifications.notify_followers(
            shop_id,
            NotificationType.PRODUCT_DISCOUNT,
            "New Discount!",
            discount_message(shop.name, product.name, product.discount_type, product.discount_value),
            product_id=product_id,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _reload(self, product_id: uuid.UUID) -> Product:
        product = await self.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND", details={"product_id": str(product_id)})
        return product

    async def _require_category(self, category_id: uuid.UUID) -> Category:
        category = await self.session.get(Category, category_id)
        if category is None:
            raise ValidationError("Category does not exist", code="CATEGORY_NOT_FOUND", details={"category_id": str(category_id)})
        return category

    async def _resolve_vendor(self, actor: Principal, requested: Optional[uuid.UUID]) -> Optional[uuid.UUID]:
        if actor.is_admin:
            if requested is not None and await self.session.get(Shop, requested) is None:
                raise NotFoundError("Shop not found", code="SHOP_NOT_FOUND")
            return requested

        shop = await self.session.scalar(select(Shop).where(Shop.owner_id == actor.id))
        if shop is None:
            raise AuthorizationError("You need a shop to add products", code="NO_SHOP")
        if shop.status != ShopStatus.APPROVED:
            raise AuthorizationError("Your shop is not approved", code="SHOP_NOT_APPROVED")
        if requested is not None and requested != shop.id:
            raise AuthorizationError("You can only add products to your own shop", code="NOT_SHOP_OWNER")
        return shop.id

    async def _assert_can_edit(self, actor: Principal, product: Product) -> None:
        if actor.is_admin:
            return
        shop = await self.session.scalar(select(Shop).where(Shop.owner_id == actor.id))
        if shop is None or product.vendor_id != shop.id:
            raise AuthorizationError("You can only manage your own products", code="NOT_PRODUCT_OWNER")
