"""
Shop Service

Vendor shops and their moderation workflow:
- a user registers one shop, which starts pending
- admins approve, reject, suspend and reactivate; approval makes the
  owner a vendor and every decision is sent to the owner
- vendor dashboards (stats recompute, sales analytics, customers)
- deleting a shop removes its products, reviews, follows and
  notifications and demotes the owner
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional
import uuid

import structlog
from sqlalchemy import delete, distinct, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.pricing import slugify
from marketplace.catalog.products import ProductService
from marketplace.config import get_settings
from marketplace.database.models import (
    Category,
    Notification,
    NotificationType,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    Review,
    Shop,
    ShopFollow,
    ShopStatus,
    User,
    UserRole,
    utcnow,
)
from marketplace.errors import AuthorizationError, NotFoundError, ValidationError
from marketplace.fanout import SideEffectRunner
from marketplace.principal import Principal
from marketplace.schemas import ShopCreate, ShopUpdate
from marketplace.social.notifications import NotificationService
from marketplace.social.reviews import ReviewAggregator
from marketplace.vendors.analytics import customer_spend, lines_frame, summarize_vendor_sales

logger = structlog.get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class ShopTransition:
    """One admin decision in the shop moderation workflow"""
    name: str
    allowed_from: FrozenSet[ShopStatus]
    target: ShopStatus
    reason_required: bool
    title: str


APPROVE = ShopTransition(
    "approve", frozenset({ShopStatus.PENDING, ShopStatus.REJECTED}), ShopStatus.APPROVED, False, "Shop Approved"
)
REJECT = ShopTransition("reject", frozenset({ShopStatus.PENDING}), ShopStatus.REJECTED, True, "Shop Rejected")
SUSPEND = ShopTransition("suspend", frozenset({ShopStatus.APPROVED}), ShopStatus.SUSPENDED, True, "Shop Suspended")
REACTIVATE = ShopTransition(
    "reactivate", frozenset({ShopStatus.SUSPENDED}), ShopStatus.APPROVED, False, "Shop Reactivated"
)


def decision_message(shop_name: str, transition: ShopTransition, reason: Optional[str]) -> str:
    messages = {
        ShopStatus.APPROVED: f'Your shop "{shop_name}" is approved. You can start adding products.',
        ShopStatus.REJECTED: f'Your shop "{shop_name}" was not approved.',
        ShopStatus.SUSPENDED: f'Your shop "{shop_name}" has been suspended.',
    }
    message = messages[transition.target]
    if reason:
        message = f"{message} Reason: {reason}"
    return message


class ShopService:
    def __init__(self, session: AsyncSession, notifications: Optional[NotificationService] = None):
        self.session = session
        self.notifications = notifications or NotificationService(session)

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    async def register_shop(self, owner: Principal, payload: ShopCreate) -> Shop:
        """
        Register the caller's shop.

        A rejected application may be resubmitted: the existing record is
        refreshed and goes back to pending. Any other existing shop blocks
        registration.
        """
        shop = await self.session.scalar(select(Shop).where(Shop.owner_id == owner.id))
        if shop is not None and shop.status != ShopStatus.REJECTED:
            raise ValidationError("You already have a shop", code="SHOP_EXISTS", details={"shop_id": str(shop.id)})

        data = payload.model_dump()
        if shop is None:
            shop = Shop(owner_id=owner.id, slug=await self._unique_slug(payload.name), **data)
            self.session.add(shop)
        else:
            if payload.name != shop.name:
                shop.slug = await self._unique_slug(payload.name, exclude_id=shop.id)
            for key, value in data.items():
                setattr(shop, key, value)
        shop.status = ShopStatus.PENDING
        shop.status_reason = None
        shop.status_updated_at = utcnow()

        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ValidationError("A shop with this name already exists", code="DUPLICATE_SHOP")

        logger.info("Shop registered", shop_id=str(shop.id), owner_id=str(owner.id))
        return shop

    async def update_shop(self, actor: Principal, shop_id: uuid.UUID, payload: ShopUpdate) -> Shop:
        shop = await self.get_shop(shop_id)
        if not actor.is_admin and shop.owner_id != actor.id:
            raise AuthorizationError("You can only edit your own shop", code="NOT_SHOP_OWNER")

        data = payload.model_dump(exclude_unset=True)
        if data.get("name") and data["name"] != shop.name:
            shop.slug = await self._unique_slug(data["name"], exclude_id=shop.id)
        for key, value in data.items():
            setattr(shop, key, value)

        await self.session.commit()
        logger.info("Shop updated", shop_id=str(shop_id), fields=sorted(data))
        return shop

    # =========================================================================
    # MODERATION
    # =========================================================================

    async def approve(
        self,
        admin: Principal,
        shop_id: uuid.UUID,
        commission_rate: Optional[float] = None,
        admin_notes: Optional[str] = None,
    ) -> Shop:
        shop = await self._transition(admin, shop_id, APPROVE, None)
        if commission_rate is not None:
            shop.commission_rate = commission_rate
        if admin_notes is not None:
            shop.admin_notes = admin_notes
        await self.session.execute(
            update(User).where(User.id == shop.owner_id).values(role=UserRole.VENDOR)
        )
        return await self._commit_decision(shop, APPROVE, None)

    async def reject(self, admin: Principal, shop_id: uuid.UUID, reason: Optional[str]) -> Shop:
        shop = await self._transition(admin, shop_id, REJECT, reason)
        return await self._commit_decision(shop, REJECT, reason)

    async def suspend(self, admin: Principal, shop_id: uuid.UUID, reason: Optional[str]) -> Shop:
        shop = await self._transition(admin, shop_id, SUSPEND, reason)
        return await self._commit_decision(shop, SUSPEND, reason)

    async def reactivate(self, admin: Principal, shop_id: uuid.UUID) -> Shop:
        shop = await self._transition(admin, shop_id, REACTIVATE, None)
        return await self._commit_decision(shop, REACTIVATE, None)

    async def _transition(
        self,
        admin: Principal,
        shop_id: uuid.UUID,
        transition: ShopTransition,
        reason: Optional[str],
    ) -> Shop:
        if not admin.is_admin:
            raise AuthorizationError("Only admins can moderate shops", code="ADMIN_ONLY")
        shop = await self.get_shop(shop_id)
        if shop.status not in transition.allowed_from:
            raise ValidationError(
                f"Cannot {transition.name} a shop that is {shop.status.value}",
                code="INVALID_SHOP_TRANSITION",
                details={"from": shop.status.value, "to": transition.target.value},
            )
        if transition.reason_required and not (reason and reason.strip()):
            raise ValidationError("A reason is required", code="REASON_REQUIRED")

        shop.status = transition.target
        shop.status_reason = reason.strip() if reason else None
        shop.status_updated_at = utcnow()
        shop.status_updated_by_id = admin.id
        return shop

    async def _commit_decision(self, shop: Shop, transition: ShopTransition, reason: Optional[str]) -> Shop:
        await self.session.commit()

        shop_id, owner_id = shop.id, shop.owner_id
        message = decision_message(shop.name, transition, reason)
        logger.info("Shop status changed", shop_id=str(shop_id), status=transition.target.value)

        runner = SideEffectRunner(self.session, f"{transition.name}_shop", shop_id=str(shop_id))
        await runner.run("owner_notification", lambda: self.notifications.notify(
            owner_id,
            NotificationType.GENERAL,
            transition.title,
            message,
            shop_id=shop_id,
        ))
        runner.finish()

        return await self._reload(shop_id)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_shop(self, shop_id: uuid.UUID) -> Shop:
        shop = await self.session.get(Shop, shop_id)
        if shop is None:
            raise NotFoundError("Shop not found", code="SHOP_NOT_FOUND", details={"shop_id": str(shop_id)})
        return shop

    async def get_my_shop(self, owner: Principal) -> Shop:
        shop = await self.session.scalar(select(Shop).where(Shop.owner_id == owner.id))
        if shop is None:
            raise NotFoundError("You do not have a shop", code="NO_SHOP")
        return shop

    async def list_shops(
        self,
        status: Optional[ShopStatus] = ShopStatus.APPROVED,
        page: int = 1,
        limit: int = 20,
    ) -> List[Shop]:
        query = select(Shop)
        if status:
            query = query.where(Shop.status == status)
        result = await self.session.execute(
            query.order_by(Shop.created_at.desc()).offset((max(page, 1) - 1) * limit).limit(limit)
        )
        return list(result.scalars().all())

    # =========================================================================
    # VENDOR DASHBOARD
    # =========================================================================

    async def vendor_stats(self, owner: Principal) -> Shop:
        """Rebuild the shop counters from orders, products and shop reviews."""
        shop = await self.get_my_shop(owner)
        shop_id = shop.id

        live_lines = (
            select(OrderItem)
            .join(Order, Order.id == OrderItem.order_id)
            .where(OrderItem.vendor_id == shop_id, Order.status != OrderStatus.CANCELLED)
            .subquery()
        )
        row = (await self.session.execute(
            select(
                func.count(distinct(live_lines.c.order_id)).label("orders"),
                func.coalesce(func.sum(live_lines.c.price * live_lines.c.quantity), 0).label("revenue"),
            )
        )).one()
        products = await self.session.scalar(select(func.count(Product.id)).where(Product.vendor_id == shop_id))

        await self.session.execute(
            update(Shop)
            .where(Shop.id == shop_id)
            .values(total_orders=row.orders or 0, total_revenue=row.revenue or 0, total_products=products or 0)
            .execution_options(synchronize_session=False)
        )
        await ReviewAggregator(self.session, self.notifications).recompute_shop_rating(shop_id)
        await self.session.commit()

        logger.info("Vendor stats recomputed", shop_id=str(shop_id), orders=row.orders, products=products)
        return await self._reload(shop_id)

    async def shop_analytics(self, owner: Principal, months: Optional[int] = None) -> Dict[str, Any]:
        shop = await self.get_my_shop(owner)
        df = lines_frame(await self._vendor_lines(shop.id))
        summary = summarize_vendor_sales(df, months or settings.catalog.analytics_months)

        names = await self._category_names([entry["category_id"] for entry in summary["top_categories"]])
        for entry in summary["top_categories"]:
            entry["name"] = names.get(entry["category_id"], "Unknown")

        engagement = (await self.session.execute(
            select(
                func.coalesce(func.sum(Product.views), 0).label("views"),
                func.coalesce(func.sum(Product.added_to_cart), 0).label("added_to_cart"),
                func.coalesce(func.sum(Product.added_to_wishlist), 0).label("added_to_wishlist"),
            ).where(Product.vendor_id == shop.id)
        )).one()
        followers = await self.session.scalar(select(func.count(ShopFollow.id)).where(ShopFollow.shop_id == shop.id))

        summary["engagement"] = {
            "views": int(engagement.views),
            "added_to_cart": int(engagement.added_to_cart),
            "added_to_wishlist": int(engagement.added_to_wishlist),
            "followers": followers or 0,
        }
        summary["shop"] = {
            "id": str(shop.id),
            "name": shop.name,
            "average_rating": round(shop.average_rating or 0, 1),
            "total_reviews": shop.total_reviews,
        }
        return summary

    async def shop_customers(self, owner: Principal) -> List[Dict[str, Any]]:
        shop = await self.get_my_shop(owner)
        customers = customer_spend(lines_frame(await self._vendor_lines(shop.id)))
        if not customers:
            return []

        result = await self.session.execute(
            select(User.id, User.name, User.email).where(
                User.id.in_([uuid.UUID(entry["user_id"]) for entry in customers])
            )
        )
        users = {str(row.id): row for row in result}
        for entry in customers:
            user = users.get(entry["user_id"])
            entry["name"] = user.name if user else None
            entry["email"] = user.email if user else None
        return customers

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_shop_cascade(self, admin: Principal, shop_id: uuid.UUID) -> int:
        if not admin.is_admin:
            raise AuthorizationError("Only admins can delete shops", code="ADMIN_ONLY")
        shop = await self.get_shop(shop_id)
        return await self._cascade(shop)

    async def delete_my_shop(self, owner: Principal, confirm_name: str) -> int:
        """
        Owner-initiated shop deletion.

        The owner repeats the shop name to confirm. Runs the same cascade
        as the admin path.

        Returns:
            Number of products removed with the shop
        """
        shop = await self.get_my_shop(owner)
        if confirm_name.strip() != shop.name:
            raise ValidationError(
                "Type the shop name to confirm deletion", code="CONFIRMATION_MISMATCH"
            )
        return await self._cascade(shop)

    async def _cascade(self, shop: Shop) -> int:
        shop_id, owner_id = shop.id, shop.owner_id

        products = ProductService(self.session, self.notifications)
        result = await self.session.execute(select(Product).where(Product.vendor_id == shop_id))
        removed = 0
        for product in result.scalars().all():
            await products.purge(product)
            removed += 1

        await self.session.execute(delete(Review).where(Review.shop_id == shop_id))
        await self.session.execute(delete(ShopFollow).where(ShopFollow.shop_id == shop_id))
        await self.session.execute(delete(Notification).where(Notification.shop_id == shop_id))
        await self.session.execute(update(User).where(User.id == owner_id).values(role=UserRole.USER))
        await self.session.delete(await self.get_shop(shop_id))
        await self.session.commit()

        logger.info("Shop deleted", shop_id=str(shop_id), owner_id=str(owner_id), products=removed)
        return removed

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _vendor_lines(self, shop_id: uuid.UUID) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(
                OrderItem.order_id,
                Order.user_id,
                OrderItem.category_id,
                Order.created_at,
                OrderItem.quantity,
                OrderItem.price,
            )
            .join(Order, Order.id == OrderItem.order_id)
            .where(OrderItem.vendor_id == shop_id, Order.status != OrderStatus.CANCELLED)
        )
        return [
            {
                "order_id": str(row.order_id),
                "user_id": str(row.user_id),
                "category_id": str(row.category_id) if row.category_id else None,
                "created_at": row.created_at,
                "quantity": row.quantity,
                "price": float(row.price),
            }
            for row in result
        ]

    async def _category_names(self, category_ids: List[str]) -> Dict[str, str]:
        if not category_ids:
            return {}
        result = await self.session.execute(
            select(Category.id, Category.name).where(Category.id.in_([uuid.UUID(value) for value in category_ids]))
        )
        return {str(row.id): row.name for row in result}

    async def _reload(self, shop_id: uuid.UUID) -> Shop:
        shop = await self.session.get(Shop, shop_id, populate_existing=True)
        if shop is None:
            raise NotFoundError("Shop not found", code="SHOP_NOT_FOUND")
        return shop

    async def _unique_slug(self, name: str, exclude_id: Optional[uuid.UUID] = None) -> str:
        base = slugify(name) or "shop"
        slug, suffix = base, 1
        while True:
            query = select(Shop.id).where(Shop.slug == slug)
            if exclude_id:
                query = query.where(Shop.id != exclude_id)
            if await self.session.scalar(query) is None:
                return slug
            suffix += 1
            slug = f"{base}-{suffix}"
