"""
Order Processor

Order placement and fulfilment for a multi-vendor cart:

1. Admission: every product exists and has enough stock. Nothing is
   written when admission fails.
2. Primary write: the order with per-line prices captured at purchase time.
3. Follow-up writes, each isolated (see marketplace.fanout):
   - product stock and sales counters (atomic increments)
   - purchase history, buyer insights and month buckets
   - category sales counters
   - per-vendor shop counters
   - buyer notification

Status moves forward only (pending, processing, shipped, delivered).
Cancellation and admin deletion reverse stock and the sales counters in
the same transaction as the status change.
"""

from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple
import uuid

import structlog
from prometheus_client import Counter
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.pricing import apply_derived_fields, quantize_money, unit_price_for
from marketplace.config import get_settings
from marketplace.database.models import (
    Category,
    NotificationType,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    Review,
    Shop,
    User,
    utcnow,
)
from marketplace.errors import AuthorizationError, NotFoundError, ValidationError
from marketplace.fanout import SideEffectRunner
from marketplace.orders.insights import (
    append_purchase,
    bump_month,
    compute_buyer_insights,
    month_key,
    purchase_location,
    purchase_record,
)
from marketplace.principal import Principal
from marketplace.social.notifications import (
    NotificationService,
    order_placed_message,
    order_status_message,
)

logger = structlog.get_logger(__name__)
settings = get_settings()


# =============================================================================
# METRICS
# =============================================================================

ORDERS_PLACED = Counter(
    "marketplace_orders_placed_total",
    "Orders accepted by the order processor",
)

ORDERS_REJECTED = Counter(
    "marketplace_orders_rejected_total",
    "Orders rejected at admission",
    ["reason"],
)


STATUS_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

FULFILMENT_STATUSES = {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}


@dataclass
class OrderLine:
    """Requested cart line"""
    product_id: uuid.UUID
    quantity: int


@dataclass
class PlacedLine:
    """Plain snapshot of a persisted order line, safe to use after a rollback"""
    product_id: Optional[uuid.UUID]
    vendor_id: Optional[uuid.UUID]
    category_id: Optional[uuid.UUID]
    quantity: int
    price: Decimal
    cost_price: Optional[Decimal]
    discounted: bool

    @property
    def revenue(self) -> Decimal:
        return self.price * self.quantity

    @property
    def profit(self) -> Optional[Decimal]:
        if self.cost_price is None:
            return None
        return (self.price - self.cost_price) * self.quantity

    @classmethod
    def from_item(cls, item: OrderItem) -> "PlacedLine":
        return cls(
            product_id=item.product_id,
            vendor_id=item.vendor_id,
            category_id=item.category_id,
            quantity=item.quantity,
            price=item.price,
            cost_price=item.cost_price,
            discounted=item.discounted,
        )


@dataclass
class VendorOrderView:
    """An order restricted to one vendor's lines"""
    order: Order
    items: List[OrderItem]

    @property
    def vendor_total(self) -> Decimal:
        return sum((item.price * item.quantity for item in self.items), Decimal("0"))


class OrderProcessor:
    """Places, advances, cancels and reads orders."""

    def __init__(self, session: AsyncSession, notifications: Optional[NotificationService] = None):
        self.session = session
        self.notifications = notifications or NotificationService(session)

    # =========================================================================
    # PLACEMENT
    # =========================================================================

    async def place_order(
        self,
        buyer: Principal,
        lines: List[OrderLine],
        shipping_address: Optional[dict] = None,
        payment_method: Optional[str] = None,
        payment_result: Optional[dict] = None,
        shipping_price: Decimal = Decimal("0"),
    ) -> Order:
        products = await self._admit(lines)

        now = utcnow()
        order = Order(
            user_id=buyer.id,
            shipping_address=dict(shipping_address or {}),
            payment_method=payment_method,
            payment_result=payment_result,
            status=OrderStatus.PENDING,
        )

        items_price = Decimal("0")
        for position, line in enumerate(lines):
            product = products[line.product_id]
            unit_price, discounted = unit_price_for(product, line.quantity, now)
            order.items.append(OrderItem(
                position=position,
                product_id=product.id,
                vendor_id=product.vendor_id,
                category_id=product.category_id,
                name=product.name,
                image=product.thumbnail,
                quantity=line.quantity,
                price=unit_price,
                cost_price=product.cost_price,
                discounted=discounted,
            ))
            items_price += unit_price * line.quantity

        order.items_price = quantize_money(items_price)
        order.shipping_price = quantize_money(shipping_price)
        order.total_price = order.items_price + order.shipping_price

        self.session.add(order)
        await self.session.commit()

        order_id = order.id
        placed = [PlacedLine.from_item(item) for item in order.items]
        ORDERS_PLACED.inc()
        logger.info(
            "Order placed",
            order_id=str(order_id),
            user_id=str(buyer.id),
            lines=len(placed),
            total_price=str(order.total_price),
        )

        location = purchase_location(shipping_address)
        if not any(location.values()):
            location = await self._buyer_location(buyer.id)

        runner = SideEffectRunner(self.session, "place_order", order_id=str(order_id))
        for line in placed:
            await runner.run(f"product_sales:{line.product_id}", lambda line=line: self._apply_line_sales(line, now, sign=1))
            await runner.run(
                f"buyer_insights:{line.product_id}",
                lambda line=line: self._record_purchase(line, buyer.id, order_id, location, now),
            )
        for category_id, quantity in self._category_totals(placed).items():
            await runner.run(
                f"category_sales:{category_id}",
                lambda category_id=category_id, quantity=quantity: self._bump_category_sales(category_id, quantity),
            )
        for vendor_id, subtotal in self._vendor_totals(placed).items():
            await runner.run(
                f"shop_stats:{vendor_id}",
                lambda vendor_id=vendor_id, subtotal=subtotal: self._bump_shop_stats(vendor_id, subtotal, 1),
            )
        await runner.run("buyer_notification", lambda: self.notifications.notify(
            buyer.id,
            NotificationType.ORDER_STATUS,
            "Order Placed",
            order_placed_message(order_id),
            order_id=order_id,
        ))
        runner.finish()

        return await self._reload(order_id)

    async def _admit(self, lines: List[OrderLine]) -> Dict[uuid.UUID, Product]:
        if not lines:
            ORDERS_REJECTED.labels(reason="empty").inc()
            raise ValidationError("Order must contain at least one item", code="EMPTY_ORDER")

        requested: Dict[uuid.UUID, int] = OrderedDict()
        for line in lines:
            if line.quantity < 1:
                ORDERS_REJECTED.labels(reason="quantity").inc()
                raise ValidationError(
                    "Quantity must be at least 1",
                    code="INVALID_QUANTITY",
                    details={"product_id": str(line.product_id)},
                )
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        result = await self.session.execute(
            select(Product)
            .where(Product.id.in_(list(requested)))
            .execution_options(populate_existing=True)
        )
        products = {product.id: product for product in result.scalars().all()}

        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None:
                ORDERS_REJECTED.labels(reason="not_found").inc()
                raise NotFoundError(
                    f"Product {product_id} not found",
                    code="PRODUCT_NOT_FOUND",
                    details={"product_id": str(product_id)},
                )
            if product.stock < quantity:
                ORDERS_REJECTED.labels(reason="stock").inc()
                raise ValidationError(
                    f"Insufficient stock for {product.name}",
                    code="INSUFFICIENT_STOCK",
                    details={"product_id": str(product_id), "available": product.stock, "requested": quantity},
                )
        return products

    # =========================================================================
    # FULFILMENT
    # =========================================================================

    async def update_status(self, actor: Principal, order_id: uuid.UUID, status: OrderStatus) -> Order:
        """Advance an order. Vendors must own at least one line."""
        try:
            status = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid status: {status}", code="INVALID_STATUS")
        if status not in FULFILMENT_STATUSES:
            raise ValidationError(
                f"Invalid status: {status.value}",
                code="INVALID_STATUS",
                details={"allowed": sorted(s.value for s in FULFILMENT_STATUSES)},
            )

        order = await self._get(order_id)
        if not actor.is_admin:
            await self._assert_vendor_line(actor, order)

        if order.status == OrderStatus.CANCELLED:
            raise ValidationError("Cancelled orders cannot change status", code="ORDER_CANCELLED")

        current_rank = STATUS_FLOW.index(order.status)
        new_rank = STATUS_FLOW.index(status)
        if new_rank < current_rank:
            raise ValidationError(
                f"Cannot move order from {order.status.value} to {status.value}",
                code="INVALID_STATUS_TRANSITION",
            )
        if new_rank == current_rank:
            return order

        now = utcnow()
        order.status = status
        if status == OrderStatus.SHIPPED and order.shipped_at is None:
            order.shipped_at = now
        if status == OrderStatus.DELIVERED and order.delivered_at is None:
            order.delivered_at = now
        await self.session.commit()

        buyer_id = order.user_id
        logger.info("Order status updated", order_id=str(order_id), status=status.value, actor_id=str(actor.id))

        runner = SideEffectRunner(self.session, "update_order_status", order_id=str(order_id))
        await runner.run("buyer_notification", lambda: self.notifications.notify(
            buyer_id,
            NotificationType.ORDER_STATUS,
            "Order Update",
            order_status_message(order_id, status.value),
            order_id=order_id,
        ))
        runner.finish()

        return await self._reload(order_id)

    async def cancel_order(self, actor: Principal, order_id: uuid.UUID) -> Order:
        """
        Cancel an order and give its stock back.

        Buyers may cancel their own pending orders; admins any order that is
        not delivered yet.
        """
        order = await self._get(order_id)
        if not actor.is_admin and order.user_id != actor.id:
            raise AuthorizationError("Not your order", code="NOT_ORDER_OWNER")
        if order.status == OrderStatus.CANCELLED:
            raise ValidationError("Order is already cancelled", code="ORDER_ALREADY_CANCELLED")
        if order.status == OrderStatus.DELIVERED:
            raise ValidationError("Delivered orders cannot be cancelled", code="ORDER_NOT_CANCELLABLE")
        if not actor.is_admin and order.status != OrderStatus.PENDING:
            raise ValidationError("Only pending orders can be cancelled", code="ORDER_NOT_CANCELLABLE")

        placed = [PlacedLine.from_item(item) for item in order.items]
        now = utcnow()

        await self._reverse(placed, now)
        order.status = OrderStatus.CANCELLED
        order.cancelled_at = now
        await self.session.commit()

        buyer_id = order.user_id
        logger.info("Order cancelled", order_id=str(order_id), actor_id=str(actor.id))

        runner = SideEffectRunner(self.session, "cancel_order", order_id=str(order_id))
        await self._refresh_products(runner, placed)
        await runner.run("buyer_notification", lambda: self.notifications.notify(
            buyer_id,
            NotificationType.ORDER_STATUS,
            "Order Update",
            order_status_message(order_id, OrderStatus.CANCELLED.value),
            order_id=order_id,
        ))
        runner.finish()

        return await self._reload(order_id)

    async def delete_order(self, actor: Principal, order_id: uuid.UUID) -> None:
        """Admin removal. Stats are reversed unless the order was already cancelled."""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can delete orders", code="ADMIN_ONLY")

        order = await self._get(order_id)
        placed = [PlacedLine.from_item(item) for item in order.items]
        reversed_stats = order.status != OrderStatus.CANCELLED

        if reversed_stats:
            await self._reverse(placed, utcnow())
        await self.session.delete(order)
        await self.session.commit()

        logger.info("Order deleted", order_id=str(order_id), reversed_stats=reversed_stats)

        if reversed_stats:
            runner = SideEffectRunner(self.session, "delete_order", order_id=str(order_id))
            await self._refresh_products(runner, placed)
            runner.finish()

    # =========================================================================
    # READS
    # =========================================================================

    async def get_order(self, actor: Principal, order_id: uuid.UUID) -> Order:
        order = await self._get(order_id)
        if actor.is_admin or order.user_id == actor.id:
            return order
        await self._assert_vendor_line(actor, order)
        return order

    async def list_user_orders(self, user_id: uuid.UUID) -> Tuple[List[Order], Set[uuid.UUID]]:
        """Buyer's orders, newest first, plus the product ids the buyer already reviewed."""
        result = await self.session.execute(
            select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc())
        )
        reviewed = await self.session.execute(
            select(Review.product_id).where(Review.user_id == user_id, Review.product_id.is_not(None))
        )
        return list(result.scalars().all()), set(reviewed.scalars().all())

    async def list_vendor_orders(self, actor: Principal) -> List[VendorOrderView]:
        shop = await self._actor_shop(actor)
        result = await self.session.execute(
            select(Order)
            .where(Order.items.any(OrderItem.vendor_id == shop.id))
            .order_by(Order.created_at.desc())
        )
        return [
            VendorOrderView(order=order, items=[item for item in order.items if item.vendor_id == shop.id])
            for order in result.scalars().all()
        ]

    async def list_all_orders(
        self,
        page: int = 1,
        limit: int = 50,
        status: Optional[OrderStatus] = None,
    ) -> Tuple[List[Order], int]:
        query = select(Order)
        count_query = select(func.count(Order.id))
        if status:
            query = query.where(Order.status == status)
            count_query = count_query.where(Order.status == status)

        total = await self.session.scalar(count_query)
        result = await self.session.execute(
            query.order_by(Order.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total or 0

    # =========================================================================
    # COUNTER UPDATES
    # =========================================================================

    async def _apply_line_sales(self, line: PlacedLine, now: datetime, sign: int) -> None:
        """Atomic stock and sales counter update for one line (sign=-1 reverses)."""
        if line.product_id is None:
            return

        values = {
            "stock": Product.stock - sign * line.quantity,
            "total_orders": Product.total_orders + sign,
            "total_quantity_sold": Product.total_quantity_sold + sign * line.quantity,
            "total_revenue": Product.total_revenue + sign * line.revenue,
        }
        if sign > 0:
            values["last_sold_at"] = now
        if line.profit is not None:
            values["total_profit"] = Product.total_profit + sign * line.profit
        if line.discounted:
            values["discount_used_count"] = Product.discount_used_count + sign

        await self.session.execute(
            update(Product)
            .where(Product.id == line.product_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if sign > 0:
            await self._refresh_derived(line.product_id)

    async def _record_purchase(
        self,
        line: PlacedLine,
        buyer_id: uuid.UUID,
        order_id: uuid.UUID,
        location: dict,
        now: datetime,
    ) -> None:
        if line.product_id is None:
            return
        product = await self.session.get(Product, line.product_id, populate_existing=True)
        if product is None:
            return

        record = purchase_record(buyer_id, order_id, line.quantity, line.price, now, location)
        history = append_purchase(product.purchase_history, record, settings.catalog.purchase_history_limit)
        insights = compute_buyer_insights(
            history,
            product.total_quantity_sold,
            product.total_orders,
            previous=product.buyer_insights,
            location_limit=settings.catalog.top_locations_limit,
        )
        insights["buyers_by_month"] = bump_month(insights["buyers_by_month"], month_key(now), line.revenue)

        product.purchase_history = history
        product.buyer_insights = insights

    async def _bump_category_sales(self, category_id: uuid.UUID, quantity: int) -> None:
        await self.session.execute(
            update(Category)
            .where(Category.id == category_id)
            .values(total_sales=Category.total_sales + quantity)
            .execution_options(synchronize_session=False)
        )

    async def _bump_shop_stats(self, vendor_id: uuid.UUID, subtotal: Decimal, sign: int) -> None:
        await self.session.execute(
            update(Shop)
            .where(Shop.id == vendor_id)
            .values(
                total_orders=Shop.total_orders + sign,
                total_revenue=Shop.total_revenue + sign * subtotal,
            )
            .execution_options(synchronize_session=False)
        )

    async def _reverse(self, placed: List[PlacedLine], now: datetime) -> None:
        """Inverse of the stock, product, category and shop updates of placement."""
        for line in placed:
            await self._apply_line_sales(line, now, sign=-1)
        for category_id, quantity in self._category_totals(placed).items():
            await self._bump_category_sales(category_id, -quantity)
        for vendor_id, subtotal in self._vendor_totals(placed).items():
            await self._bump_shop_stats(vendor_id, subtotal, -1)

    async def _refresh_derived(self, product_id: uuid.UUID) -> None:
        product = await self.session.get(Product, product_id, populate_existing=True)
        if product is not None:
            apply_derived_fields(product)

    async def _refresh_products(self, runner: SideEffectRunner, placed: List[PlacedLine]) -> None:
        product_ids = list(dict.fromkeys(line.product_id for line in placed if line.product_id))
        for product_id in product_ids:
            await runner.run(
                f"stock_status:{product_id}",
                lambda product_id=product_id: self._refresh_derived(product_id),
            )

    @staticmethod
    def _category_totals(placed: List[PlacedLine]) -> Dict[uuid.UUID, int]:
        totals: Dict[uuid.UUID, int] = OrderedDict()
        for line in placed:
            if line.category_id:
                totals[line.category_id] = totals.get(line.category_id, 0) + line.quantity
        return totals

    @staticmethod
    def _vendor_totals(placed: List[PlacedLine]) -> Dict[uuid.UUID, Decimal]:
        totals: Dict[uuid.UUID, Decimal] = OrderedDict()
        for line in placed:
            if line.vendor_id:
                totals[line.vendor_id] = totals.get(line.vendor_id, Decimal("0")) + line.revenue
        return totals

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get(self, order_id: uuid.UUID) -> Order:
        order = await self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND", details={"order_id": str(order_id)})
        return order

    async def _reload(self, order_id: uuid.UUID) -> Order:
        order = await self.session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND", details={"order_id": str(order_id)})
        return order

    async def _actor_shop(self, actor: Principal) -> Shop:
        shop = await self.session.scalar(select(Shop).where(Shop.owner_id == actor.id))
        if shop is None:
            raise AuthorizationError("You do not own a shop", code="NO_SHOP")
        return shop

    async def _assert_vendor_line(self, actor: Principal, order: Order) -> None:
        shop = await self._actor_shop(actor)
        if not any(item.vendor_id == shop.id for item in order.items):
            raise AuthorizationError("Order does not contain your products", code="NOT_ORDER_VENDOR")

    async def _buyer_location(self, user_id: uuid.UUID) -> dict:
        user = await self.session.get(User, user_id)
        if user is None:
            return {}
        return {"city": user.city, "state": user.state, "country": user.country}
