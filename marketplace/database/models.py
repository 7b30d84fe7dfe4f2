"""
Database Models - Marketplace Schema

Relational mapping of the marketplace collections:

Catalog:
- Category: self-referencing tree with denormalised product counters
- Product: pricing, discount window, inventory, sales counters and
  buyer insights kept as JSON documents

Commerce:
- Order / OrderItem: price, vendor and category captured at purchase time
- Shop: vendor storefront with incremental sales counters

Social:
- Review: product or shop review, one per (user, target)
- ShopFollow, Notification, WishlistItem, CartItem
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from marketplace.config import get_settings


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp used for every audit column."""
    return datetime.utcnow()


def empty_rating_distribution() -> dict:
    return {str(star): 0 for star in range(1, 6)}


# =============================================================================
# ENUMERATIONS
# =============================================================================

class UserRole(str, Enum):
    """Principal role"""
    USER = "user"
    VENDOR = "vendor"
    ADMIN = "admin"


class ShopStatus(str, Enum):
    """Shop moderation status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class ProductStatus(str, Enum):
    """Product lifecycle status"""
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUT_OF_STOCK = "out_of_stock"
    DISCONTINUED = "discontinued"


class ApprovalStatus(str, Enum):
    """Product approval workflow status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"


class DiscountType(str, Enum):
    """Discount kind"""
    NONE = "none"
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class StockStatus(str, Enum):
    """Derived inventory status"""
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    BACKORDER = "backorder"


class OrderStatus(str, Enum):
    """Order status enumeration"""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class NotificationType(str, Enum):
    """Notification kinds delivered to the inbox and as push"""
    ORDER_STATUS = "order_status"
    NEW_PRODUCT = "new_product"
    PRODUCT_DISCOUNT = "product_discount"
    NEW_FOLLOWER = "new_follower"
    SHOP_REVIEW = "shop_review"
    GENERAL = "general"


# =============================================================================
# PRINCIPALS
# =============================================================================

class User(Base):
    """
    Marketplace user.

    Only the fields the core reads are mapped: role, push token and the
    default location used for buyer insights.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)
    expo_push_token: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_users_role", "role"),
    )


# =============================================================================
# CATALOG
# =============================================================================

class Category(Base):
    """
    Category Tree

    level is 0 for roots and parent.level + 1 otherwise. Counters are
    maintained incrementally and can be rebuilt with a full recompute.
    """
    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(140), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    image: Mapped[Optional[str]] = mapped_column(String(500))
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("categories.id"))
    level: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    # Denormalised stats
    total_products: Mapped[int] = mapped_column(Integer, default=0)
    active_products: Mapped[int] = mapped_column(Integer, default=0)
    total_views: Mapped[int] = mapped_column(Integer, default=0)
    total_sales: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_categories_parent_slug", "parent_id", "slug"),
        Index("ix_categories_active_order", "is_active", "display_order"),
    )


class Shop(Base):
    """
    Vendor Shop

    is_active mirrors status == approved and is kept in sync before every
    flush. Stats are incremented by order fan-out and rebuilt on demand.
    """
    __tablename__ = "shops"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(140), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    logo: Mapped[Optional[str]] = mapped_column(String(500))
    banner: Mapped[Optional[str]] = mapped_column(String(500))
    owner_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))

    # Moderation
    status: Mapped[ShopStatus] = mapped_column(SQLEnum(ShopStatus), default=ShopStatus.PENDING, nullable=False)
    status_reason: Mapped[Optional[str]] = mapped_column(Text)
    status_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status_updated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)
    commission_rate: Mapped[float] = mapped_column(Float, default=10.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    # Stats
    total_products: Mapped[int] = mapped_column(Integer, default=0)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    average_rating: Mapped[float] = mapped_column(Float, default=0.0)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_shops_status_owner", "status", "owner_id"),
        Index("ix_shops_rating", "average_rating"),
    )


class Product(Base):
    """
    Product

    sale_price, is_on_sale, stock_status, conversion_rate and thumbnail are
    derived fields, recomputed before every insert and update.
    """
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(260), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    short_description: Mapped[Optional[str]] = mapped_column(String(500))
    sku: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    barcode: Mapped[Optional[str]] = mapped_column(String(100))
    brand: Mapped[Optional[str]] = mapped_column(String(100))
    tags: Mapped[List[str]] = mapped_column(JSONType, default=list)
    colors: Mapped[List[str]] = mapped_column(JSONType, default=list)
    sizes: Mapped[List[str]] = mapped_column(JSONType, default=list)
    images: Mapped[List[dict]] = mapped_column(JSONType, default=list)  # [{"url", "alt", "is_primary"}]
    thumbnail: Mapped[Optional[str]] = mapped_column(String(500))

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    compare_at_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    cost_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    sale_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    is_on_sale: Mapped[bool] = mapped_column(Boolean, default=False)

    # Discount window
    discount_type: Mapped[DiscountType] = mapped_column(SQLEnum(DiscountType), default=DiscountType.NONE)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    discount_start: Mapped[Optional[datetime]] = mapped_column(DateTime)
    discount_end: Mapped[Optional[datetime]] = mapped_column(DateTime)
    discount_min_quantity: Mapped[int] = mapped_column(Integer, default=1)
    discount_max_uses: Mapped[Optional[int]] = mapped_column(Integer)
    discount_used_count: Mapped[int] = mapped_column(Integer, default=0)

    # Inventory
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    low_stock_threshold: Mapped[int] = mapped_column(
        Integer, default=lambda: get_settings().catalog.default_low_stock_threshold
    )
    track_inventory: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_backorders: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_status: Mapped[StockStatus] = mapped_column(SQLEnum(StockStatus), default=StockStatus.OUT_OF_STOCK)

    # Ownership and placement
    category_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("categories.id"), nullable=False)
    subcategory_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("categories.id"))
    vendor_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("shops.id"))
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("users.id"))
    is_admin_product: Mapped[bool] = mapped_column(Boolean, default=False)

    # Status
    status: Mapped[ProductStatus] = mapped_column(SQLEnum(ProductStatus), default=ProductStatus.ACTIVE)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)

    # Approval workflow
    approval_status: Mapped[ApprovalStatus] = mapped_column(SQLEnum(ApprovalStatus), default=ApprovalStatus.APPROVED)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Ratings
    average_rating: Mapped[float] = mapped_column(Float, default=0.0)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0)
    rating_distribution: Mapped[dict] = mapped_column(JSONType, default=empty_rating_distribution)

    # Engagement and sales stats
    views: Mapped[int] = mapped_column(Integer, default=0)
    unique_views: Mapped[int] = mapped_column(Integer, default=0)
    added_to_cart: Mapped[int] = mapped_column(Integer, default=0)
    added_to_wishlist: Mapped[int] = mapped_column(Integer, default=0)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    total_quantity_sold: Mapped[int] = mapped_column(Integer, default=0)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    total_profit: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    conversion_rate: Mapped[float] = mapped_column(Float, default=0.0)
    last_sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Buyer analytics documents
    purchase_history: Mapped[List[dict]] = mapped_column(JSONType, default=list)
    buyer_insights: Mapped[dict] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_products_name", "name"),
        Index("ix_products_brand", "brand"),
        Index("ix_products_status_category", "status", "category_id"),
        Index("ix_products_vendor", "vendor_id"),
        Index("ix_products_sale", "is_on_sale", "stock_status"),
    )


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """
    Customer Order

    Lines are loaded eagerly with the order. total_price is fixed at
    creation time.
    """
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    shipping_address: Mapped[dict] = mapped_column(JSONType, default=dict)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    payment_result: Mapped[Optional[dict]] = mapped_column(JSONType)

    items_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    shipping_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    status: Mapped[OrderStatus] = mapped_column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.position",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status", "status"),
    )


class OrderItem(Base):
    """
    Order Line

    Snapshot of the product at purchase time. product_id is detached when
    the product is deleted; vendor_id and category_id stay for reporting.
    """
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"))
    vendor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    image: Mapped[Optional[str]] = mapped_column(String(500))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cost_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    discounted: Mapped[bool] = mapped_column(Boolean, default=False)

    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_order_items_product", "product_id"),
        Index("ix_order_items_vendor", "vendor_id"),
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
    )


# =============================================================================
# SOCIAL
# =============================================================================

class Review(Base):
    """
    Product or Shop Review

    Exactly one target is set. A user holds at most one review per target.
    """
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("products.id"))
    shop_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("shops.id"))
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"))
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(String(1000))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_reviews_user_product"),
        UniqueConstraint("user_id", "shop_id", name="uq_reviews_user_shop"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
        CheckConstraint(
            "(product_id IS NULL) <> (shop_id IS NULL)",
            name="ck_reviews_single_target",
        ),
        Index("ix_reviews_product", "product_id"),
        Index("ix_reviews_shop", "shop_id"),
    )


class ShopFollow(Base):
    """User follows a shop"""
    __tablename__ = "shop_follows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    shop_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("shops.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "shop_id", name="uq_shop_follows_user_shop"),
        Index("ix_shop_follows_shop", "shop_id"),
    )


class Notification(Base):
    """Inbox entry. is_read is the only field mutated after creation."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[NotificationType] = mapped_column(SQLEnum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    shop_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
        Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
    )


class WishlistItem(Base):
    __tablename__ = "wishlist_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),
    )


class CartItem(Base):
    __tablename__ = "cart_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
    )


# =============================================================================
# DERIVED FIELDS
# =============================================================================

@event.listens_for(Product, "before_insert")
@event.listens_for(Product, "before_update")
def _refresh_product_derived_fields(mapper, connection, target: Product) -> None:
    from marketplace.catalog.pricing import apply_derived_fields

    apply_derived_fields(target)


@event.listens_for(Shop, "before_insert")
@event.listens_for(Shop, "before_update")
def _sync_shop_active_flag(mapper, connection, target: Shop) -> None:
    target.is_active = target.status == ShopStatus.APPROVED
