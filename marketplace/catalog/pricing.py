"""
Catalog Pricing and Derived Product Fields

Pure functions for:
- Discount window evaluation (kind, value, date bounds, usage cap)
- Sale price computation (percentage or fixed, never below zero)
- Stock status derivation
- Order-time unit price (minimum quantity aware)
- Slug and SKU generation

apply_derived_fields() is wired to the Product mapper so every persisted
product carries a consistent sale_price, is_on_sale and stock_status.
"""

import random
import re
import string
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional, Tuple

from marketplace.config import get_settings
from marketplace.database.models import DiscountType, Product, StockStatus, utcnow

CENT = Decimal("0.01")
BASE36_ALPHABET = string.digits + string.ascii_lowercase


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, floats and strings into Decimal without float artefacts."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# DISCOUNTS
# =============================================================================

def is_discount_active(
    discount_type: Optional[DiscountType],
    value: Any,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
    max_uses: Optional[int] = None,
    used_count: Optional[int] = 0,
) -> bool:
    """
    A discount is active when its kind is not none, its value is positive,
    now falls inside [start, end] (missing bounds are open) and the usage
    cap, if any, is not exhausted.
    """
    if discount_type is None or discount_type == DiscountType.NONE:
        return False
    if to_decimal(value) <= 0:
        return False

    now = now or utcnow()
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    if max_uses is not None and (used_count or 0) >= max_uses:
        return False
    return True


def compute_sale_price(price: Any, discount_type: Optional[DiscountType], value: Any, active: bool) -> Decimal:
    """
    Sale price for a discount state.

    percentage: price * (1 - value / 100)
    fixed:      max(0, price - value)
    inactive:   price
    """
    price = to_decimal(price)
    if not active:
        return quantize_money(price)

    value = to_decimal(value)
    if discount_type == DiscountType.PERCENTAGE:
        sale = price * (Decimal("1") - value / Decimal("100"))
    elif discount_type == DiscountType.FIXED:
        sale = price - value
    else:
        sale = price

    return quantize_money(max(sale, Decimal("0")))


def product_discount_active(product: Product, now: Optional[datetime] = None) -> bool:
    return is_discount_active(
        product.discount_type,
        product.discount_value,
        start=product.discount_start,
        end=product.discount_end,
        now=now,
        max_uses=product.discount_max_uses,
        used_count=product.discount_used_count,
    )


def unit_price_for(product: Product, quantity: int, now: Optional[datetime] = None) -> Tuple[Decimal, bool]:
    """
    Price charged per unit for an order line.

    Returns:
        (unit price, whether the discount was applied)
    """
    min_quantity = product.discount_min_quantity or 1
    if product_discount_active(product, now) and quantity >= min_quantity:
        sale = compute_sale_price(product.price, product.discount_type, product.discount_value, True)
        return sale, True
    return quantize_money(product.price), False


def describe_discount(discount_type: DiscountType, value: Any) -> str:
    """Human form used in discount notifications: '20% off' or '$5 off'."""
    value = to_decimal(value)
    shown = value.normalize() if value == value.to_integral_value() else value.quantize(CENT)
    if discount_type == DiscountType.PERCENTAGE:
        return f"{shown:f}% off"
    return f"${shown:f} off"


# =============================================================================
# INVENTORY
# =============================================================================

def derive_stock_status(stock: Optional[int], low_stock_threshold: Optional[int], allow_backorders: Optional[bool]) -> StockStatus:
    stock = stock or 0
    threshold = low_stock_threshold
    if threshold is None:
        threshold = get_settings().catalog.default_low_stock_threshold

    if stock <= 0:
        return StockStatus.BACKORDER if allow_backorders else StockStatus.OUT_OF_STOCK
    if stock <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


# =============================================================================
# DERIVED FIELDS
# =============================================================================

def compute_conversion_rate(total_orders: Optional[int], views: Optional[int]) -> Optional[float]:
    if not views:
        return None
    return round((total_orders or 0) / views * 100, 2)


def primary_image_url(images: Optional[List[dict]]) -> Optional[str]:
    if not images:
        return None
    for image in images:
        if image.get("is_primary"):
            return image.get("url")
    return images[0].get("url")


def apply_derived_fields(product: Product, now: Optional[datetime] = None) -> Product:
    """Recompute every field that is a pure function of other product fields."""
    active = product_discount_active(product, now)
    product.is_on_sale = active
    product.sale_price = compute_sale_price(product.price, product.discount_type, product.discount_value, active)
    product.stock_status = derive_stock_status(product.stock, product.low_stock_threshold, product.allow_backorders)

    conversion = compute_conversion_rate(product.total_orders, product.views)
    if conversion is not None:
        product.conversion_rate = conversion

    thumbnail = primary_image_url(product.images)
    if thumbnail:
        product.thumbnail = thumbnail

    if not product.slug and product.name:
        product.slug = generate_slug(product.name)
    if not product.sku:
        product.sku = generate_sku()
    return product


# =============================================================================
# IDENTIFIERS
# =============================================================================

def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def _timestamp_token(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return to_base36(int(now.timestamp() * 1000))


def generate_slug(name: str, now: Optional[datetime] = None) -> str:
    """name-slug + base36 creation time + short random tail"""
    tail = "".join(random.choices(BASE36_ALPHABET, k=3))
    return f"{slugify(name) or 'item'}-{_timestamp_token(now)}{tail}"


def generate_sku(now: Optional[datetime] = None) -> str:
    tail = "".join(random.choices(BASE36_ALPHABET, k=3))
    return f"PRD-{_timestamp_token(now)}{tail}".upper()
