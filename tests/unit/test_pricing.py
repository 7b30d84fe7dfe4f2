"""
Unit Tests - Catalog Pricing
"""
import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from marketplace.catalog.pricing import (
    apply_derived_fields,
    compute_conversion_rate,
    compute_sale_price,
    derive_stock_status,
    describe_discount,
    generate_sku,
    generate_slug,
    is_discount_active,
    primary_image_url,
    to_base36,
    unit_price_for,
)
from marketplace.config import get_settings
from marketplace.database.models import DiscountType, Product, StockStatus

NOW = datetime(2026, 3, 15, 12, 0, 0)


def make_product(**fields) -> Product:
    defaults = dict(
        name="Desk Lamp",
        price=Decimal("100.00"),
        stock=10,
        low_stock_threshold=5,
        allow_backorders=False,
        discount_type=DiscountType.NONE,
        discount_value=Decimal("0"),
        discount_min_quantity=1,
        discount_used_count=0,
        total_orders=0,
        views=0,
        images=[],
    )
    defaults.update(fields)
    return Product(**defaults)


class TestDiscountWindow:
    """Tests for discount activity"""

    def test_none_type_is_inactive(self):
        """Test a discount of kind none never applies"""
        assert not is_discount_active(DiscountType.NONE, 20, now=NOW)

    def test_zero_value_is_inactive(self):
        """Test a zero value discount never applies"""
        assert not is_discount_active(DiscountType.PERCENTAGE, 0, now=NOW)

    def test_open_bounds_are_active(self):
        """Test missing start and end dates leave the window open"""
        assert is_discount_active(DiscountType.PERCENTAGE, 20, now=NOW)

    def test_before_start_is_inactive(self):
        """Test a discount that has not started yet"""
        assert not is_discount_active(DiscountType.FIXED, 5, start=NOW + timedelta(days=1), now=NOW)

    def test_after_end_is_inactive(self):
        """Test an expired discount"""
        assert not is_discount_active(DiscountType.FIXED, 5, end=NOW - timedelta(seconds=1), now=NOW)

    def test_usage_cap_exhausted(self):
        """Test a discount whose max uses were consumed"""
        assert not is_discount_active(DiscountType.PERCENTAGE, 10, now=NOW, max_uses=3, used_count=3)
        assert is_discount_active(DiscountType.PERCENTAGE, 10, now=NOW, max_uses=3, used_count=2)


class TestSalePrice:
    """Tests for sale price computation"""

    def test_percentage(self):
        """Test 20% off 100"""
        assert compute_sale_price(Decimal("100"), DiscountType.PERCENTAGE, 20, True) == Decimal("80.00")

    def test_fixed(self):
        """Test fixed amount off"""
        assert compute_sale_price(Decimal("49.99"), DiscountType.FIXED, Decimal("10"), True) == Decimal("39.99")

    def test_fixed_never_negative(self):
        """Test a fixed discount larger than the price floors at zero"""
        assert compute_sale_price(Decimal("5"), DiscountType.FIXED, Decimal("10"), True) == Decimal("0.00")

    def test_inactive_returns_price(self):
        """Test an inactive discount leaves the price untouched"""
        assert compute_sale_price(Decimal("19.90"), DiscountType.PERCENTAGE, 50, False) == Decimal("19.90")

    @pytest.mark.parametrize("kind,value,expected", [
        (DiscountType.PERCENTAGE, Decimal("20"), "20% off"),
        (DiscountType.FIXED, Decimal("5"), "$5 off"),
        (DiscountType.FIXED, Decimal("2.50"), "$2.50 off"),
    ])
    def test_describe_discount(self, kind, value, expected):
        """Test the human discount wording used in notifications"""
        assert describe_discount(kind, value) == expected


class TestUnitPrice:
    """Tests for order-time pricing"""

    def test_discount_applies_at_min_quantity(self):
        """Test a bulk discount only applies from its minimum quantity"""
        product = make_product(
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
            discount_min_quantity=3,
        )

        assert unit_price_for(product, 2, NOW) == (Decimal("100.00"), False)
        assert unit_price_for(product, 3, NOW) == (Decimal("90.00"), True)

    def test_expired_discount_charges_list_price(self):
        """Test an expired window charges the list price"""
        product = make_product(
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("15"),
            discount_end=NOW - timedelta(days=1),
        )

        assert unit_price_for(product, 1, NOW) == (Decimal("100.00"), False)


class TestStockStatus:
    """Tests for derived inventory status"""

    @pytest.mark.parametrize("stock,backorders,expected", [
        (0, False, StockStatus.OUT_OF_STOCK),
        (0, True, StockStatus.BACKORDER),
        (3, False, StockStatus.LOW_STOCK),
        (5, False, StockStatus.LOW_STOCK),
        (6, False, StockStatus.IN_STOCK),
    ])
    def test_derive_stock_status(self, stock, backorders, expected):
        """Test stock thresholds with a low-stock threshold of 5"""
        assert derive_stock_status(stock, 5, backorders) == expected

    def test_missing_threshold_uses_catalog_default(self, monkeypatch):
        """Test a product without its own threshold follows the configured default"""
        monkeypatch.setattr(get_settings().catalog, "default_low_stock_threshold", 2)

        assert derive_stock_status(3, None, False) == StockStatus.IN_STOCK
        assert derive_stock_status(2, None, False) == StockStatus.LOW_STOCK



class TestDerivedFields:
    """Tests for apply_derived_fields"""

    def test_refreshes_sale_and_stock_fields(self):
        """Test sale price, sale flag and stock status are derived together"""
        product = make_product(
            stock=2,
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("25"),
        )

        apply_derived_fields(product, NOW)

        assert product.is_on_sale is True
        assert product.sale_price == Decimal("75.00")
        assert product.stock_status == StockStatus.LOW_STOCK

    def test_conversion_rate_and_thumbnail(self):
        """Test conversion rate is orders over views and thumbnail is the primary image"""
        product = make_product(
            total_orders=3,
            views=12,
            images=[{"url": "a.jpg"}, {"url": "b.jpg", "is_primary": True}],
        )

        apply_derived_fields(product, NOW)

        assert product.conversion_rate == 25.0
        assert product.thumbnail == "b.jpg"

    def test_conversion_rate_without_views(self):
        """Test no views yields no conversion rate"""
        assert compute_conversion_rate(4, 0) is None

    def test_first_image_when_no_primary(self):
        """Test the first image is used when none is primary"""
        assert primary_image_url([{"url": "a.jpg"}, {"url": "b.jpg"}]) == "a.jpg"
        assert primary_image_url([]) is None


class TestIdentifiers:
    """Tests for slug and SKU generation"""

    def test_base36(self):
        """Test base36 encoding"""
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_slug_starts_with_name(self):
        """Test slugs keep a readable prefix followed by a base36 token"""
        slug = generate_slug("Red Running Shoes!", NOW)

        assert re.fullmatch(r"red-running-shoes-[0-9a-z]+", slug)
        assert len(slug) > len("red-running-shoes-") + 3

    def test_sku_format(self):
        """Test SKUs are upper case with the product prefix"""
        sku = generate_sku(NOW)
        assert sku.startswith("PRD-")
        assert sku == sku.upper()
