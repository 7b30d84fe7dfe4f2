"""
Unit Tests - Views, Cart and Wishlist
"""
import uuid

import pytest

from marketplace.catalog.engagement import EngagementService
from marketplace.database.models import Category, Product
from marketplace.errors import NotFoundError, ValidationError


@pytest.fixture
async def listed(test_db, factory):
    vendor, _ = await factory.vendor()
    category = await factory.category()
    product = await factory.product(vendor, category)
    buyer = await factory.buyer()
    return {"product_id": product.id, "category_id": category.id, "buyer": buyer}


class TestViews:
    """Tests for view tracking"""

    async def test_views_bump_product_and_category(self, test_db, listed):
        """Test every view counts and unique views only when flagged"""
        service = EngagementService(test_db)

        await service.track_view(listed["product_id"])
        product = await service.track_view(listed["product_id"], unique=True)

        assert (product.views, product.unique_views) == (2, 1)
        assert product.last_viewed_at is not None
        category = await test_db.get(Category, listed["category_id"], populate_existing=True)
        assert category.total_views == 2

    async def test_unknown_product(self, test_db):
        """Test views of missing products are rejected"""
        with pytest.raises(NotFoundError):
            await EngagementService(test_db).track_view(uuid.uuid4())


class TestCart:
    """Tests for the cart"""

    async def test_add_merges_quantities(self, test_db, listed):
        """Test adding the same product twice keeps one line"""
        service = EngagementService(test_db)
        user_id = listed["buyer"].id

        await service.add_to_cart(user_id, listed["product_id"], 2)
        await service.add_to_cart(user_id, listed["product_id"], 3)

        items = await service.list_cart(user_id)
        assert [(item.product_id, item.quantity) for item in items] == [(listed["product_id"], 5)]
        product = await test_db.get(Product, listed["product_id"], populate_existing=True)
        assert product.added_to_cart == 2

    async def test_invalid_quantity(self, test_db, listed):
        """Test zero quantities are rejected"""
        with pytest.raises(ValidationError):
            await EngagementService(test_db).add_to_cart(listed["buyer"].id, listed["product_id"], 0)

    async def test_remove_and_clear(self, test_db, factory, listed):
        """Test single lines and the whole cart can be removed"""
        service = EngagementService(test_db)
        user_id = listed["buyer"].id
        vendor, _ = await factory.vendor()
        other = await factory.product(vendor, await factory.category())

        await service.add_to_cart(user_id, listed["product_id"])
        await service.add_to_cart(user_id, other.id)
        await service.remove_from_cart(user_id, listed["product_id"])
        assert [item.product_id for item in await service.list_cart(user_id)] == [other.id]

        await service.clear_cart(user_id)
        assert await service.list_cart(user_id) == []


class TestWishlist:
    """Tests for the wishlist"""

    async def test_add_is_idempotent(self, test_db, listed):
        """Test re-adding a wishlisted product counts once"""
        service = EngagementService(test_db)
        user_id = listed["buyer"].id

        await service.add_to_wishlist(user_id, listed["product_id"])
        await service.add_to_wishlist(user_id, listed["product_id"])

        products = await service.list_wishlist(user_id)
        assert [p.id for p in products] == [listed["product_id"]]
        product = await test_db.get(Product, listed["product_id"], populate_existing=True)
        assert product.added_to_wishlist == 1

    async def test_remove(self, test_db, listed):
        """Test removal empties the wishlist"""
        service = EngagementService(test_db)
        user_id = listed["buyer"].id
        await service.add_to_wishlist(user_id, listed["product_id"])

        await service.remove_from_wishlist(user_id, listed["product_id"])

        assert await service.list_wishlist(user_id) == []
