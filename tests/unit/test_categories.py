"""
Unit Tests - Category Tree
"""
import uuid

import pytest
from sqlalchemy import func, select

from marketplace.catalog.categories import CategoryService
from marketplace.database.models import Category, Product
from marketplace.errors import NotFoundError, ValidationError
from marketplace.schemas import CategoryCreate, CategoryUpdate


async def fresh(session, category_id):
    return await session.get(Category, category_id, populate_existing=True)


@pytest.fixture
async def tree(test_db, factory):
    """electronics > phones > cases, plus a separate home root"""
    electronics = await factory.category("Electronics")
    phones = await factory.category("Phones", parent_id=electronics.id)
    cases = await factory.category("Cases", parent_id=phones.id)
    home = await factory.category("Home")
    return {"electronics": electronics, "phones": phones, "cases": cases, "home": home}


class TestHierarchy:
    """Tests for levels, slugs and reparenting"""

    async def test_levels_follow_parents(self, tree):
        """Test level is parent level plus one"""
        assert tree["electronics"].level == 0
        assert tree["phones"].level == 1
        assert tree["cases"].level == 2

    async def test_unknown_parent(self, test_db):
        """Test a missing parent is reported"""
        with pytest.raises(NotFoundError):
            await CategoryService(test_db).create_category(CategoryCreate(name="Orphan", parent_id=uuid.uuid4()))

    async def test_slug_collision_gets_suffix(self, test_db, factory):
        """Test names that slugify the same get numbered slugs"""
        first = await factory.category("Home & Garden")
        second = await factory.category("Home Garden")

        assert first.slug == "home-garden"
        assert second.slug == "home-garden-2"

    async def test_reparent_relevels_subtree(self, test_db, tree):
        """Test moving a category re-levels every descendant"""
        service = CategoryService(test_db)

        await service.update_category(tree["phones"].id, CategoryUpdate(parent_id=tree["home"].id))
        assert (await fresh(test_db, tree["phones"].id)).level == 1

        await service.update_category(tree["home"].id, CategoryUpdate(parent_id=tree["electronics"].id))
        assert (await fresh(test_db, tree["home"].id)).level == 1
        assert (await fresh(test_db, tree["phones"].id)).level == 2
        assert (await fresh(test_db, tree["cases"].id)).level == 3

    async def test_cannot_move_under_descendant(self, test_db, tree):
        """Test a category cannot become its own ancestor"""
        service = CategoryService(test_db)

        for parent in (tree["electronics"], tree["cases"]):
            with pytest.raises(ValidationError) as exc:
                await service.update_category(tree["electronics"].id, CategoryUpdate(parent_id=parent.id))
            assert exc.value.code == "CATEGORY_CYCLE"

    async def test_move_to_root(self, test_db, tree):
        """Test clearing the parent makes a root"""
        service = CategoryService(test_db)

        await service.update_category(tree["phones"].id, CategoryUpdate(parent_id=None))

        assert (await fresh(test_db, tree["phones"].id)).level == 0
        assert (await fresh(test_db, tree["cases"].id)).level == 1

    async def test_tree_and_reorder(self, test_db, tree):
        """Test the nested tree and display order"""
        service = CategoryService(test_db)
        await service.reorder([tree["home"].id, tree["electronics"].id])

        roots = [node.to_dict() for node in await service.category_tree()]

        assert [root["name"] for root in roots] == ["Home", "Electronics"]
        phones = roots[1]["children"][0]
        assert phones["name"] == "Phones"
        assert phones["children"][0]["level"] == 2


class TestDelete:
    """Tests for category deletion decisions"""

    async def test_requires_decision(self, test_db, factory, tree):
        """Test a category with subcategories or products needs a decision"""
        service = CategoryService(test_db)
        admin = await factory.admin()

        with pytest.raises(ValidationError) as exc:
            await service.delete_category(admin, tree["electronics"].id)
        assert exc.value.code == "REQUIRES_DECISION"

        vendor, _ = await factory.vendor()
        await factory.product(vendor, tree["home"])
        with pytest.raises(ValidationError) as exc:
            await service.delete_category(admin, tree["home"].id)
        assert exc.value.details == {"products": 1}

    async def test_move_subcategories_into_own_subtree(self, test_db, factory, tree):
        """Test subcategories cannot be moved below the deleted category"""
        service = CategoryService(test_db)
        admin = await factory.admin()

        with pytest.raises(ValidationError) as exc:
            await service.delete_category(admin, tree["phones"].id, move_subcategories_to=tree["cases"].id)
        assert exc.value.code == "CATEGORY_CYCLE"

    async def test_move_subcategories_and_products(self, test_db, factory, tree):
        """Test children and products are moved and target stats rebuilt"""
        service = CategoryService(test_db)
        admin = await factory.admin()
        vendor, _ = await factory.vendor()
        product = await factory.product(vendor, tree["phones"])
        product_id = product.id

        await service.delete_category(
            admin,
            tree["phones"].id,
            move_subcategories_to=tree["home"].id,
            move_products_to=tree["home"].id,
        )

        assert await fresh(test_db, tree["phones"].id) is None
        cases = await fresh(test_db, tree["cases"].id)
        assert (cases.parent_id, cases.level) == (tree["home"].id, 1)
        moved = await test_db.get(Product, product_id, populate_existing=True)
        assert moved.category_id == tree["home"].id
        home = await fresh(test_db, tree["home"].id)
        assert (home.total_products, home.active_products) == (1, 1)

    async def test_cascade(self, test_db, factory, tree):
        """Test cascade removes the subtree and its products"""
        service = CategoryService(test_db)
        admin = await factory.admin()
        vendor, _ = await factory.vendor()
        await factory.product(vendor, tree["cases"])
        await factory.product(vendor, tree["electronics"])

        await service.delete_category(admin, tree["electronics"].id, cascade=True)

        remaining = (await test_db.execute(select(Category.name))).scalars().all()
        assert remaining == ["Home"]
        assert await test_db.scalar(select(func.count(Product.id))) == 0


class TestStats:
    """Tests for counter maintenance"""

    async def test_counters_follow_products(self, test_db, factory, tree):
        """Test incremental counters match a full recompute"""
        service = CategoryService(test_db)
        vendor, _ = await factory.vendor()
        await factory.product(vendor, tree["home"])
        await factory.product(vendor, tree["home"])

        incremental = await fresh(test_db, tree["home"].id)
        stats = await service.recompute_stats(tree["home"].id)

        assert incremental.total_products == stats.total_products == 2
        assert incremental.active_products == stats.active_products == 2
        assert stats.total_sales == 0
