"""
Category Tree

Hierarchy maintenance and denormalised category statistics:
- level is always parent.level + 1 (0 for roots), including every
  descendant of a category that moves to a new parent
- deleting a category either cascades through its subtree and products
  or moves them to another category
- stats can be rebuilt at any time from the products themselves
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.pricing import slugify
from marketplace.catalog.products import ProductService
from marketplace.database.models import Category, Product, ProductStatus
from marketplace.errors import NotFoundError, ValidationError
from marketplace.principal import Principal
from marketplace.schemas import CategoryCreate, CategoryUpdate

logger = structlog.get_logger(__name__)


@dataclass
class CategoryStats:
    total_products: int
    active_products: int
    total_sales: int


@dataclass
class CategoryNode:
    category: Category
    children: List["CategoryNode"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.category.id),
            "name": self.category.name,
            "slug": self.category.slug,
            "level": self.category.level,
            "total_products": self.category.total_products,
            "children": [child.to_dict() for child in self.children],
        }


class CategoryService:
    def __init__(self, session: AsyncSession, products: Optional[ProductService] = None):
        self.session = session
        self.products = products or ProductService(session)

    async def create_category(self, payload: CategoryCreate) -> Category:
        level = 0
        if payload.parent_id:
            parent = await self.get_category(payload.parent_id)
            level = parent.level + 1

        category = Category(
            name=payload.name,
            slug=await self._unique_slug(payload.name),
            description=payload.description,
            image=payload.image,
            parent_id=payload.parent_id,
            level=level,
            display_order=payload.display_order,
            is_active=payload.is_active,
        )
        self.session.add(category)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ValidationError("A category with this name already exists", code="DUPLICATE_CATEGORY")

        logger.info("Category created", category_id=str(category.id), level=level)
        return category

    async def update_category(self, category_id: uuid.UUID, payload: CategoryUpdate) -> Category:
        category = await self.get_category(category_id)
        data = payload.model_dump(exclude_unset=True)

        if "parent_id" in data and data["parent_id"] != category.parent_id:
            await self._reparent(category, data.pop("parent_id"))
        else:
            data.pop("parent_id", None)

        if data.get("name") and data["name"] != category.name:
            category.slug = await self._unique_slug(data["name"], exclude_id=category.id)
        for key, value in data.items():
            setattr(category, key, value)

        await self.session.commit()
        logger.info("Category updated", category_id=str(category_id), fields=sorted(data))
        return category

    async def delete_category(
        self,
        actor: Principal,
        category_id: uuid.UUID,
        move_products_to: Optional[uuid.UUID] = None,
        move_subcategories_to: Optional[uuid.UUID] = None,
        cascade: bool = False,
    ) -> None:
        """
        Delete a category.

        Without cascade, subcategories and products must be moved somewhere
        first; the call is rejected when a decision is missing.
        """
        category = await self.get_category(category_id)
        children = await self._children(category_id)
        product_count = await self._product_count(category_id)

        if cascade:
            await self._cascade_delete(actor, category)
            return

        if children and move_subcategories_to is None:
            raise ValidationError(
                "Category has subcategories",
                code="REQUIRES_DECISION",
                details={"subcategories": len(children)},
            )
        if product_count and move_products_to is None:
            raise ValidationError(
                "Category has products",
                code="REQUIRES_DECISION",
                details={"products": product_count},
            )

        if children:
            target = await self.get_category(move_subcategories_to)
            if target.id == category_id or await self._is_descendant(target.id, category_id):
                raise ValidationError("Cannot move subcategories into their own subtree", code="CATEGORY_CYCLE")
            for child in children:
                child.parent_id = target.id
                child.level = target.level + 1
                await self._relevel_descendants(child)

        if product_count:
            target = await self.get_category(move_products_to)
            if target.id == category_id:
                raise ValidationError("Cannot move products into the category being deleted", code="CATEGORY_CYCLE")
            await self.session.execute(
                update(Product)
                .where(Product.category_id == category_id)
                .values(category_id=target.id)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                update(Product)
                .where(Product.subcategory_id == category_id)
                .values(subcategory_id=None)
                .execution_options(synchronize_session=False)
            )

        await self.session.delete(category)
        await self.session.commit()
        logger.info("Category deleted", category_id=str(category_id), moved_products=product_count)

        if product_count:
            await self.recompute_stats(move_products_to)

    async def get_category(self, category_id: uuid.UUID) -> Category:
        category = await self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category not found", code="CATEGORY_NOT_FOUND", details={"category_id": str(category_id)})
        return category

    async def list_categories(self, active_only: bool = False) -> List[Category]:
        query = select(Category)
        if active_only:
            query = query.where(Category.is_active.is_(True))
        result = await self.session.execute(query.order_by(Category.level, Category.display_order, Category.name))
        return list(result.scalars().all())

    async def category_tree(self, active_only: bool = True) -> List[CategoryNode]:
        categories = await self.list_categories(active_only=active_only)
        nodes = {category.id: CategoryNode(category) for category in categories}

        roots = []
        for category in categories:
            node = nodes[category.id]
            parent = nodes.get(category.parent_id) if category.parent_id else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    async def reorder(self, ordered_ids: List[uuid.UUID]) -> None:
        for position, category_id in enumerate(ordered_ids):
            await self.session.execute(
                update(Category)
                .where(Category.id == category_id)
                .values(display_order=position)
                .execution_options(synchronize_session=False)
            )
        await self.session.commit()

    async def recompute_stats(self, category_id: uuid.UUID) -> CategoryStats:
        """Rebuild counters from products whose category or subcategory matches."""
        matches = or_(Product.category_id == category_id, Product.subcategory_id == category_id)
        row = (await self.session.execute(
            select(
                func.count(Product.id).label("total"),
                func.coalesce(func.sum(Product.total_quantity_sold), 0).label("sales"),
            ).where(matches)
        )).one()
        active = await self.session.scalar(
            select(func.count(Product.id)).where(matches, Product.status == ProductStatus.ACTIVE)
        )

        stats = CategoryStats(total_products=row.total or 0, active_products=active or 0, total_sales=int(row.sales or 0))
        await self.session.execute(
            update(Category)
            .where(Category.id == category_id)
            .values(
                total_products=stats.total_products,
                active_products=stats.active_products,
                total_sales=stats.total_sales,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        logger.info("Category stats recomputed", category_id=str(category_id), **stats.__dict__)
        return stats

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _reparent(self, category: Category, parent_id: Optional[uuid.UUID]) -> None:
        if parent_id is None:
            category.parent_id = None
            category.level = 0
        else:
            if parent_id == category.id or await self._is_descendant(parent_id, category.id):
                raise ValidationError("A category cannot be moved under itself", code="CATEGORY_CYCLE")
            parent = await self.get_category(parent_id)
            category.parent_id = parent.id
            category.level = parent.level + 1
        await self._relevel_descendants(category)

    async def _relevel_descendants(self, category: Category) -> None:
        for child in await self._children(category.id):
            child.level = category.level + 1
            await self._relevel_descendants(child)

    async def _is_descendant(self, candidate_id: uuid.UUID, ancestor_id: uuid.UUID) -> bool:
        current = await self.session.get(Category, candidate_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id == ancestor_id:
                return True
            current = await self.session.get(Category, current.parent_id)
        return False

    async def _children(self, category_id: uuid.UUID) -> List[Category]:
        result = await self.session.execute(select(Category).where(Category.parent_id == category_id))
        return list(result.scalars().all())

    async def _product_count(self, category_id: uuid.UUID) -> int:
        count = await self.session.scalar(
            select(func.count(Product.id)).where(
                or_(Product.category_id == category_id, Product.subcategory_id == category_id)
            )
        )
        return count or 0

    async def _cascade_delete(self, actor: Principal, category: Category) -> None:
        for child in await self._children(category.id):
            await self._cascade_delete(actor, child)

        result = await self.session.execute(
            select(Product).where(
                or_(Product.category_id == category.id, Product.subcategory_id == category.id)
            )
        )
        for product in result.scalars().all():
            await self.products.purge(product)

        category_id = category.id
        await self.session.delete(await self.get_category(category_id))
        await self.session.commit()
        logger.info("Category deleted with subtree", category_id=str(category_id))

    async def _unique_slug(self, name: str, exclude_id: Optional[uuid.UUID] = None) -> str:
        base = slugify(name) or "category"
        slug, suffix = base, 1
        while True:
            query = select(Category.id).where(Category.slug == slug)
            if exclude_id:
                query = query.where(Category.id != exclude_id)
            if await self.session.scalar(query) is None:
                return slug
            suffix += 1
            slug = f"{base}-{suffix}"
