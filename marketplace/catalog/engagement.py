"""
Engagement Tracking

Views, carts and wishlists. Each action bumps the matching product
counter with an atomic increment.
"""

from typing import List, Optional
import uuid

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.pricing import apply_derived_fields
from marketplace.database.models import CartItem, Category, Product, WishlistItem, utcnow
from marketplace.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class EngagementService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def track_view(self, product_id: uuid.UUID, unique: bool = False) -> Product:
        product = await self._product(product_id)
        values = {"views": Product.views + 1, "last_viewed_at": utcnow()}
        if unique:
            values["unique_views"] = Product.unique_views + 1

        await self.session.execute(
            update(Product).where(Product.id == product_id).values(**values).execution_options(synchronize_session=False)
        )
        await self.session.execute(
            update(Category)
            .where(Category.id == product.category_id)
            .values(total_views=Category.total_views + 1)
            .execution_options(synchronize_session=False)
        )

        # conversion rate depends on views
        product = await self.session.get(Product, product_id, populate_existing=True)
        apply_derived_fields(product)
        await self.session.commit()
        return product

    # -------------------------------------------------------------------------
    # Cart
    # -------------------------------------------------------------------------

    async def add_to_cart(self, user_id: uuid.UUID, product_id: uuid.UUID, quantity: int = 1) -> CartItem:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", code="INVALID_QUANTITY")
        await self._product(product_id)

        item = await self.session.scalar(
            select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        )
        if item is None:
            item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
            self.session.add(item)
        else:
            item.quantity = item.quantity + quantity

        await self._bump(product_id, Product.added_to_cart)
        await self.session.commit()
        logger.debug("Added to cart", user_id=str(user_id), product_id=str(product_id), quantity=quantity)
        return item

    async def remove_from_cart(self, user_id: uuid.UUID, product_id: uuid.UUID) -> None:
        await self.session.execute(
            delete(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        )
        await self.session.commit()

    async def list_cart(self, user_id: uuid.UUID) -> List[CartItem]:
        result = await self.session.execute(
            select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at)
        )
        return list(result.scalars().all())

    async def clear_cart(self, user_id: uuid.UUID) -> None:
        await self.session.execute(delete(CartItem).where(CartItem.user_id == user_id))
        await self.session.commit()

    # -------------------------------------------------------------------------
    # Wishlist
    # -------------------------------------------------------------------------

    async def add_to_wishlist(self, user_id: uuid.UUID, product_id: uuid.UUID) -> Optional[WishlistItem]:
        """Idempotent: re-adding a wishlisted product changes nothing."""
        await self._product(product_id)
        existing = await self.session.scalar(
            select(WishlistItem).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
        )
        if existing is not None:
            return existing

        item = WishlistItem(user_id=user_id, product_id=product_id)
        self.session.add(item)
        await self._bump(product_id, Product.added_to_wishlist)
        await self.session.commit()
        return item

    async def remove_from_wishlist(self, user_id: uuid.UUID, product_id: uuid.UUID) -> None:
        await self.session.execute(
            delete(WishlistItem).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
        )
        await self.session.commit()

    async def list_wishlist(self, user_id: uuid.UUID) -> List[Product]:
        result = await self.session.execute(
            select(Product)
            .join(WishlistItem, WishlistItem.product_id == Product.id)
            .where(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.created_at.desc())
        )
        return list(result.scalars().all())

    async def _bump(self, product_id: uuid.UUID, column) -> None:
        await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values({column: column + 1})
            .execution_options(synchronize_session=False)
        )

    async def _product(self, product_id: uuid.UUID) -> Product:
        product = await self.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
        return product
