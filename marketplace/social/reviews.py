"""
Review Aggregator

One review per (user, target), where the target is either a product or a
shop. Product reviews are only accepted from buyers holding a delivered
order that contains the product.

After every create, update or delete the target's average rating, review
count and, for products, the star distribution are rebuilt from all of
its reviews.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import uuid

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.models import (
    NotificationType,
    Order,
    OrderStatus,
    Product,
    Review,
    Shop,
    User,
    empty_rating_distribution,
)
from marketplace.errors import AuthorizationError, NotFoundError, ValidationError
from marketplace.fanout import SideEffectRunner
from marketplace.principal import Principal
from marketplace.social.notifications import NotificationService, shop_review_message

logger = structlog.get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5


@dataclass
class RatingSummary:
    """Full-recompute result for a review target"""
    average_rating: float = 0.0
    total_reviews: int = 0
    distribution: Dict[str, int] = field(default_factory=empty_rating_distribution)

    @property
    def rounded_average(self) -> float:
        return round(self.average_rating, 1)


def validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}",
            code="INVALID_RATING",
            details={"rating": rating},
        )
    return rating


def summarize_ratings(ratings: List[int]) -> RatingSummary:
    distribution = empty_rating_distribution()
    for rating in ratings:
        distribution[str(rating)] = distribution.get(str(rating), 0) + 1

    if not ratings:
        return RatingSummary(distribution=distribution)
    return RatingSummary(
        average_rating=sum(ratings) / len(ratings),
        total_reviews=len(ratings),
        distribution=distribution,
    )


class ReviewAggregator:
    """Review writes with rating recompute, and review reads with summaries."""

    def __init__(self, session: AsyncSession, notifications: Optional[NotificationService] = None):
        self.session = session
        self.notifications = notifications or NotificationService(session)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def upsert_review(
        self,
        user: Principal,
        rating: int,
        comment: Optional[str] = None,
        product_id: Optional[uuid.UUID] = None,
        shop_id: Optional[uuid.UUID] = None,
        order_id: Optional[uuid.UUID] = None,
    ) -> Review:
        """
        Create the caller's review for a target, or replace it.

        Raises:
            ValidationError: bad rating, no target, both targets, order not
                delivered or not containing the product
            AuthorizationError: the order belongs to someone else
            NotFoundError: product, shop or order missing
        """
        rating = validate_rating(rating)
        if (product_id is None) == (shop_id is None):
            raise ValidationError("Review exactly one of a product or a shop", code="REVIEW_TARGET_REQUIRED")

        if product_id is not None:
            await self._check_product_purchase(user, product_id, order_id)
            criteria = (Review.user_id == user.id, Review.product_id == product_id)
        else:
            if await self.session.get(Shop, shop_id) is None:
                raise NotFoundError("Shop not found", code="SHOP_NOT_FOUND")
            criteria = (Review.user_id == user.id, Review.shop_id == shop_id)

        review = await self.session.scalar(select(Review).where(*criteria))
        created = review is None
        if created:
            review = Review(
                user_id=user.id,
                product_id=product_id,
                shop_id=shop_id,
                order_id=order_id,
                rating=rating,
                comment=comment,
            )
            self.session.add(review)
        else:
            review.rating = rating
            review.comment = comment
            if order_id is not None:
                review.order_id = order_id

        try:
            await self.session.commit()
        except IntegrityError:
            # Lost a race against a concurrent first review: update the winner
            await self.session.rollback()
            review = await self.session.scalar(select(Review).where(*criteria))
            if review is None:
                raise
            review.rating = rating
            review.comment = comment
            await self.session.commit()
            created = False

        review_id = review.id
        logger.info(
            "Review saved",
            review_id=str(review_id),
            product_id=str(product_id) if product_id else None,
            shop_id=str(shop_id) if shop_id else None,
            created=created,
        )

        runner = SideEffectRunner(self.session, "upsert_review", review_id=str(review_id))
        await self._recompute_target(runner, product_id, shop_id)
        if shop_id is not None and created:
            await runner.run("owner_notification", lambda: self._notify_shop_owner(shop_id, user, rating))
        runner.finish()

        return await self.session.get(Review, review_id, populate_existing=True)

    async def update_review(
        self,
        user: Principal,
        review_id: uuid.UUID,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Review:
        review = await self._authored(user, review_id)
        if rating is not None:
            review.rating = validate_rating(rating)
        if comment is not None:
            review.comment = comment
        await self.session.commit()

        product_id, shop_id = review.product_id, review.shop_id
        runner = SideEffectRunner(self.session, "update_review", review_id=str(review_id))
        await self._recompute_target(runner, product_id, shop_id)
        runner.finish()

        return await self.session.get(Review, review_id, populate_existing=True)

    async def delete_review(self, user: Principal, review_id: uuid.UUID) -> None:
        review = await self._authored(user, review_id)
        product_id, shop_id = review.product_id, review.shop_id

        await self.session.delete(review)
        await self.session.commit()
        logger.info("Review deleted", review_id=str(review_id))

        runner = SideEffectRunner(self.session, "delete_review", review_id=str(review_id))
        await self._recompute_target(runner, product_id, shop_id)
        runner.finish()

    # =========================================================================
    # RECOMPUTE
    # =========================================================================

    async def recompute_product_rating(self, product_id: uuid.UUID) -> RatingSummary:
        result = await self.session.execute(select(Review.rating).where(Review.product_id == product_id))
        summary = summarize_ratings(list(result.scalars().all()))

        await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                average_rating=summary.average_rating,
                total_reviews=summary.total_reviews,
                rating_distribution=summary.distribution,
            )
            .execution_options(synchronize_session=False)
        )
        return summary

    async def recompute_shop_rating(self, shop_id: uuid.UUID) -> RatingSummary:
        result = await self.session.execute(select(Review.rating).where(Review.shop_id == shop_id))
        summary = summarize_ratings(list(result.scalars().all()))

        await self.session.execute(
            update(Shop)
            .where(Shop.id == shop_id)
            .values(average_rating=summary.average_rating, total_reviews=summary.total_reviews)
            .execution_options(synchronize_session=False)
        )
        return summary

    async def _recompute_target(
        self,
        runner: SideEffectRunner,
        product_id: Optional[uuid.UUID],
        shop_id: Optional[uuid.UUID],
    ) -> None:
        if product_id is not None:
            await runner.run("product_rating", lambda: self.recompute_product_rating(product_id))
        if shop_id is not None:
            await runner.run("shop_rating", lambda: self.recompute_shop_rating(shop_id))

    # =========================================================================
    # READS
    # =========================================================================

    async def product_reviews(self, product_id: uuid.UUID) -> Tuple[List[Review], RatingSummary]:
        if await self.session.get(Product, product_id) is None:
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
        return await self._reviews_where(Review.product_id == product_id)

    async def shop_reviews(self, shop_id: uuid.UUID) -> Tuple[List[Review], RatingSummary]:
        if await self.session.get(Shop, shop_id) is None:
            raise NotFoundError("Shop not found", code="SHOP_NOT_FOUND")
        return await self._reviews_where(Review.shop_id == shop_id)

    async def vendor_reviews(self, owner: Principal) -> Tuple[List[Review], RatingSummary]:
        """Reviews of the vendor's shop and of every product it sells."""
        shop = await self.session.scalar(select(Shop).where(Shop.owner_id == owner.id))
        if shop is None:
            raise NotFoundError("Shop not found", code="SHOP_NOT_FOUND")

        product_ids = select(Product.id).where(Product.vendor_id == shop.id)
        return await self._reviews_where(or_(Review.shop_id == shop.id, Review.product_id.in_(product_ids)))

    async def reviewer_names(self, reviews: List[Review]) -> Dict[uuid.UUID, str]:
        user_ids = {review.user_id for review in reviews}
        if not user_ids:
            return {}
        result = await self.session.execute(select(User.id, User.name).where(User.id.in_(user_ids)))
        return {row.id: row.name for row in result}

    async def _reviews_where(self, condition) -> Tuple[List[Review], RatingSummary]:
        result = await self.session.execute(
            select(Review).where(condition).order_by(Review.created_at.desc())
        )
        reviews = list(result.scalars().all())
        return reviews, summarize_ratings([review.rating for review in reviews])

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _check_product_purchase(
        self,
        user: Principal,
        product_id: uuid.UUID,
        order_id: Optional[uuid.UUID],
    ) -> None:
        if order_id is None:
            raise ValidationError("An order is required to review a product", code="ORDER_REQUIRED")

        order = await self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
        if order.user_id != user.id:
            raise AuthorizationError("Not your order", code="NOT_ORDER_OWNER")
        if order.status != OrderStatus.DELIVERED:
            raise ValidationError("You can only review products from delivered orders", code="ORDER_NOT_DELIVERED")
        if not any(item.product_id == product_id for item in order.items):
            raise ValidationError("This product is not part of the order", code="PRODUCT_NOT_IN_ORDER")
        if await self.session.get(Product, product_id) is None:
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")

    async def _authored(self, user: Principal, review_id: uuid.UUID) -> Review:
        review = await self.session.get(Review, review_id)
        if review is None:
            raise NotFoundError("Review not found", code="REVIEW_NOT_FOUND")
        if review.user_id != user.id:
            raise AuthorizationError("You can only change your own reviews", code="NOT_REVIEW_AUTHOR")
        return review

    async def _notify_shop_owner(self, shop_id: uuid.UUID, reviewer: Principal, rating: int) -> None:
        shop = await self.session.get(Shop, shop_id)
        if shop is None or shop.owner_id == reviewer.id:
            return
        name = reviewer.name
        if not name:
            user = await self.session.get(User, reviewer.id)
            name = user.name if user else ""
        await self.notifications.notify(
            shop.owner_id,
            NotificationType.SHOP_REVIEW,
            "New Shop Review",
            shop_review_message(name, shop.name, rating),
            shop_id=shop_id,
        )
