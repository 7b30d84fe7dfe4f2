"""
Reviews API Endpoints
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.connection import get_db_dependency
from marketplace.database.models import UserRole
from marketplace.principal import Principal
from marketplace.serving.api.auth import get_current_principal, require_roles
from marketplace.social.reviews import RatingSummary, ReviewAggregator

router = APIRouter()


class ReviewRequest(BaseModel):
    # range is enforced by the aggregator so the error code stays INVALID_RATING
    rating: int
    comment: Optional[str] = Field(default=None, max_length=1000)
    product_id: Optional[UUID] = None
    shop_id: Optional[UUID] = None
    order_id: Optional[UUID] = None


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = None
    comment: Optional[str] = Field(default=None, max_length=1000)


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    user_name: Optional[str] = None
    product_id: Optional[UUID] = None
    shop_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReviewListResponse(BaseModel):
    reviews: List[ReviewResponse]
    average_rating: float
    total_reviews: int
    distribution: Dict[str, int]


async def _review_list(aggregator: ReviewAggregator, reviews, summary: RatingSummary) -> ReviewListResponse:
    names = await aggregator.reviewer_names(reviews)
    items = []
    for review in reviews:
        item = ReviewResponse.model_validate(review)
        item.user_name = names.get(review.user_id)
        items.append(item)
    return ReviewListResponse(
        reviews=items,
        average_rating=summary.rounded_average,
        total_reviews=summary.total_reviews,
        distribution=summary.distribution,
    )


@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def upsert_review(
    payload: ReviewRequest,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> ReviewResponse:
    review = await ReviewAggregator(db).upsert_review(
        user,
        payload.rating,
        comment=payload.comment,
        product_id=payload.product_id,
        shop_id=payload.shop_id,
        order_id=payload.order_id,
    )
    return ReviewResponse.model_validate(review)


@router.get("/product/{product_id}", response_model=ReviewListResponse)
async def product_reviews(product_id: UUID, db: AsyncSession = Depends(get_db_dependency)) -> ReviewListResponse:
    aggregator = ReviewAggregator(db)
    reviews, summary = await aggregator.product_reviews(product_id)
    return await _review_list(aggregator, reviews, summary)


@router.get("/shop/{shop_id}", response_model=ReviewListResponse)
async def shop_reviews(shop_id: UUID, db: AsyncSession = Depends(get_db_dependency)) -> ReviewListResponse:
    aggregator = ReviewAggregator(db)
    reviews, summary = await aggregator.shop_reviews(shop_id)
    return await _review_list(aggregator, reviews, summary)


@router.get("/vendor", response_model=ReviewListResponse)
async def vendor_reviews(
    vendor: Principal = Depends(require_roles(UserRole.VENDOR)),
    db: AsyncSession = Depends(get_db_dependency),
) -> ReviewListResponse:
    aggregator = ReviewAggregator(db)
    reviews, summary = await aggregator.vendor_reviews(vendor)
    return await _review_list(aggregator, reviews, summary)


@router.patch("/{review_id}", response_model=ReviewResponse)
async def update_review(
    review_id: UUID,
    payload: ReviewUpdateRequest,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> ReviewResponse:
    review = await ReviewAggregator(db).update_review(user, review_id, payload.rating, payload.comment)
    return ReviewResponse.model_validate(review)


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(
    review_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await ReviewAggregator(db).delete_review(user, review_id)
