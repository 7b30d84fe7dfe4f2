"""
Cart and Wishlist API Endpoints
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.engagement import EngagementService
from marketplace.database.connection import get_db_dependency
from marketplace.principal import Principal
from marketplace.serving.api.auth import get_current_principal
from marketplace.serving.api.routes.products import ProductSummary

router = APIRouter()


class CartItemRequest(BaseModel):
    product_id: UUID
    quantity: int = Field(default=1, ge=1)


class CartItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    quantity: int


# =============================================================================
# CART
# =============================================================================

@router.get("/cart", response_model=List[CartItemResponse])
async def list_cart(
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[CartItemResponse]:
    return [CartItemResponse.model_validate(item) for item in await EngagementService(db).list_cart(user.id)]


@router.post("/cart", response_model=CartItemResponse, status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    payload: CartItemRequest,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> CartItemResponse:
    item = await EngagementService(db).add_to_cart(user.id, payload.product_id, payload.quantity)
    return CartItemResponse.model_validate(item)


@router.delete("/cart/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_cart(
    product_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await EngagementService(db).remove_from_cart(user.id, product_id)


@router.delete("/cart", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await EngagementService(db).clear_cart(user.id)


# =============================================================================
# WISHLIST
# =============================================================================

@router.get("/wishlist", response_model=List[ProductSummary])
async def list_wishlist(
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[ProductSummary]:
    return [ProductSummary.model_validate(product) for product in await EngagementService(db).list_wishlist(user.id)]


@router.post("/wishlist/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def add_to_wishlist(
    product_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await EngagementService(db).add_to_wishlist(user.id, product_id)


@router.delete("/wishlist/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_wishlist(
    product_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await EngagementService(db).remove_from_wishlist(user.id, product_id)
