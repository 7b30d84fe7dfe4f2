"""
Categories API Endpoints
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.categories import CategoryService
from marketplace.database.connection import get_db_dependency
from marketplace.database.models import UserRole
from marketplace.principal import Principal
from marketplace.schemas import CategoryCreate, CategoryUpdate
from marketplace.serving.api.auth import require_roles

router = APIRouter()

admin_only = require_roles(UserRole.ADMIN)


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[UUID] = None
    level: int
    display_order: int
    is_active: bool
    total_products: int
    active_products: int
    total_views: int
    total_sales: int


class ReorderRequest(BaseModel):
    ordered_ids: List[UUID]


@router.get("")
async def category_tree(db: AsyncSession = Depends(get_db_dependency)) -> List[Dict[str, Any]]:
    """Active categories as a nested tree."""
    return [node.to_dict() for node in await CategoryService(db).category_tree()]


@router.get("/all", response_model=List[CategoryResponse])
async def list_categories(
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[CategoryResponse]:
    categories = await CategoryService(db).list_categories()
    return [CategoryResponse.model_validate(category) for category in categories]


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(category_id: UUID, db: AsyncSession = Depends(get_db_dependency)) -> CategoryResponse:
    return CategoryResponse.model_validate(await CategoryService(db).get_category(category_id))


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> CategoryResponse:
    return CategoryResponse.model_validate(await CategoryService(db).create_category(payload))


@router.patch("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: UUID,
    payload: CategoryUpdate,
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> CategoryResponse:
    return CategoryResponse.model_validate(await CategoryService(db).update_category(category_id, payload))


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: UUID,
    move_products_to: Optional[UUID] = None,
    move_subcategories_to: Optional[UUID] = None,
    cascade: bool = False,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await CategoryService(db).delete_category(
        admin,
        category_id,
        move_products_to=move_products_to,
        move_subcategories_to=move_subcategories_to,
        cascade=cascade,
    )


@router.post("/reorder", status_code=status.HTTP_204_NO_CONTENT)
async def reorder_categories(
    payload: ReorderRequest,
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await CategoryService(db).reorder(payload.ordered_ids)


@router.post("/{category_id}/recompute")
async def recompute_category_stats(
    category_id: UUID,
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, int]:
    service = CategoryService(db)
    await service.get_category(category_id)
    return (await service.recompute_stats(category_id)).__dict__
