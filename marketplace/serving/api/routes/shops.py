"""
Shops API Endpoints

Shop registration and storefront, follows, vendor dashboards and the
admin moderation board.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.search import CatalogSearch
from marketplace.database.connection import get_db_dependency
from marketplace.database.models import ShopStatus, UserRole
from marketplace.principal import Principal
from marketplace.schemas import ShopCreate, ShopUpdate
from marketplace.serving.api.auth import get_current_principal, require_roles
from marketplace.serving.cache import catalog_cache
from marketplace.social.follows import FollowService
from marketplace.vendors.shops import ShopService

router = APIRouter()

admin_only = require_roles(UserRole.ADMIN)
vendor_only = require_roles(UserRole.VENDOR)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class ShopResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    description: Optional[str] = None
    logo: Optional[str] = None
    banner: Optional[str] = None
    owner_id: UUID
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    status: ShopStatus
    status_reason: Optional[str] = None
    is_active: bool
    commission_rate: float
    total_products: int
    total_orders: int
    total_revenue: float
    average_rating: float
    total_reviews: int
    created_at: datetime


class ApproveRequest(BaseModel):
    commission_rate: Optional[float] = Field(default=None, ge=0, le=100)
    admin_notes: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class DeleteShopRequest(BaseModel):
    confirm_name: str = Field(min_length=1)


class DeleteShopResponse(BaseModel):
    deleted_products: int


class FollowResponse(BaseModel):
    is_following: bool
    followers_count: int


# =============================================================================
# STOREFRONT
# =============================================================================

@router.get("", response_model=List[ShopResponse])
async def list_shops(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[ShopResponse]:
    shops = await ShopService(db).list_shops(page=page, limit=limit)
    return [ShopResponse.model_validate(shop) for shop in shops]


@router.get("/top", response_model=List[ShopResponse])
async def top_shops(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db_dependency),
):
    async def load():
        shops = await CatalogSearch(db).top_shops(limit)
        return [ShopResponse.model_validate(shop).model_dump(mode="json") for shop in shops]

    return await catalog_cache.get_or_set(f"top_shops:{limit}", load)


@router.get("/search", response_model=List[ShopResponse])
async def search_shops(
    q: Optional[str] = None,
    limit: int = Query(6, ge=1, le=50),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[ShopResponse]:
    return [ShopResponse.model_validate(shop) for shop in await CatalogSearch(db).search_shops(q, limit)]


@router.post("", response_model=ShopResponse, status_code=status.HTTP_201_CREATED)
async def register_shop(
    payload: ShopCreate,
    owner: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> ShopResponse:
    return ShopResponse.model_validate(await ShopService(db).register_shop(owner, payload))


@router.get("/following", response_model=List[ShopResponse])
async def followed_shops(
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[ShopResponse]:
    return [ShopResponse.model_validate(shop) for shop in await FollowService(db).followed_shops(user)]


# =============================================================================
# VENDOR DASHBOARD
# =============================================================================

@router.get("/me", response_model=ShopResponse)
async def my_shop(
    owner: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> ShopResponse:
    return ShopResponse.model_validate(await ShopService(db).get_my_shop(owner))


@router.post("/me/stats", response_model=ShopResponse)
async def recompute_vendor_stats(
    vendor: Principal = Depends(vendor_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> ShopResponse:
    return ShopResponse.model_validate(await ShopService(db).vendor_stats(vendor))


@router.get("/me/analytics")
async def shop_analytics(
    months: Optional[int] = Query(None, ge=1, le=24),
    vendor: Principal = Depends(vendor_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    return await ShopService(db).shop_analytics(vendor, months)


@router.get("/me/customers")
async def shop_customers(
    vendor: Principal = Depends(vendor_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[Dict[str, Any]]:
    return await ShopService(db).shop_customers(vendor)


@router.delete("/me", response_model=DeleteShopResponse)
async def delete_my_shop(
    payload: DeleteShopRequest,
    owner: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> DeleteShopResponse:
    removed = await ShopService(db).delete_my_shop(owner, payload.confirm_name)
    await catalog_cache.invalidate_all()
    return DeleteShopResponse(deleted_products=removed)


# =============================================================================
# ADMIN
# =============================================================================

@router.get("/admin/all", response_model=List[ShopResponse])
async def admin_list_shops(
    status: Optional[ShopStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[ShopResponse]:
    shops = await ShopService(db).list_shops(status=status, page=page, limit=limit)
    return [ShopResponse.model_validate(shop) for shop in shops]


@router.post("/{shop_id}/approve", response_model=ShopResponse)
async def approve_shop(
    shop_id: UUID,
    payload: ApproveRequest,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> ShopResponse:
    shop = await ShopService(db).approve(admin, shop_id, payload.commission_rate, payload.admin_notes)
    await catalog_cache.invalidate_all()
    return ShopResponse.model_validate(shop)


@router.post("/{shop_id}/reject", response_model=ShopResponse)
async def reject_shop(
    shop_id: UUID,
    payload: ReasonRequest,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> ShopResponse:
    return ShopResponse.model_validate(await ShopService(db).reject(admin, shop_id, payload.reason))


@router.post("/{shop_id}/suspend", response_model=ShopResponse)
async def suspend_shop(
    shop_id: UUID,
    payload: ReasonRequest,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> ShopResponse:
    shop = await ShopService(db).suspend(admin, shop_id, payload.reason)
    await catalog_cache.invalidate_all()
    return ShopResponse.model_validate(shop)


@router.post("/{shop_id}/reactivate", response_model=ShopResponse)
async def reactivate_shop(
    shop_id: UUID,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> ShopResponse:
    shop = await ShopService(db).reactivate(admin, shop_id)
    await catalog_cache.invalidate_all()
    return ShopResponse.model_validate(shop)


@router.delete("/{shop_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_shop(
    shop_id: UUID,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await ShopService(db).delete_shop_cascade(admin, shop_id)
    await catalog_cache.invalidate_all()


# =============================================================================
# SHOP BY ID
# =============================================================================

@router.get("/{shop_id}", response_model=ShopResponse)
async def get_shop(shop_id: UUID, db: AsyncSession = Depends(get_db_dependency)) -> ShopResponse:
    return ShopResponse.model_validate(await ShopService(db).get_shop(shop_id))


@router.patch("/{shop_id}", response_model=ShopResponse)
async def update_shop(
    shop_id: UUID,
    payload: ShopUpdate,
    actor: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> ShopResponse:
    return ShopResponse.model_validate(await ShopService(db).update_shop(actor, shop_id, payload))


@router.get("/{shop_id}/follow", response_model=FollowResponse)
async def follow_status(
    shop_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> FollowResponse:
    is_following, count = await FollowService(db).follow_status(user, shop_id)
    return FollowResponse(is_following=is_following, followers_count=count)


@router.post("/{shop_id}/follow", response_model=FollowResponse)
async def follow_shop(
    shop_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> FollowResponse:
    count = await FollowService(db).follow(user, shop_id)
    return FollowResponse(is_following=True, followers_count=count)


@router.delete("/{shop_id}/follow", response_model=FollowResponse)
async def unfollow_shop(
    shop_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> FollowResponse:
    count = await FollowService(db).unfollow(user, shop_id)
    return FollowResponse(is_following=False, followers_count=count)
