"""
Products API Endpoints

Storefront listing and search, vendor/admin product management, the
approval workflow and per-product analytics.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.engagement import EngagementService
from marketplace.catalog.products import ProductService
from marketplace.catalog.search import CatalogSearch
from marketplace.database.connection import get_db_dependency
from marketplace.database.models import ApprovalStatus, DiscountType, ProductStatus, StockStatus, UserRole
from marketplace.principal import Principal
from marketplace.schemas import ProductCreate, ProductReviewDecision, ProductUpdate
from marketplace.serving.api.auth import get_current_principal, require_roles
from marketplace.serving.cache import catalog_cache

router = APIRouter()

manage_products = require_roles(UserRole.VENDOR, UserRole.ADMIN)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class ProductSummary(BaseModel):
    """Listing card"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    brand: Optional[str] = None
    thumbnail: Optional[str] = None
    price: float
    sale_price: float
    is_on_sale: bool
    stock_status: StockStatus
    average_rating: float
    total_reviews: int
    vendor_id: Optional[UUID] = None
    category_id: UUID


class DiscountView(BaseModel):
    type: DiscountType
    value: float
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_quantity: int
    max_uses: Optional[int] = None
    used_count: int


class ProductDetail(ProductSummary):
    """Full product"""
    description: Optional[str] = None
    short_description: Optional[str] = None
    sku: str
    barcode: Optional[str] = None
    tags: List[str] = []
    colors: List[str] = []
    sizes: List[str] = []
    images: List[Dict[str, Any]] = []
    compare_at_price: Optional[float] = None
    stock: int
    low_stock_threshold: int
    track_inventory: bool
    allow_backorders: bool
    subcategory_id: Optional[UUID] = None
    status: ProductStatus
    approval_status: ApprovalStatus
    is_featured: bool
    rating_distribution: Dict[str, int] = {}
    views: int
    total_orders: int
    total_quantity_sold: int
    created_at: datetime
    discount: Optional[DiscountView] = None

    @classmethod
    def from_product(cls, product) -> "ProductDetail":
        detail = cls.model_validate(product)
        if product.discount_type != DiscountType.NONE:
            detail.discount = DiscountView(
                type=product.discount_type,
                value=float(product.discount_value or 0),
                start_date=product.discount_start,
                end_date=product.discount_end,
                min_quantity=product.discount_min_quantity,
                max_uses=product.discount_max_uses,
                used_count=product.discount_used_count,
            )
        return detail


class SiteStats(BaseModel):
    total_products: int
    total_shops: int
    popular_brands: List[Dict[str, Any]]


# =============================================================================
# STOREFRONT
# =============================================================================

@router.get("", response_model=List[ProductSummary])
async def list_products(
    category_id: Optional[UUID] = None,
    vendor_id: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[ProductSummary]:
    products = await ProductService(db).list_products(
        category_id=category_id, vendor_id=vendor_id, page=page, limit=limit
    )
    return [ProductSummary.model_validate(product) for product in products]


@router.get("/search", response_model=List[ProductSummary])
async def search_products(
    q: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    category_id: Optional[UUID] = None,
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[ProductSummary]:
    products = await CatalogSearch(db).search_products(q, min_price, max_price, category_id, limit)
    return [ProductSummary.model_validate(product) for product in products]


@router.get("/deals", response_model=List[ProductSummary])
async def best_deals(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db_dependency),
):
    async def load():
        products = await CatalogSearch(db).best_deals(limit)
        return [ProductSummary.model_validate(product).model_dump(mode="json") for product in products]

    return await catalog_cache.get_or_set(f"best_deals:{limit}", load)


@router.get("/site-stats", response_model=SiteStats)
async def site_stats(db: AsyncSession = Depends(get_db_dependency)) -> SiteStats:
    return SiteStats(**await CatalogSearch(db).site_stats())


@router.get("/{product_id}", response_model=ProductDetail)
async def get_product(product_id: UUID, db: AsyncSession = Depends(get_db_dependency)) -> ProductDetail:
    return ProductDetail.from_product(await ProductService(db).get_product(product_id))


@router.post("/{product_id}/view", response_model=ProductSummary)
async def track_view(
    product_id: UUID,
    unique: bool = False,
    db: AsyncSession = Depends(get_db_dependency),
) -> ProductSummary:
    return ProductSummary.model_validate(await EngagementService(db).track_view(product_id, unique=unique))


# =============================================================================
# MANAGEMENT
# =============================================================================

@router.post("", response_model=ProductDetail, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    actor: Principal = Depends(manage_products),
    db: AsyncSession = Depends(get_db_dependency),
) -> ProductDetail:
    product = await ProductService(db).create_product(actor, payload)
    await catalog_cache.invalidate_all()
    return ProductDetail.from_product(product)


@router.patch("/{product_id}", response_model=ProductDetail)
async def update_product(
    product_id: UUID,
    payload: ProductUpdate,
    actor: Principal = Depends(manage_products),
    db: AsyncSession = Depends(get_db_dependency),
) -> ProductDetail:
    product = await ProductService(db).update_product(actor, product_id, payload)
    await catalog_cache.invalidate_all()
    return ProductDetail.from_product(product)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: UUID,
    actor: Principal = Depends(manage_products),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await ProductService(db).delete_product(actor, product_id)
    await catalog_cache.invalidate_all()


@router.post("/{product_id}/approval", response_model=ProductDetail)
async def review_product(
    product_id: UUID,
    payload: ProductReviewDecision,
    admin: Principal = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db_dependency),
) -> ProductDetail:
    product = await ProductService(db).review_product(admin, product_id, payload.decision, payload.notes)
    return ProductDetail.from_product(product)


@router.get("/{product_id}/analytics")
async def product_analytics(
    product_id: UUID,
    actor: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    return await ProductService(db).product_analytics(actor, product_id)
