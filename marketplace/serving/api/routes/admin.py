"""
Admin API Endpoints

Marketplace dashboard, per-product sales and bulk product actions.
"""

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.admin import AdminDashboard
from marketplace.catalog.products import ProductService
from marketplace.database.connection import get_db_dependency
from marketplace.database.models import UserRole
from marketplace.principal import Principal
from marketplace.schemas import BulkProductDelete, BulkProductUpdate
from marketplace.serving.api.auth import require_roles
from marketplace.serving.cache import catalog_cache

router = APIRouter()

admin_only = require_roles(UserRole.ADMIN)


class BulkResult(BaseModel):
    count: int


@router.get("/dashboard")
async def dashboard_stats(
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    return await AdminDashboard(db).dashboard_stats(admin)


@router.get("/products/{product_id}/stats")
async def product_stats(
    product_id: UUID,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    return await AdminDashboard(db).product_stats(admin, product_id)


@router.post("/products/bulk-update", response_model=BulkResult)
async def bulk_update_products(
    payload: BulkProductUpdate,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> BulkResult:
    updated = await ProductService(db).bulk_update(admin, payload)
    await catalog_cache.invalidate_all()
    return BulkResult(count=updated)


@router.post("/products/bulk-delete", response_model=BulkResult)
async def bulk_delete_products(
    payload: BulkProductDelete,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db_dependency),
) -> BulkResult:
    removed = await ProductService(db).bulk_delete(admin, payload.product_ids)
    await catalog_cache.invalidate_all()
    return BulkResult(count=removed)
