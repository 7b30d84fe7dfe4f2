"""
Notifications API Endpoints
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.connection import get_db_dependency
from marketplace.database.models import NotificationType
from marketplace.principal import Principal
from marketplace.serving.api.auth import get_current_principal
from marketplace.social.notifications import NotificationService

router = APIRouter()


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: NotificationType
    title: str
    message: str
    order_id: Optional[UUID] = None
    product_id: Optional[UUID] = None
    shop_id: Optional[UUID] = None
    is_read: bool
    created_at: datetime


class NotificationPageResponse(BaseModel):
    items: List[NotificationResponse]
    total: int
    unread_count: int
    page: int
    pages: int


@router.get("", response_model=NotificationPageResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> NotificationPageResponse:
    result = await NotificationService(db).list_for(user.id, page=page, limit=limit)
    return NotificationPageResponse(
        items=[NotificationResponse.model_validate(item) for item in result.items],
        total=result.total,
        unread_count=result.unread_count,
        page=result.page,
        pages=result.pages,
    )


@router.get("/unread-count")
async def unread_count(
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, int]:
    return {"unread_count": await NotificationService(db).unread_count(user.id)}


@router.patch("/read-all")
async def mark_all_read(
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, int]:
    return {"updated": await NotificationService(db).mark_all_read(user.id)}


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> NotificationResponse:
    return NotificationResponse.model_validate(await NotificationService(db).mark_read(user.id, notification_id))


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: UUID,
    user: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await NotificationService(db).delete(user.id, notification_id)
