"""
Orders API Endpoints

Checkout, the buyer's order history, vendor order views and the admin
order board.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.connection import get_db_dependency
from marketplace.database.models import OrderStatus, UserRole
from marketplace.orders.processor import OrderLine, OrderProcessor
from marketplace.principal import Principal
from marketplace.schemas import ShippingAddress
from marketplace.serving.api.auth import get_current_principal, require_roles

router = APIRouter()


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class OrderLineRequest(BaseModel):
    product_id: UUID
    quantity: int = Field(ge=1)


class PlaceOrderRequest(BaseModel):
    items: List[OrderLineRequest] = Field(min_length=1)
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None
    payment_result: Optional[Dict[str, Any]] = None
    shipping_price: Decimal = Field(default=Decimal("0"), ge=0)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: Optional[UUID] = None
    vendor_id: Optional[UUID] = None
    name: str
    image: Optional[str] = None
    quantity: int
    price: float
    discounted: bool


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    status: OrderStatus
    items: List[OrderItemResponse]
    shipping_address: Dict[str, Any] = {}
    payment_method: Optional[str] = None
    items_price: float
    shipping_price: float
    total_price: float
    created_at: datetime
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BuyerOrderResponse(OrderResponse):
    reviewed_product_ids: List[UUID] = []


class VendorOrderResponse(BaseModel):
    id: UUID
    user_id: UUID
    status: OrderStatus
    created_at: datetime
    items: List[OrderItemResponse]
    vendor_total: float


class OrderListResponse(BaseModel):
    """Paginated order list"""
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# =============================================================================
# BUYER
# =============================================================================

@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: PlaceOrderRequest,
    buyer: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> OrderResponse:
    order = await OrderProcessor(db).place_order(
        buyer,
        [OrderLine(product_id=line.product_id, quantity=line.quantity) for line in payload.items],
        shipping_address=payload.shipping_address.model_dump() if payload.shipping_address else None,
        payment_method=payload.payment_method,
        payment_result=payload.payment_result,
        shipping_price=payload.shipping_price,
    )
    return OrderResponse.model_validate(order)


@router.get("/mine", response_model=List[BuyerOrderResponse])
async def my_orders(
    buyer: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[BuyerOrderResponse]:
    orders, reviewed = await OrderProcessor(db).list_user_orders(buyer.id)
    responses = []
    for order in orders:
        response = BuyerOrderResponse.model_validate(order)
        response.reviewed_product_ids = [
            item.product_id for item in order.items if item.product_id in reviewed
        ]
        responses.append(response)
    return responses


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    actor: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> OrderResponse:
    return OrderResponse.model_validate(await OrderProcessor(db).cancel_order(actor, order_id))


# =============================================================================
# VENDOR / ADMIN
# =============================================================================

@router.get("/vendor", response_model=List[VendorOrderResponse])
async def vendor_orders(
    vendor: Principal = Depends(require_roles(UserRole.VENDOR, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db_dependency),
) -> List[VendorOrderResponse]:
    views = await OrderProcessor(db).list_vendor_orders(vendor)
    return [
        VendorOrderResponse(
            id=view.order.id,
            user_id=view.order.user_id,
            status=view.order.status,
            created_at=view.order.created_at,
            items=[OrderItemResponse.model_validate(item) for item in view.items],
            vendor_total=float(view.vendor_total),
        )
        for view in views
    ]


@router.get("", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    _: Principal = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db_dependency),
) -> OrderListResponse:
    orders, total = await OrderProcessor(db).list_all_orders(page=page, limit=page_size, status=status)
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    actor: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_dependency),
) -> OrderResponse:
    return OrderResponse.model_validate(await OrderProcessor(db).get_order(actor, order_id))


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: UUID,
    payload: StatusUpdateRequest,
    actor: Principal = Depends(require_roles(UserRole.VENDOR, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db_dependency),
) -> OrderResponse:
    return OrderResponse.model_validate(await OrderProcessor(db).update_status(actor, order_id, payload.status))


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_order(
    order_id: UUID,
    admin: Principal = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db_dependency),
) -> None:
    await OrderProcessor(db).delete_order(admin, order_id)
