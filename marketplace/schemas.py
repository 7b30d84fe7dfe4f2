"""
Request Payloads

Pydantic models for the write paths shared by the services and the HTTP
layer. Multipart clients send lists and objects as JSON strings (or as
comma separated text) and booleans as "true"/"false"; those shapes are
normalised here, once, before any service sees them.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from marketplace.database.models import ApprovalStatus, DiscountType, ProductStatus


def parse_json_value(value: Any) -> Any:
    """Decode a JSON string, leaving any other value untouched."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return value
    return value


def parse_string_list(value: Any) -> Any:
    parsed = parse_json_value(value)
    if parsed is None:
        return []
    if isinstance(parsed, str):
        return [part.strip() for part in parsed.split(",") if part.strip()]
    return parsed


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# =============================================================================
# CATALOG
# =============================================================================

class DiscountInput(BaseModel):
    """Discount window attached to a product"""
    type: DiscountType = DiscountType.NONE
    value: Decimal = Field(default=Decimal("0"), ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_quantity: int = Field(default=1, ge=1)
    max_uses: Optional[int] = Field(default=None, ge=1)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalise_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_window(self) -> "DiscountInput":
        if self.type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("Discount end date must be after its start date")
        return self


class ImageInput(BaseModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class ProductFields(BaseModel):
    """Fields shared by create and update, with multipart normalisation"""

    @field_validator("tags", "colors", "sizes", mode="before", check_fields=False)
    @classmethod
    def parse_lists(cls, v: Any) -> Any:
        return parse_string_list(v)

    @field_validator("images", "discount", mode="before", check_fields=False)
    @classmethod
    def parse_objects(cls, v: Any) -> Any:
        return parse_json_value(v)


class ProductCreate(ProductFields):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    short_description: Optional[str] = Field(default=None, max_length=500)
    sku: Optional[str] = Field(default=None, max_length=50)
    barcode: Optional[str] = None
    brand: Optional[str] = None
    price: Decimal = Field(ge=0)
    compare_at_price: Optional[Decimal] = Field(default=None, ge=0)
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    discount: Optional[DiscountInput] = None
    stock: int = Field(default=0, ge=0)
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    track_inventory: bool = True
    allow_backorders: bool = False
    category_id: UUID
    subcategory_id: Optional[UUID] = None
    vendor_id: Optional[UUID] = None
    tags: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    images: List[ImageInput] = Field(default_factory=list)
    status: ProductStatus = ProductStatus.ACTIVE
    is_featured: bool = False


class ProductUpdate(ProductFields):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    short_description: Optional[str] = Field(default=None, max_length=500)
    barcode: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    compare_at_price: Optional[Decimal] = Field(default=None, ge=0)
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    discount: Optional[DiscountInput] = None
    stock: Optional[int] = Field(default=None, ge=0)
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    track_inventory: Optional[bool] = None
    allow_backorders: Optional[bool] = None
    category_id: Optional[UUID] = None
    subcategory_id: Optional[UUID] = None
    vendor_id: Optional[UUID] = None
    tags: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    images: Optional[List[ImageInput]] = None
    status: Optional[ProductStatus] = None
    is_featured: Optional[bool] = None


class BulkProductUpdate(BaseModel):
    """Admin changes applied to many products at once"""
    product_ids: List[UUID] = Field(min_length=1)
    status: Optional[ProductStatus] = None
    category_id: Optional[UUID] = None
    is_featured: Optional[bool] = None


class BulkProductDelete(BaseModel):
    product_ids: List[UUID] = Field(min_length=1)


class ProductReviewDecision(BaseModel):
    decision: ApprovalStatus
    notes: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[UUID] = None
    display_order: int = 0
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[UUID] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


# =============================================================================
# SHOPS
# =============================================================================

class ShopCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class ShopUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


# =============================================================================
# ORDERS
# =============================================================================

class ShippingAddress(BaseModel):
    full_name: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    phone_number: Optional[str] = None
