"""Promo code schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import PromoDiscountType, PromoTargetType


class PromoCodeCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=20)
    description: Optional[str] = Field(None, max_length=500)
    discount_type: PromoDiscountType
    discount_value: Decimal = Field(..., ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0, description="Cap on the discount; omit for no cap")
    minimum_order_amount: Decimal = Field(Decimal("0"), ge=0)
    target_type: PromoTargetType = PromoTargetType.ALL
    target_products: List[UUID] = Field(default_factory=list)
    target_categories: List[str] = Field(default_factory=list)
    usage_limit: Optional[int] = Field(None, ge=1, description="Omit for unlimited use")
    valid_from: Optional[datetime] = Field(None, description="Defaults to now")
    valid_until: datetime
    is_active: bool = True


class PromoCodeUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=3, max_length=20)
    description: Optional[str] = Field(None, max_length=500)
    discount_type: Optional[PromoDiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    target_type: Optional[PromoTargetType] = None
    target_products: Optional[List[UUID]] = None
    target_categories: Optional[List[str]] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class PromoCodeResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    code: str
    description: Optional[str] = None
    discount_type: PromoDiscountType
    discount_value: Decimal
    formatted_discount: str
    max_discount_amount: Optional[Decimal] = None
    minimum_order_amount: Decimal
    target_type: PromoTargetType
    target_products: List[UUID]
    target_categories: List[str]
    usage_limit: Optional[int] = None
    used_count: int
    remaining_uses: Optional[int] = None
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class PromoCodeListResponse(BaseModel):
    items: List[PromoCodeResponse]
    pagination: Pagination


# --- Validation / redemption ---
class PromoValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    product_id: UUID
    order_amount: Optional[Decimal] = Field(None, ge=0, description="Defaults to the product price")


class PromoRedeemRequest(PromoValidateRequest):
    order_reference: Optional[str] = Field(None, max_length=100)


class PromoCodeBrief(BaseModel):
    id: UUID
    code: str
    description: Optional[str] = None
    discount_type: PromoDiscountType
    discount_value: Decimal
    formatted_discount: str


class PromoValidationResult(BaseModel):
    promo_code: PromoCodeBrief
    original_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    savings: Decimal


class PromoRedeemResult(PromoValidationResult):
    usage_id: UUID
    used_count: int


class PromoCodeAvailability(BaseModel):
    """Result of the lighter code-only check (no product binding)."""

    id: UUID
    code: str
    description: Optional[str] = None
    discount_type: PromoDiscountType
    discount_value: Decimal
    max_discount_amount: Optional[Decimal] = None
    minimum_order_amount: Decimal
    target_type: PromoTargetType
    usage_limit: Optional[int] = None
    used_count: int
    valid_until: datetime
    is_active: bool


class PromoCodeStats(BaseModel):
    total_promo_codes: int
    active_promo_codes: int
    expired_promo_codes: int
    used_promo_codes: int
    total_discount_given: Decimal
