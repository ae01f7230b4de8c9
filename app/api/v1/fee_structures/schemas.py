"""Fee structure schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import AdjustmentType, FeeFrequency, FeeStructureStatus


class FeeStructureCreate(BaseModel):
    name: str = Field(..., max_length=100)
    category: str = Field(..., max_length=100)
    class_id: Optional[UUID] = Field(None, description="Omit to apply the fee to all classes")
    academic_year: str = Field(..., max_length=20)
    amount: Decimal = Field(..., ge=0)
    frequency: FeeFrequency = FeeFrequency.MONTHLY
    due_day: int = Field(1, ge=1, le=31)
    discount_enabled: bool = False
    discount_type: AdjustmentType = AdjustmentType.PERCENTAGE
    discount_value: Decimal = Field(Decimal("0"), ge=0)
    discount_description: Optional[str] = Field(None, max_length=255)
    late_fee_enabled: bool = False
    late_fee_type: AdjustmentType = AdjustmentType.FIXED
    late_fee_value: Decimal = Field(Decimal("0"), ge=0)
    grace_period_days: int = Field(0, ge=0)
    description: Optional[str] = Field(None, max_length=500)


class FeeStructureResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    category: str
    class_id: Optional[UUID] = None
    academic_year: str
    amount: Decimal
    frequency: FeeFrequency
    due_day: int
    discount_enabled: bool
    discount_type: AdjustmentType
    discount_value: Decimal
    discount_amount: Decimal = Field(..., description="Discount the structure grants on its own amount")
    late_fee_enabled: bool
    late_fee_type: AdjustmentType
    late_fee_value: Decimal
    grace_period_days: int
    status: FeeStructureStatus
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
