"""Fee collection ledger schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import FeeCollectionStatus, PaymentMethod, ReminderType


# --- Ledger record ---
class FeeCollectionCreate(BaseModel):
    student_id: UUID
    fee_structure_id: UUID
    academic_year: str = Field(..., max_length=20, description="e.g. 2024-2025")
    month: Optional[str] = Field(None, max_length=30, description="e.g. January 2025; omit for non-monthly charges")
    due_date: datetime
    remarks: Optional[str] = Field(None, max_length=500)
    promo_code: Optional[str] = Field(None, max_length=20, description="Applied on the amount left after the structure discount")


class FeeCollectionUpdate(BaseModel):
    """Administrative override. Payments are never touched; due_amount is re-derived."""

    total_amount: Optional[Decimal] = Field(None, ge=0)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    late_fee_amount: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[datetime] = None
    status: Optional[FeeCollectionStatus] = None
    remarks: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., description="Must be positive and no more than the due amount")
    payment_date: Optional[datetime] = Field(None, description="Defaults to now")
    payment_method: PaymentMethod = PaymentMethod.CASH
    transaction_id: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = Field(None, max_length=500)


class ReminderRequest(BaseModel):
    reminder_type: ReminderType = ReminderType.NOTIFICATION


class PaymentResponse(BaseModel):
    id: UUID
    sequence: int
    amount: Decimal
    payment_date: datetime
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    remarks: Optional[str] = None
    collected_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class ReminderResponse(BaseModel):
    id: UUID
    reminder_type: ReminderType
    status: str
    sent_at: datetime
    sent_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class FeeCollectionResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    fee_structure_id: UUID
    fee_structure_name: Optional[str] = None
    academic_year: str
    month: Optional[str] = None
    total_amount: Decimal
    discount_amount: Decimal
    late_fee_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    due_date: datetime
    status: FeeCollectionStatus
    display_status: str = Field(..., description="Stored status, or overdue when past due with a balance")
    promo_code_id: Optional[UUID] = None
    remarks: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    payments: List[PaymentResponse] = Field(default_factory=list)
    reminders: List[ReminderResponse] = Field(default_factory=list)
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    warnings: List[str] = Field(default_factory=list, description="Post-commit side effects that failed")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class FeeCollectionListResponse(BaseModel):
    items: List[FeeCollectionResponse]
    pagination: Pagination


# --- Reports ---
class StudentBrief(BaseModel):
    id: UUID
    name: str
    admission_number: str
    class_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class PaymentHistoryItem(BaseModel):
    month: Optional[str] = None
    amount: Decimal
    date: datetime


class DueCollectionItem(BaseModel):
    id: UUID
    month: Optional[str] = None
    due_amount: Decimal
    due_date: datetime
    fee_structure: Optional[str] = None


class StudentDuesItem(BaseModel):
    student: StudentBrief
    one_month_due: Decimal
    two_month_due: Decimal
    three_month_due: Decimal
    other_charges_due: Decimal
    total_due: Decimal
    last_payment_date: Optional[datetime] = None
    payment_history: List[PaymentHistoryItem]
    collections: List[DueCollectionItem]


class OverdueItem(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    admission_number: Optional[str] = None
    fee_structure_name: Optional[str] = None
    academic_year: str
    month: Optional[str] = None
    due_amount: Decimal
    due_date: datetime
    status: FeeCollectionStatus
    display_status: str
    days_overdue: int


class FeeCollectionStats(BaseModel):
    total_collections: int
    total_amount: Decimal
    total_paid: Decimal
    total_due: Decimal
    average_collection: Decimal
    status_counts: Dict[str, int]
