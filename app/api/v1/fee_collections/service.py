"""
Fee collection ledger service.

Creation checks scope and period uniqueness and may apply a promo code; every later change
(payment, late fee, field update, cancellation, deletion, reminder) runs through LedgerStore.atomic_update so
concurrent writers never lose an update. Post-commit hooks are dispatched after the write and their
failures come back as response warnings.
"""

import logging
import math
from datetime import datetime
from typing import Iterator, List, Optional
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.api.v1.promo_codes import evaluator
from app.api.v1.promo_codes.service import claim_usage, find_by_code
from app.core import hooks as hook_events
from app.core.audit import log_fee_audit
from app.core.catalog import find_student_ids, get_fee_structure, get_student
from app.core.config import settings
from app.core.enums import OVERDUE, UNPAID, FeeCollectionStatus
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.hooks import hooks
from app.core.models import (
    FeeCollection,
    FeeCollectionPayment,
    FeeReminder,
    PromoCodeUsage,
    Student,
)
from app.core.money import ZERO, as_utc, compute_due, days_overdue, quantize, to_decimal, to_uuid, utcnow

from . import aggregation
from .schemas import (
    FeeCollectionCreate,
    FeeCollectionListResponse,
    FeeCollectionResponse,
    FeeCollectionStats,
    FeeCollectionUpdate,
    OverdueItem,
    Pagination,
    PaymentCreate,
    PaymentResponse,
    ReminderRequest,
    ReminderResponse,
    StudentDuesItem,
)
from .store import LedgerStore

logger = logging.getLogger(__name__)

ACTIVE_STATUS_FILTERS = {s.value for s in FeeCollectionStatus} | {OVERDUE, UNPAID}


def derive_status(paid_amount, due_amount) -> str:
    if quantize(due_amount) == ZERO:
        return FeeCollectionStatus.paid.value
    if quantize(paid_amount) > ZERO:
        return FeeCollectionStatus.partial.value
    return FeeCollectionStatus.pending.value


def _amounts(fc: FeeCollection) -> dict:
    return {
        "total_amount": str(quantize(fc.total_amount)),
        "discount_amount": str(quantize(fc.discount_amount)),
        "late_fee_amount": str(quantize(fc.late_fee_amount)),
        "paid_amount": str(quantize(fc.paid_amount)),
        "due_amount": str(quantize(fc.due_amount)),
        "status": fc.status,
    }


def _to_response(
    fc: FeeCollection,
    now: Optional[datetime] = None,
    warnings: Optional[List[str]] = None,
) -> FeeCollectionResponse:
    return FeeCollectionResponse(
        id=to_uuid(fc.id),
        tenant_id=to_uuid(fc.tenant_id),
        student_id=to_uuid(fc.student_id),
        student_name=fc.student.full_name if fc.student is not None else None,
        fee_structure_id=to_uuid(fc.fee_structure_id),
        fee_structure_name=fc.fee_structure.name if fc.fee_structure is not None else None,
        academic_year=fc.academic_year,
        month=fc.month,
        total_amount=quantize(fc.total_amount),
        discount_amount=quantize(fc.discount_amount),
        late_fee_amount=quantize(fc.late_fee_amount),
        paid_amount=quantize(fc.paid_amount),
        due_amount=quantize(fc.due_amount),
        due_date=as_utc(fc.due_date),
        status=fc.status,
        display_status=aggregation.display_status(fc, now),
        promo_code_id=to_uuid(fc.promo_code_id),
        remarks=fc.remarks,
        cancellation_reason=fc.cancellation_reason,
        cancelled_at=as_utc(fc.cancelled_at),
        payments=[PaymentResponse.model_validate(p) for p in fc.payments],
        reminders=[ReminderResponse.model_validate(r) for r in fc.reminders],
        created_by=to_uuid(fc.created_by),
        created_at=fc.created_at,
        updated_at=fc.updated_at,
        warnings=warnings or [],
    )


def _with_details(stmt):
    return stmt.options(
        joinedload(FeeCollection.student).joinedload(Student.school_class),
        joinedload(FeeCollection.fee_structure),
    )


def _period_filter(tenant_id: UUID, student_id: UUID, fee_structure_id: UUID, academic_year: str, month: Optional[str]):
    return and_(
        FeeCollection.tenant_id == tenant_id,
        FeeCollection.student_id == student_id,
        FeeCollection.fee_structure_id == fee_structure_id,
        FeeCollection.academic_year == academic_year,
        func.coalesce(FeeCollection.month, "") == (month or ""),
        FeeCollection.status != FeeCollectionStatus.cancelled.value,
    )


def _duplicate_period() -> ConflictError:
    return ConflictError(
        "An active fee collection already exists for this student, fee and period",
        code="DUPLICATE_PERIOD",
    )


# --- Create ---
async def create_fee_collection(
    db: AsyncSession,
    tenant_id: UUID,
    payload: FeeCollectionCreate,
    created_by: Optional[UUID],
    now: Optional[datetime] = None,
) -> FeeCollectionResponse:
    now = as_utc(now) or utcnow()
    student = await get_student(db, tenant_id, payload.student_id)
    if not student:
        raise NotFoundError("Student not found", code="STUDENT_NOT_FOUND")
    fs = await get_fee_structure(db, tenant_id, payload.fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found", code="FEE_STRUCTURE_NOT_FOUND")
    if not fs.applies_to_class(student.class_id):
        raise ValidationError(
            "Fee structure does not apply to the student's class",
            code="SCOPE_MISMATCH",
        )

    academic_year = payload.academic_year.strip()
    month = (payload.month or "").strip() or None
    existing = await db.execute(
        select(FeeCollection.id).where(
            _period_filter(tenant_id, student.id, fs.id, academic_year, month)
        )
    )
    if existing.first() is not None:
        raise _duplicate_period()

    total = quantize(fs.amount)
    discount = fs.calculate_discount()
    promo = None
    promo_discount = ZERO
    if payload.promo_code:
        # The fee structure stands in as the product being discounted
        promo = await find_by_code(db, tenant_id, payload.promo_code)
        evaluator.check_availability(promo, now)
        evaluator.ensure_applicable(promo, fs.id, fs.category)
        remaining = total - discount
        evaluator.ensure_minimum_order(promo, remaining)
        promo_discount = evaluator.calculate_discount(promo, remaining)
        discount = quantize(discount + promo_discount)

    try:
        fc = FeeCollection(
            tenant_id=tenant_id,
            student_id=student.id,
            fee_structure_id=fs.id,
            academic_year=academic_year,
            month=month,
            total_amount=total,
            discount_amount=discount,
            late_fee_amount=ZERO,
            paid_amount=ZERO,
            due_amount=compute_due(total, discount, ZERO, ZERO),
            due_date=as_utc(payload.due_date),
            status=FeeCollectionStatus.pending.value,
            promo_code_id=promo.id if promo is not None else None,
            remarks=(payload.remarks or "").strip() or None,
            created_by=created_by,
        )
        db.add(fc)
        await db.flush()
        if promo is not None:
            await claim_usage(db, promo)
            db.add(
                PromoCodeUsage(
                    tenant_id=tenant_id,
                    promo_code_id=promo.id,
                    user_id=created_by,
                    fee_collection_id=fc.id,
                    original_price=quantize(total - fs.calculate_discount()),
                    discount_amount=promo_discount,
                    final_price=fc.due_amount,
                    used_at=now,
                )
            )
        await log_fee_audit(
            db, tenant_id, "fee_collections", fc.id,
            "CREATE", None,
            {**_amounts(fc), "month": month, "academic_year": academic_year,
             "promo_code": promo.code if promo is not None else None},
            created_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise _duplicate_period()
    except ConflictError:
        await db.rollback()
        raise

    logger.info(
        "Fee collection %s created for student %s (%s %s), due %s",
        fc.id, student.id, academic_year, month or "-", fc.due_amount,
    )
    record = await LedgerStore(db).load(tenant_id, fc.id)
    warnings = await hooks.dispatch(hook_events.FEE_COLLECTION_CREATED, record)
    return _to_response(record, now, warnings)


# --- Read ---
async def get_fee_collection(
    db: AsyncSession,
    tenant_id: UUID,
    fee_collection_id: UUID,
    now: Optional[datetime] = None,
) -> FeeCollectionResponse:
    record = await LedgerStore(db).load(tenant_id, fee_collection_id)
    return _to_response(record, now)


async def list_fee_collections(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
    academic_year: Optional[str] = None,
    month: Optional[str] = None,
    search: Optional[str] = None,
    class_id: Optional[UUID] = None,
    page: int = 1,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> FeeCollectionListResponse:
    now = as_utc(now) or utcnow()
    limit = limit or settings.default_page_limit
    stmt = select(FeeCollection).where(FeeCollection.tenant_id == tenant_id)
    if student_id is not None:
        stmt = stmt.where(FeeCollection.student_id == student_id)
    if status_filter:
        if status_filter not in ACTIVE_STATUS_FILTERS:
            raise ValidationError(f"Invalid status filter: {status_filter}", code="INVALID_STATUS")
        if status_filter == UNPAID:
            stmt = stmt.where(FeeCollection.status.in_(aggregation.OPEN_STATUSES))
        elif status_filter == OVERDUE:
            stmt = stmt.where(
                FeeCollection.status.in_(aggregation.OPEN_STATUSES),
                FeeCollection.due_amount > 0,
                FeeCollection.due_date < now,
            )
        else:
            stmt = stmt.where(FeeCollection.status == status_filter)
    if academic_year:
        stmt = stmt.where(FeeCollection.academic_year == academic_year)
    if month:
        stmt = stmt.where(FeeCollection.month == month)
    if search or class_id is not None:
        student_ids = await find_student_ids(db, tenant_id, search=search, class_id=class_id)
        stmt = stmt.where(FeeCollection.student_id.in_(student_ids))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = (
        _with_details(stmt)
        .order_by(FeeCollection.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return FeeCollectionListResponse(
        items=[_to_response(fc, now) for fc in result.unique().scalars().all()],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


async def get_student_ledger(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    academic_year: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[FeeCollectionResponse]:
    student = await get_student(db, tenant_id, student_id)
    if not student:
        raise NotFoundError("Student not found", code="STUDENT_NOT_FOUND")
    stmt = select(FeeCollection).where(
        FeeCollection.tenant_id == tenant_id,
        FeeCollection.student_id == student_id,
    )
    if academic_year:
        stmt = stmt.where(FeeCollection.academic_year == academic_year)
    stmt = _with_details(stmt).order_by(FeeCollection.due_date)
    result = await db.execute(stmt)
    return [_to_response(fc, now) for fc in result.unique().scalars().all()]


# --- Mutations ---
async def apply_payment(
    db: AsyncSession,
    tenant_id: UUID,
    fee_collection_id: UUID,
    payload: PaymentCreate,
    collected_by: Optional[UUID],
    now: Optional[datetime] = None,
    store: Optional[LedgerStore] = None,
) -> FeeCollectionResponse:
    now = as_utc(now) or utcnow()
    amount = quantize(payload.amount)
    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than zero", code="INVALID_AMOUNT")

    def precondition(fc: FeeCollection) -> None:
        if fc.status == FeeCollectionStatus.cancelled.value:
            raise ConflictError("Cannot record payment for a cancelled fee collection", code="FEE_COLLECTION_CANCELLED")
        if fc.status == FeeCollectionStatus.paid.value:
            raise ConflictError("Fee collection is already fully paid", code="ALREADY_PAID")
        if amount > quantize(fc.due_amount):
            raise ConflictError(
                "Payment amount exceeds due amount",
                code="EXCEEDS_DUE",
                due_amount=quantize(fc.due_amount),
            )

    async def mutation(fc: FeeCollection) -> None:
        old = _amounts(fc)
        payment = FeeCollectionPayment(
            sequence=len(fc.payments) + 1,
            amount=amount,
            payment_date=as_utc(payload.payment_date) or now,
            payment_method=payload.payment_method.value,
            transaction_id=(payload.transaction_id or "").strip() or None,
            remarks=(payload.remarks or "").strip() or None,
            collected_by=collected_by,
        )
        fc.payments.append(payment)
        fc.paid_amount = quantize(to_decimal(fc.paid_amount) + amount)
        fc.due_amount = compute_due(fc.total_amount, fc.discount_amount, fc.late_fee_amount, fc.paid_amount)
        fc.status = derive_status(fc.paid_amount, fc.due_amount)
        await log_fee_audit(
            db, tenant_id, "fee_collections", fc.id,
            "PAYMENT", old,
            {**_amounts(fc), "payment_amount": str(amount), "payment_method": payment.payment_method},
            collected_by,
        )

    store = store or LedgerStore(db)
    record = await store.atomic_update(tenant_id, fee_collection_id, mutation, precondition)
    logger.info(
        "Payment of %s recorded on fee collection %s; status %s, due %s",
        amount, record.id, record.status, record.due_amount,
    )
    warnings = await hooks.dispatch(hook_events.PAYMENT_RECORDED, record, amount)
    return _to_response(record, now, warnings)


async def apply_late_fee(
    db: AsyncSession,
    tenant_id: UUID,
    fee_collection_id: UUID,
    changed_by: Optional[UUID],
    now: Optional[datetime] = None,
) -> FeeCollectionResponse:
    now = as_utc(now) or utcnow()

    def precondition(fc: FeeCollection) -> None:
        if fc.status == FeeCollectionStatus.cancelled.value:
            raise ConflictError("Cannot apply late fee to a cancelled fee collection", code="FEE_COLLECTION_CANCELLED")
        if fc.status == FeeCollectionStatus.paid.value:
            raise ConflictError("Fee collection is already fully paid", code="ALREADY_PAID")

    async def mutation(fc: FeeCollection) -> None:
        old = _amounts(fc)
        days_late = days_overdue(fc.due_date, now)
        fc.late_fee_amount = fc.fee_structure.calculate_late_fee(days_late)
        fc.due_amount = compute_due(fc.total_amount, fc.discount_amount, fc.late_fee_amount, fc.paid_amount)
        fc.status = derive_status(fc.paid_amount, fc.due_amount)
        await log_fee_audit(
            db, tenant_id, "fee_collections", fc.id,
            "LATE_FEE", old, {**_amounts(fc), "days_late": days_late},
            changed_by,
        )

    record = await LedgerStore(db).atomic_update(tenant_id, fee_collection_id, mutation, precondition)
    logger.info("Late fee %s applied to fee collection %s", record.late_fee_amount, record.id)
    return _to_response(record, now)


async def update_fee_collection(
    db: AsyncSession,
    tenant_id: UUID,
    fee_collection_id: UUID,
    payload: FeeCollectionUpdate,
    changed_by: Optional[UUID],
    now: Optional[datetime] = None,
) -> FeeCollectionResponse:
    now = as_utc(now) or utcnow()
    data = payload.model_dump(exclude_unset=True)

    async def mutation(fc: FeeCollection) -> None:
        old = _amounts(fc)
        for field in ("total_amount", "discount_amount", "late_fee_amount"):
            if data.get(field) is not None:
                setattr(fc, field, quantize(data[field]))
        if data.get("due_date") is not None:
            fc.due_date = as_utc(data["due_date"])
        if "remarks" in data:
            fc.remarks = (data["remarks"] or "").strip() or None
        fc.due_amount = compute_due(fc.total_amount, fc.discount_amount, fc.late_fee_amount, fc.paid_amount)

        new_status = data.get("status")
        if new_status is not None:
            new_status = FeeCollectionStatus(new_status).value
            if new_status == FeeCollectionStatus.paid.value and fc.due_amount > ZERO:
                raise ValidationError(
                    "Status can only be paid when nothing is due",
                    code="INVALID_STATUS",
                    due_amount=fc.due_amount,
                )
            if new_status in aggregation.OPEN_STATUSES and fc.due_amount == ZERO:
                raise ValidationError("Nothing is due; status must be paid", code="INVALID_STATUS")
            if new_status == FeeCollectionStatus.cancelled.value and fc.status != new_status:
                fc.cancelled_at = now
            fc.status = new_status
        elif fc.status != FeeCollectionStatus.cancelled.value:
            fc.status = derive_status(fc.paid_amount, fc.due_amount)

        await log_fee_audit(db, tenant_id, "fee_collections", fc.id, "UPDATE", old, _amounts(fc), changed_by)

    record = await LedgerStore(db).atomic_update(tenant_id, fee_collection_id, mutation)
    logger.info("Fee collection %s updated by %s", record.id, changed_by)
    return _to_response(record, now)


async def cancel_fee_collection(
    db: AsyncSession,
    tenant_id: UUID,
    fee_collection_id: UUID,
    reason: Optional[str],
    changed_by: Optional[UUID],
    now: Optional[datetime] = None,
) -> FeeCollectionResponse:
    now = as_utc(now) or utcnow()
    reason = (reason or "").strip() or "Cancelled by user"

    def precondition(fc: FeeCollection) -> None:
        if fc.status == FeeCollectionStatus.cancelled.value:
            raise ConflictError("Fee collection is already cancelled", code="ALREADY_CANCELLED")
        if fc.status == FeeCollectionStatus.paid.value:
            raise ConflictError("Cannot cancel a fully paid fee collection", code="ALREADY_PAID")

    async def mutation(fc: FeeCollection) -> None:
        old = _amounts(fc)
        fc.status = FeeCollectionStatus.cancelled.value
        fc.cancellation_reason = reason
        fc.cancelled_at = now
        note = f"Cancelled: {reason}"
        fc.remarks = f"{fc.remarks}\n{note}" if fc.remarks else note
        await log_fee_audit(
            db, tenant_id, "fee_collections", fc.id,
            "CANCEL", old, {**_amounts(fc), "reason": reason},
            changed_by,
        )

    record = await LedgerStore(db).atomic_update(tenant_id, fee_collection_id, mutation, precondition)
    logger.info("Fee collection %s cancelled: %s", record.id, reason)
    warnings = await hooks.dispatch(hook_events.FEE_COLLECTION_CANCELLED, record, reason)
    return _to_response(record, now, warnings)


async def delete_fee_collection(
    db: AsyncSession,
    tenant_id: UUID,
    fee_collection_id: UUID,
    changed_by: Optional[UUID],
) -> None:
    def precondition(fc: FeeCollection) -> None:
        if quantize(fc.paid_amount) > ZERO:
            raise ConflictError(
                "Cannot delete a fee collection with payments. Cancel it instead.",
                code="HAS_PAYMENTS",
            )

    async def mutation(fc: FeeCollection) -> None:
        await log_fee_audit(db, tenant_id, "fee_collections", fc.id, "DELETE", _amounts(fc), None, changed_by)
        await db.delete(fc)

    # The DELETE is version-checked, so a payment landing after the read sends us back to the guard
    await LedgerStore(db).atomic_update(tenant_id, fee_collection_id, mutation, precondition)
    logger.info("Fee collection %s deleted", fee_collection_id)


async def send_reminder(
    db: AsyncSession,
    tenant_id: UUID,
    fee_collection_id: UUID,
    payload: ReminderRequest,
    sent_by: Optional[UUID],
    now: Optional[datetime] = None,
) -> FeeCollectionResponse:
    """Record a reminder and hand it to the fee_reminder hook. Delivery itself lives in the hook."""
    now = as_utc(now) or utcnow()
    reminder_type = payload.reminder_type.value
    added: List[FeeReminder] = []

    def precondition(fc: FeeCollection) -> None:
        if fc.status == FeeCollectionStatus.cancelled.value:
            raise ConflictError("Cannot send reminder for a cancelled fee collection", code="FEE_COLLECTION_CANCELLED")
        if fc.status == FeeCollectionStatus.paid.value:
            raise ConflictError("Cannot send reminder for a fully paid fee collection", code="ALREADY_PAID")

    async def mutation(fc: FeeCollection) -> None:
        added.clear()
        reminder = FeeReminder(reminder_type=reminder_type, status="sent", sent_at=now, sent_by=sent_by)
        fc.reminders.append(reminder)
        added.append(reminder)
        await log_fee_audit(
            db, tenant_id, "fee_collections", fc.id,
            "REMINDER", None, {"reminder_type": reminder_type},
            sent_by,
        )

    record = await LedgerStore(db).atomic_update(tenant_id, fee_collection_id, mutation, precondition)
    warnings = await hooks.dispatch(hook_events.FEE_REMINDER, record, reminder_type)
    if warnings and added:
        added[0].status = "failed"
        await db.commit()
    logger.info("%s reminder for fee collection %s: %s", reminder_type, record.id, "failed" if warnings else "sent")
    return _to_response(record, now, warnings)


# --- Reports ---
def _open_records_query(tenant_id: UUID, academic_year: Optional[str]):
    academic_year = (academic_year or "").strip()
    if not academic_year:
        raise ValidationError("Academic year is required", code="ACADEMIC_YEAR_REQUIRED")
    stmt = select(FeeCollection).where(
        FeeCollection.tenant_id == tenant_id,
        FeeCollection.academic_year == academic_year,
        FeeCollection.status.in_(aggregation.OPEN_STATUSES),
        FeeCollection.due_amount > 0,
    )
    return _with_details(stmt)


async def compute_dues(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: Optional[str],
    search: Optional[str] = None,
    class_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Iterator[StudentDuesItem]:
    """Fetch open records for the year; per-student rows are built as the caller iterates."""
    stmt = _open_records_query(tenant_id, academic_year)
    if search or class_id is not None:
        student_ids = await find_student_ids(db, tenant_id, search=search, class_id=class_id)
        stmt = stmt.where(FeeCollection.student_id.in_(student_ids))
    result = await db.execute(stmt.order_by(FeeCollection.due_date))
    return aggregation.iter_student_dues(result.unique().scalars().all(), now)


async def list_overdue(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: Optional[str],
    now: Optional[datetime] = None,
) -> List[OverdueItem]:
    now = as_utc(now) or utcnow()
    stmt = _open_records_query(tenant_id, academic_year).where(FeeCollection.due_date < now)
    result = await db.execute(stmt.order_by(FeeCollection.due_date))
    return [aggregation.to_overdue_item(fc, now) for fc in result.unique().scalars().all()]


async def compute_stats(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> FeeCollectionStats:
    stmt = select(FeeCollection).where(FeeCollection.tenant_id == tenant_id)
    if academic_year:
        stmt = stmt.where(FeeCollection.academic_year == academic_year)
    if start_date is not None:
        stmt = stmt.where(FeeCollection.created_at >= as_utc(start_date))
    if end_date is not None:
        stmt = stmt.where(FeeCollection.created_at <= as_utc(end_date))
    result = await db.execute(stmt)
    return aggregation.summarize(result.scalars().all())
