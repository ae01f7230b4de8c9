"""
Arrears aggregation over already-loaded ledger records. No database access here: the service
fetches rows (student, class, fee structure and payments attached) and these helpers fold them
into the dues report, the overdue list and the summary stats.
"""

from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional

from app.core.enums import OTHER_CHARGE_FREQUENCIES, OVERDUE, FeeCollectionStatus
from app.core.money import ZERO, as_utc, days_overdue, money_sum, months_overdue, quantize, to_uuid, utcnow

from .schemas import (
    DueCollectionItem,
    FeeCollectionStats,
    OverdueItem,
    PaymentHistoryItem,
    StudentBrief,
    StudentDuesItem,
)

ONE_MONTH = "one_month_due"
TWO_MONTH = "two_month_due"
THREE_MONTH = "three_month_due"
OTHER = "other_charges_due"

OPEN_STATUSES = (FeeCollectionStatus.pending.value, FeeCollectionStatus.partial.value)


def is_overdue(record, now: Optional[datetime] = None) -> bool:
    now = as_utc(now) or utcnow()
    return (
        record.status in OPEN_STATUSES
        and quantize(record.due_amount) > ZERO
        and as_utc(record.due_date) < now
    )


def display_status(record, now: Optional[datetime] = None) -> str:
    """Stored status, except pending/partial records past their due date read as overdue."""
    return OVERDUE if is_overdue(record, now) else record.status


def is_other_charge(record) -> bool:
    fs = record.fee_structure
    if fs is not None and fs.frequency in OTHER_CHARGE_FREQUENCIES:
        return True
    return not (record.month or "").strip()


def bucket_for(record, now: Optional[datetime] = None) -> str:
    """Arrears bucket for one record. Records not yet due count as current-month dues."""
    if is_other_charge(record):
        return OTHER
    months = months_overdue(record.due_date, now)
    if months <= 1:
        return ONE_MONTH
    if months == 2:
        return TWO_MONTH
    return THREE_MONTH


def _student_brief(student) -> StudentBrief:
    school_class = getattr(student, "school_class", None)
    return StudentBrief(
        id=to_uuid(student.id),
        name=student.full_name,
        admission_number=student.admission_number or student.roll_number or "N/A",
        class_name=school_class.display_name if school_class is not None else None,
        email=student.email,
        phone=student.phone or student.parent_phone,
    )


def iter_student_dues(records: Iterable, now: Optional[datetime] = None) -> Iterator[StudentDuesItem]:
    """
    Group open records by student (first-seen order) and yield one dues item per student.

    Records are expected in due-date order; collections and payment history keep that order.
    """
    now = as_utc(now) or utcnow()
    grouped: "OrderedDict[str, dict]" = OrderedDict()
    for record in records:
        key = str(record.student_id)
        entry = grouped.get(key)
        if entry is None:
            entry = grouped[key] = {
                "student": record.student,
                "buckets": {ONE_MONTH: [], TWO_MONTH: [], THREE_MONTH: [], OTHER: []},
                "history": [],
                "collections": [],
                "last_payment": None,
            }
        entry["buckets"][bucket_for(record, now)].append(record.due_amount)
        for payment in record.payments:
            paid_on = as_utc(payment.payment_date)
            entry["history"].append(
                PaymentHistoryItem(month=record.month, amount=quantize(payment.amount), date=paid_on)
            )
            if entry["last_payment"] is None or paid_on > entry["last_payment"]:
                entry["last_payment"] = paid_on
        entry["collections"].append(
            DueCollectionItem(
                id=to_uuid(record.id),
                month=record.month,
                due_amount=quantize(record.due_amount),
                due_date=as_utc(record.due_date),
                fee_structure=record.fee_structure.name if record.fee_structure is not None else None,
            )
        )

    for entry in grouped.values():
        buckets: Dict[str, Decimal] = {name: money_sum(amounts) for name, amounts in entry["buckets"].items()}
        yield StudentDuesItem(
            student=_student_brief(entry["student"]),
            total_due=money_sum(buckets.values()),
            last_payment_date=entry["last_payment"],
            payment_history=entry["history"],
            collections=entry["collections"],
            **buckets,
        )


def to_overdue_item(record, now: Optional[datetime] = None) -> OverdueItem:
    student = record.student
    return OverdueItem(
        id=to_uuid(record.id),
        student_id=to_uuid(record.student_id),
        student_name=student.full_name if student is not None else None,
        admission_number=(student.admission_number or student.roll_number) if student is not None else None,
        fee_structure_name=record.fee_structure.name if record.fee_structure is not None else None,
        academic_year=record.academic_year,
        month=record.month,
        due_amount=quantize(record.due_amount),
        due_date=as_utc(record.due_date),
        status=record.status,
        display_status=display_status(record, now),
        days_overdue=days_overdue(record.due_date, now),
    )


def summarize(records: List) -> FeeCollectionStats:
    status_counts = {s.value: 0 for s in FeeCollectionStatus}
    for record in records:
        status_counts[record.status] = status_counts.get(record.status, 0) + 1
    total_paid = money_sum(r.paid_amount for r in records)
    count = len(records)
    return FeeCollectionStats(
        total_collections=count,
        total_amount=money_sum(
            quantize(r.total_amount) - quantize(r.discount_amount) + quantize(r.late_fee_amount)
            for r in records
        ),
        total_paid=total_paid,
        total_due=money_sum(r.due_amount for r in records),
        average_collection=quantize(total_paid / count) if count else ZERO,
        status_counts=status_counts,
    )
