"""Money and time helpers shared by the ledger, the arrears report and the promo evaluator.

Amounts are Decimal end to end and rounded to cents with ROUND_HALF_UP. Datetimes are
compared in UTC; naive values (SQLite hands them back that way) are taken to be UTC.
"""

import math
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional
from uuid import UUID

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Arrears are aged in fixed 30-day windows, not calendar months.
BUCKET_DAYS = 30


def to_uuid(val):
    if val is None:
        return None
    return val if isinstance(val, UUID) else UUID(str(val))


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def quantize(val) -> Decimal:
    return to_decimal(val).quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable) -> Decimal:
    return quantize(sum((to_decimal(v) for v in values), ZERO))


def percent_of(amount, rate) -> Decimal:
    return quantize(to_decimal(amount) * to_decimal(rate) / HUNDRED)


def clamp_non_negative(val) -> Decimal:
    val = quantize(val)
    return val if val > ZERO else ZERO


def compute_due(total, discount, late_fee, paid) -> Decimal:
    """Outstanding balance: total - discount + late fee - paid, never below zero."""
    return clamp_non_negative(
        to_decimal(total) - to_decimal(discount) + to_decimal(late_fee) - to_decimal(paid)
    )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(val: Optional[datetime]) -> Optional[datetime]:
    if val is None:
        return None
    if val.tzinfo is None:
        return val.replace(tzinfo=timezone.utc)
    return val.astimezone(timezone.utc)


def days_overdue(due_date: datetime, now: Optional[datetime] = None) -> int:
    """Whole days past the due date, rounded up; 0 when not yet due."""
    now = as_utc(now) or utcnow()
    elapsed = now - as_utc(due_date)
    if elapsed <= timedelta(0):
        return 0
    return math.ceil(elapsed.total_seconds() / 86400)


def months_overdue(due_date: datetime, now: Optional[datetime] = None) -> int:
    """Number of started 30-day windows since the due date (0 when not yet due).

    1 to 30 days -> 1, 31 to 60 days -> 2, and so on.
    """
    now = as_utc(now) or utcnow()
    elapsed = (now - as_utc(due_date)).total_seconds()
    if elapsed <= 0:
        return 0
    return math.ceil(elapsed / (BUCKET_DAYS * 86400))
