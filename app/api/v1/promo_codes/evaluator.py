"""Promo-code rules that need no database: availability window, usage cap, target scope and discount math.

Each failed check raises its own ConflictError code so callers can tell an expired code from an
exhausted one. Functions take the PromoCode row (or anything with the same attributes).
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.core.enums import PromoDiscountType, PromoTargetType
from app.core.exceptions import ConflictError
from app.core.money import ZERO, as_utc, percent_of, quantize, to_decimal, utcnow


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def check_availability(promo, now: Optional[datetime] = None) -> None:
    """Active flag, validity window and usage cap, in that order."""
    now = as_utc(now) or utcnow()
    if not promo.is_active:
        raise ConflictError("This promo code is not active", code="PROMO_INACTIVE")
    if promo.valid_from and now < as_utc(promo.valid_from):
        raise ConflictError(
            "This promo code is not yet valid",
            code="PROMO_NOT_YET_VALID",
            valid_from=as_utc(promo.valid_from).isoformat(),
        )
    if promo.valid_until and now > as_utc(promo.valid_until):
        raise ConflictError(
            "This promo code has expired",
            code="PROMO_EXPIRED",
            valid_until=as_utc(promo.valid_until).isoformat(),
        )
    if promo.usage_limit is not None and (promo.used_count or 0) >= promo.usage_limit:
        raise ConflictError("This promo code has reached its usage limit", code="PROMO_USAGE_LIMIT_REACHED")


def is_applicable(promo, item_id, category: Optional[str]) -> bool:
    target = promo.target_type
    if target == PromoTargetType.ALL.value:
        return True
    if target == PromoTargetType.SPECIFIC.value:
        return str(item_id) in {str(p) for p in (promo.target_products or [])}
    if target == PromoTargetType.CATEGORY.value:
        return category is not None and category in (promo.target_categories or [])
    return False


def ensure_applicable(promo, item_id, category: Optional[str]) -> None:
    if not is_applicable(promo, item_id, category):
        raise ConflictError("Promo code is not applicable to this product", code="PROMO_NOT_APPLICABLE")


def ensure_minimum_order(promo, amount) -> None:
    minimum = to_decimal(promo.minimum_order_amount)
    if to_decimal(amount) < minimum:
        raise ConflictError(
            f"Minimum order amount of {quantize(minimum)} required for this promo code",
            code="PROMO_BELOW_MINIMUM_ORDER",
            minimum_order_amount=quantize(minimum),
        )


def calculate_discount(promo, amount) -> Decimal:
    """Discount on amount; capped by max_discount_amount and never more than amount itself."""
    amount = quantize(amount)
    if amount <= ZERO:
        return ZERO
    if promo.discount_type == PromoDiscountType.PERCENTAGE.value:
        discount = percent_of(amount, promo.discount_value)
    else:
        discount = quantize(promo.discount_value)
    if promo.max_discount_amount is not None and discount > to_decimal(promo.max_discount_amount):
        discount = quantize(promo.max_discount_amount)
    return min(discount, amount)


def formatted_discount(promo) -> str:
    value = to_decimal(promo.discount_value)
    if promo.discount_type == PromoDiscountType.PERCENTAGE.value:
        return f"{value.normalize():f}%"
    return f"{quantize(value)}"
