"""Promo code service: CRUD, validation against a product, atomic redemption and stats."""

import logging
import math
import re
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import log_fee_audit
from app.core.catalog import count_existing_products, get_product
from app.core.config import settings
from app.core.enums import PromoDiscountType, PromoTargetType
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.models import PromoCode, PromoCodeUsage
from app.core.money import HUNDRED, ZERO, as_utc, quantize, to_decimal, to_uuid, utcnow

from . import evaluator
from .schemas import (
    Pagination,
    PromoCodeAvailability,
    PromoCodeBrief,
    PromoCodeCreate,
    PromoCodeListResponse,
    PromoCodeResponse,
    PromoCodeStats,
    PromoCodeUpdate,
    PromoRedeemRequest,
    PromoRedeemResult,
    PromoValidationResult,
)

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,20}$")


def _to_response(pc: PromoCode) -> PromoCodeResponse:
    remaining = None
    if pc.usage_limit is not None:
        remaining = max(0, pc.usage_limit - (pc.used_count or 0))
    return PromoCodeResponse(
        id=to_uuid(pc.id),
        tenant_id=to_uuid(pc.tenant_id),
        code=pc.code,
        description=pc.description,
        discount_type=pc.discount_type,
        discount_value=to_decimal(pc.discount_value),
        formatted_discount=evaluator.formatted_discount(pc),
        max_discount_amount=to_decimal(pc.max_discount_amount) if pc.max_discount_amount is not None else None,
        minimum_order_amount=to_decimal(pc.minimum_order_amount),
        target_type=pc.target_type,
        target_products=[to_uuid(p) for p in (pc.target_products or [])],
        target_categories=list(pc.target_categories or []),
        usage_limit=pc.usage_limit,
        used_count=pc.used_count or 0,
        remaining_uses=remaining,
        valid_from=as_utc(pc.valid_from),
        valid_until=as_utc(pc.valid_until),
        is_active=pc.is_active,
        created_by=to_uuid(pc.created_by),
        created_at=pc.created_at,
        updated_at=pc.updated_at,
    )


def _brief(pc: PromoCode) -> PromoCodeBrief:
    return PromoCodeBrief(
        id=to_uuid(pc.id),
        code=pc.code,
        description=pc.description,
        discount_type=pc.discount_type,
        discount_value=to_decimal(pc.discount_value),
        formatted_discount=evaluator.formatted_discount(pc),
    )


def _normalized_code(raw: str) -> str:
    code = evaluator.normalize_code(raw)
    if not CODE_PATTERN.match(code):
        raise ValidationError(
            "Promo code must be 3-20 characters of letters, numbers, underscores and hyphens",
            code="INVALID_CODE",
        )
    return code


async def _validate_rules(
    db: AsyncSession,
    tenant_id: UUID,
    discount_type: str,
    discount_value: Decimal,
    target_type: str,
    target_products: list,
    valid_from: datetime,
    valid_until: datetime,
) -> None:
    if target_type == PromoTargetType.SPECIFIC.value and target_products:
        found = await count_existing_products(db, tenant_id, target_products)
        if found != len({str(p) for p in target_products}):
            raise ValidationError("One or more target products do not exist", code="INVALID_TARGET")
    if discount_type == PromoDiscountType.PERCENTAGE.value and to_decimal(discount_value) > HUNDRED:
        raise ValidationError("Percentage discount cannot exceed 100%", code="INVALID_DISCOUNT")
    if as_utc(valid_until) <= as_utc(valid_from):
        raise ValidationError("Valid until date must be after valid from date", code="INVALID_WINDOW")


async def _code_taken(db: AsyncSession, tenant_id: UUID, code: str, exclude_id: Optional[UUID] = None) -> bool:
    stmt = select(PromoCode.id).where(PromoCode.tenant_id == tenant_id, PromoCode.code == code)
    if exclude_id is not None:
        stmt = stmt.where(PromoCode.id != exclude_id)
    return (await db.execute(stmt)).first() is not None


async def _get_scoped(db: AsyncSession, tenant_id: UUID, promo_code_id: UUID) -> PromoCode:
    result = await db.execute(
        select(PromoCode).where(PromoCode.id == promo_code_id, PromoCode.tenant_id == tenant_id)
    )
    pc = result.scalar_one_or_none()
    if not pc:
        raise NotFoundError("Promo code not found", code="PROMO_NOT_FOUND")
    return pc


async def find_by_code(db: AsyncSession, tenant_id: UUID, code: str) -> PromoCode:
    """Case-insensitive lookup; codes are stored upper-case."""
    result = await db.execute(
        select(PromoCode).where(
            PromoCode.tenant_id == tenant_id,
            PromoCode.code == evaluator.normalize_code(code),
        )
    )
    pc = result.scalar_one_or_none()
    if not pc:
        raise NotFoundError("Invalid promo code", code="PROMO_NOT_FOUND")
    return pc


async def claim_usage(db: AsyncSession, promo: PromoCode) -> None:
    """Increment used_count only if the cap still allows it, in one conditional UPDATE.

    Runs inside the caller's transaction; losing the race to the last remaining use raises
    UsageLimitReached instead of overshooting the cap.
    """
    result = await db.execute(
        update(PromoCode)
        .where(
            PromoCode.id == promo.id,
            PromoCode.is_active.is_(True),
            or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit),
        )
        .values(used_count=PromoCode.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("This promo code has reached its usage limit", code="PROMO_USAGE_LIMIT_REACHED")


# --- CRUD ---
async def create_promo_code(
    db: AsyncSession,
    tenant_id: UUID,
    payload: PromoCodeCreate,
    created_by: Optional[UUID],
    now: Optional[datetime] = None,
) -> PromoCodeResponse:
    code = _normalized_code(payload.code)
    valid_from = as_utc(payload.valid_from) or as_utc(now) or utcnow()
    valid_until = as_utc(payload.valid_until)
    target_type = payload.target_type.value
    await _validate_rules(
        db,
        tenant_id,
        payload.discount_type.value,
        payload.discount_value,
        target_type,
        payload.target_products,
        valid_from,
        valid_until,
    )
    if await _code_taken(db, tenant_id, code):
        raise ConflictError("Promo code already exists", code="DUPLICATE_CODE")
    try:
        pc = PromoCode(
            tenant_id=tenant_id,
            code=code,
            description=(payload.description or "").strip(),
            discount_type=payload.discount_type.value,
            discount_value=payload.discount_value,
            max_discount_amount=payload.max_discount_amount or None,
            minimum_order_amount=payload.minimum_order_amount or ZERO,
            target_type=target_type,
            target_products=[str(p) for p in payload.target_products] if target_type == PromoTargetType.SPECIFIC.value else [],
            target_categories=[c.strip() for c in payload.target_categories] if target_type == PromoTargetType.CATEGORY.value else [],
            usage_limit=payload.usage_limit,
            used_count=0,
            valid_from=valid_from,
            valid_until=valid_until,
            is_active=payload.is_active,
            created_by=created_by,
        )
        db.add(pc)
        await db.flush()
        await log_fee_audit(
            db, tenant_id, "promo_codes", pc.id,
            "CREATE", None,
            {"code": code, "discount_type": pc.discount_type, "discount_value": str(pc.discount_value)},
            created_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Promo code already exists", code="DUPLICATE_CODE")
    await db.refresh(pc)
    logger.info("Promo code %s created for tenant %s", code, tenant_id)
    return _to_response(pc)


async def list_promo_codes(
    db: AsyncSession,
    tenant_id: UUID,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    target_type: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> PromoCodeListResponse:
    limit = limit or settings.default_page_limit
    stmt = select(PromoCode).where(PromoCode.tenant_id == tenant_id)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(PromoCode.code.ilike(pattern), PromoCode.description.ilike(pattern)))
    if is_active is not None:
        stmt = stmt.where(PromoCode.is_active.is_(is_active))
    if target_type and target_type != PromoTargetType.ALL.value:
        stmt = stmt.where(PromoCode.target_type == target_type)
    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = stmt.order_by(PromoCode.created_at.desc()).offset((page - 1) * limit).limit(limit)
    result = await db.execute(stmt)
    return PromoCodeListResponse(
        items=[_to_response(pc) for pc in result.scalars().all()],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


async def get_promo_code(db: AsyncSession, tenant_id: UUID, promo_code_id: UUID) -> PromoCodeResponse:
    return _to_response(await _get_scoped(db, tenant_id, promo_code_id))


async def update_promo_code(
    db: AsyncSession,
    tenant_id: UUID,
    promo_code_id: UUID,
    payload: PromoCodeUpdate,
    changed_by: Optional[UUID],
) -> PromoCodeResponse:
    pc = await _get_scoped(db, tenant_id, promo_code_id)
    data = payload.model_dump(exclude_unset=True)

    code = _normalized_code(data["code"]) if data.get("code") else pc.code
    discount_type = data["discount_type"].value if data.get("discount_type") else pc.discount_type
    discount_value = data["discount_value"] if data.get("discount_value") is not None else pc.discount_value
    target_type = data["target_type"].value if data.get("target_type") else pc.target_type
    valid_from = as_utc(data.get("valid_from")) or as_utc(pc.valid_from)
    valid_until = as_utc(data.get("valid_until")) or as_utc(pc.valid_until)
    target_products = data.get("target_products")
    if target_products is None:
        target_products = pc.target_products or []

    await _validate_rules(
        db, tenant_id, discount_type, discount_value, target_type,
        target_products, valid_from, valid_until,
    )
    if code != pc.code and await _code_taken(db, tenant_id, code, exclude_id=pc.id):
        raise ConflictError("Promo code already exists", code="DUPLICATE_CODE")

    old = {"code": pc.code, "discount_type": pc.discount_type, "discount_value": str(pc.discount_value), "is_active": pc.is_active}
    pc.code = code
    pc.discount_type = discount_type
    pc.discount_value = discount_value
    pc.target_type = target_type
    pc.valid_from = valid_from
    pc.valid_until = valid_until
    if "description" in data:
        pc.description = (data["description"] or "").strip()
    if "max_discount_amount" in data:
        pc.max_discount_amount = data["max_discount_amount"]
    if data.get("minimum_order_amount") is not None:
        pc.minimum_order_amount = data["minimum_order_amount"]
    if "usage_limit" in data:
        pc.usage_limit = data["usage_limit"]
    if data.get("is_active") is not None:
        pc.is_active = data["is_active"]
    pc.target_products = [str(p) for p in target_products] if target_type == PromoTargetType.SPECIFIC.value else []
    if target_type == PromoTargetType.CATEGORY.value:
        if data.get("target_categories") is not None:
            pc.target_categories = [c.strip() for c in data["target_categories"]]
    else:
        pc.target_categories = []

    await log_fee_audit(
        db, tenant_id, "promo_codes", pc.id,
        "UPDATE", old,
        {"code": pc.code, "discount_type": pc.discount_type, "discount_value": str(pc.discount_value), "is_active": pc.is_active},
        changed_by,
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Promo code already exists", code="DUPLICATE_CODE")
    await db.refresh(pc)
    return _to_response(pc)


async def delete_promo_code(
    db: AsyncSession,
    tenant_id: UUID,
    promo_code_id: UUID,
    changed_by: Optional[UUID],
) -> None:
    pc = await _get_scoped(db, tenant_id, promo_code_id)
    if (pc.used_count or 0) > 0:
        raise ConflictError(
            "Cannot delete promo code that has been used. You can deactivate it instead.",
            code="PROMO_IN_USE",
        )
    await log_fee_audit(db, tenant_id, "promo_codes", pc.id, "DELETE", {"code": pc.code}, None, changed_by)
    await db.delete(pc)
    await db.commit()
    logger.info("Promo code %s deleted for tenant %s", pc.code, tenant_id)


# --- Validation ---
async def validate_promo_code(
    db: AsyncSession,
    tenant_id: UUID,
    code: str,
    product_id: UUID,
    order_amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> PromoValidationResult:
    """Full check against a product. Pure: nothing is written."""
    pc = await find_by_code(db, tenant_id, code)
    evaluator.check_availability(pc, now)
    product = await get_product(db, tenant_id, product_id)
    if not product:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
    evaluator.ensure_applicable(pc, product.id, product.category)
    check_amount = quantize(order_amount if order_amount is not None else product.price)
    evaluator.ensure_minimum_order(pc, check_amount)
    discount = evaluator.calculate_discount(pc, check_amount)
    return PromoValidationResult(
        promo_code=_brief(pc),
        original_price=check_amount,
        discount_amount=discount,
        final_price=check_amount - discount,
        savings=discount,
    )


async def validate_promo_code_by_code(
    db: AsyncSession,
    tenant_id: UUID,
    code: str,
    now: Optional[datetime] = None,
) -> PromoCodeAvailability:
    """Existence, active flag, window and usage cap only; no product binding."""
    pc = await find_by_code(db, tenant_id, code)
    evaluator.check_availability(pc, now)
    return PromoCodeAvailability(
        id=to_uuid(pc.id),
        code=pc.code,
        description=pc.description,
        discount_type=pc.discount_type,
        discount_value=to_decimal(pc.discount_value),
        max_discount_amount=to_decimal(pc.max_discount_amount) if pc.max_discount_amount is not None else None,
        minimum_order_amount=to_decimal(pc.minimum_order_amount),
        target_type=pc.target_type,
        usage_limit=pc.usage_limit,
        used_count=pc.used_count or 0,
        valid_until=as_utc(pc.valid_until),
        is_active=pc.is_active,
    )


async def redeem_promo_code(
    db: AsyncSession,
    tenant_id: UUID,
    payload: PromoRedeemRequest,
    user_id: Optional[UUID],
    now: Optional[datetime] = None,
) -> PromoRedeemResult:
    """Validate, then claim one use atomically and record it."""
    result = await validate_promo_code(
        db, tenant_id, payload.code, payload.product_id, payload.order_amount, now=now
    )
    pc = await find_by_code(db, tenant_id, payload.code)
    await claim_usage(db, pc)
    usage = PromoCodeUsage(
        tenant_id=tenant_id,
        promo_code_id=pc.id,
        user_id=user_id,
        product_id=payload.product_id,
        order_reference=(payload.order_reference or "").strip() or None,
        original_price=result.original_price,
        discount_amount=result.discount_amount,
        final_price=result.final_price,
        used_at=as_utc(now) or utcnow(),
    )
    db.add(usage)
    await db.flush()
    await log_fee_audit(
        db, tenant_id, "promo_codes", pc.id,
        "REDEEM", None,
        {"usage_id": str(usage.id), "product_id": str(payload.product_id), "discount_amount": str(result.discount_amount)},
        user_id,
    )
    await db.commit()
    await db.refresh(pc)
    logger.info("Promo code %s redeemed (%s/%s) for tenant %s", pc.code, pc.used_count, pc.usage_limit, tenant_id)
    return PromoRedeemResult(
        **result.model_dump(),
        usage_id=usage.id,
        used_count=pc.used_count,
    )


async def get_promo_code_stats(
    db: AsyncSession,
    tenant_id: UUID,
    now: Optional[datetime] = None,
) -> PromoCodeStats:
    now = as_utc(now) or utcnow()
    base = select(func.count(PromoCode.id)).where(PromoCode.tenant_id == tenant_id)
    total = (await db.execute(base)).scalar() or 0
    active = (await db.execute(base.where(PromoCode.is_active.is_(True)))).scalar() or 0
    expired = (await db.execute(base.where(PromoCode.valid_until < now))).scalar() or 0
    used = (await db.execute(base.where(PromoCode.used_count > 0))).scalar() or 0
    discount_total = (
        await db.execute(
            select(func.coalesce(func.sum(PromoCodeUsage.discount_amount), 0)).where(
                PromoCodeUsage.tenant_id == tenant_id
            )
        )
    ).scalar() or 0
    return PromoCodeStats(
        total_promo_codes=total,
        active_promo_codes=active,
        expired_promo_codes=expired,
        used_promo_codes=used,
        total_discount_given=quantize(discount_total),
    )
