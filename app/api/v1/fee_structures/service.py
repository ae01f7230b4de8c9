"""Fee structure catalog service. Structures are read by the ledger; this module only creates and lists them."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.catalog import get_fee_structure
from app.core.exceptions import NotFoundError, ValidationError
from app.core.enums import AdjustmentType, FeeStructureStatus
from app.core.models import FeeStructure, SchoolClass
from app.core.money import HUNDRED, quantize, to_decimal, to_uuid

from .schemas import FeeStructureCreate, FeeStructureResponse

logger = logging.getLogger(__name__)


def _to_response(fs: FeeStructure) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=to_uuid(fs.id),
        tenant_id=to_uuid(fs.tenant_id),
        name=fs.name,
        category=fs.category,
        class_id=to_uuid(fs.class_id),
        academic_year=fs.academic_year,
        amount=quantize(fs.amount),
        frequency=fs.frequency,
        due_day=fs.due_day,
        discount_enabled=fs.discount_enabled,
        discount_type=fs.discount_type,
        discount_value=to_decimal(fs.discount_value),
        discount_amount=fs.calculate_discount(),
        late_fee_enabled=fs.late_fee_enabled,
        late_fee_type=fs.late_fee_type,
        late_fee_value=to_decimal(fs.late_fee_value),
        grace_period_days=fs.grace_period_days,
        status=fs.status,
        description=fs.description,
        created_at=fs.created_at,
        updated_at=fs.updated_at,
    )


async def create_fee_structure(
    db: AsyncSession,
    tenant_id: UUID,
    payload: FeeStructureCreate,
    created_by: Optional[UUID],
) -> FeeStructureResponse:
    if payload.class_id is not None:
        cl = await db.get(SchoolClass, payload.class_id)
        if not cl or cl.tenant_id != tenant_id:
            raise ValidationError("Invalid class", code="INVALID_CLASS")
    if payload.discount_type == AdjustmentType.PERCENTAGE and payload.discount_value > HUNDRED:
        raise ValidationError("Percentage discount cannot exceed 100%", code="INVALID_DISCOUNT")

    fs = FeeStructure(
        tenant_id=tenant_id,
        name=payload.name.strip(),
        category=payload.category.strip(),
        class_id=payload.class_id,
        academic_year=payload.academic_year.strip(),
        amount=quantize(payload.amount),
        frequency=payload.frequency.value,
        due_day=payload.due_day,
        discount_enabled=payload.discount_enabled,
        discount_type=payload.discount_type.value,
        discount_value=payload.discount_value,
        discount_description=(payload.discount_description or "").strip() or None,
        late_fee_enabled=payload.late_fee_enabled,
        late_fee_type=payload.late_fee_type.value,
        late_fee_value=payload.late_fee_value,
        grace_period_days=payload.grace_period_days,
        status=FeeStructureStatus.ACTIVE.value,
        description=(payload.description or "").strip() or None,
        created_by=created_by,
    )
    db.add(fs)
    await db.commit()
    await db.refresh(fs)
    logger.info("Fee structure %s (%s) created for tenant %s", fs.id, fs.name, tenant_id)
    return _to_response(fs)


async def list_fee_structures(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: Optional[str] = None,
    class_id: Optional[UUID] = None,
    active_only: bool = True,
) -> List[FeeStructureResponse]:
    stmt = select(FeeStructure).where(FeeStructure.tenant_id == tenant_id)
    if academic_year:
        stmt = stmt.where(FeeStructure.academic_year == academic_year)
    if class_id is not None:
        # Class-specific fees plus those that apply to every class
        stmt = stmt.where(or_(FeeStructure.class_id == class_id, FeeStructure.class_id.is_(None)))
    if active_only:
        stmt = stmt.where(FeeStructure.status == FeeStructureStatus.ACTIVE.value)
    stmt = stmt.order_by(FeeStructure.name)
    result = await db.execute(stmt)
    return [_to_response(fs) for fs in result.scalars().all()]


async def get_fee_structure_detail(
    db: AsyncSession,
    tenant_id: UUID,
    fee_structure_id: UUID,
) -> FeeStructureResponse:
    fs = await get_fee_structure(db, tenant_id, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found", code="FEE_STRUCTURE_NOT_FOUND")
    return _to_response(fs)
