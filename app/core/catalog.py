"""Read-only lookups into the student directory and the fee-structure / product catalogs.

Every lookup is scoped to the caller's school; a row that exists under another school is
reported as missing rather than leaked.
"""

from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.core.models import FeeStructure, Product, Student


async def get_student(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> Optional[Student]:
    result = await db.execute(
        select(Student)
        .options(joinedload(Student.school_class))
        .where(Student.id == student_id, Student.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def get_fee_structure(db: AsyncSession, tenant_id: UUID, fee_structure_id: UUID) -> Optional[FeeStructure]:
    result = await db.execute(
        select(FeeStructure).where(
            FeeStructure.id == fee_structure_id,
            FeeStructure.tenant_id == tenant_id,
        )
    )
    return result.scalar_one_or_none()


async def get_product(db: AsyncSession, tenant_id: UUID, product_id: UUID) -> Optional[Product]:
    result = await db.execute(
        select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def count_existing_products(db: AsyncSession, tenant_id: UUID, product_ids: Iterable[UUID]) -> int:
    ids = list({UUID(str(p)) for p in product_ids})
    if not ids:
        return 0
    result = await db.execute(
        select(Product.id).where(Product.tenant_id == tenant_id, Product.id.in_(ids))
    )
    return len(result.scalars().all())


async def find_student_ids(
    db: AsyncSession,
    tenant_id: UUID,
    search: Optional[str] = None,
    class_id: Optional[UUID] = None,
) -> List[UUID]:
    """Students matching a name / admission number / roll number search, optionally within one class."""
    stmt = select(Student.id).where(Student.tenant_id == tenant_id)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Student.full_name.ilike(pattern),
                Student.admission_number.ilike(pattern),
                Student.roll_number.ilike(pattern),
            )
        )
    if class_id is not None:
        stmt = stmt.where(Student.class_id == class_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())
