"""
Ledger store: every write to a fee collection goes through atomic_update.

Each attempt re-reads the record (bypassing the identity map), runs the caller's precondition,
applies the mutation, checks the amount invariants and commits. The record's version column makes a
write based on a stale read fail with StaleDataError; the attempt is rolled back and the whole
read-check-write cycle runs again against fresh state.
"""

import logging
from typing import Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvariantError,
    NotFoundError,
    ServiceError,
)
from app.core.models import FeeCollection, Student
from app.core.money import ZERO, compute_due, money_sum, quantize

logger = logging.getLogger(__name__)

Precondition = Callable[[FeeCollection], None]
Mutation = Callable[[FeeCollection], Awaitable[None]]


def check_invariants(record: FeeCollection) -> None:
    """Raise InvariantError if the in-memory record is not safe to write."""
    for field in ("total_amount", "discount_amount", "late_fee_amount", "paid_amount", "due_amount"):
        if quantize(getattr(record, field)) < ZERO:
            raise InvariantError(f"{field} is negative", code="NEGATIVE_AMOUNT", record_id=record.id)
    expected_due = compute_due(
        record.total_amount, record.discount_amount, record.late_fee_amount, record.paid_amount
    )
    if quantize(record.due_amount) != expected_due:
        raise InvariantError(
            "Due amount does not match total - discount + late fee - paid",
            code="DUE_MISMATCH",
            record_id=record.id,
            due_amount=quantize(record.due_amount),
            expected=expected_due,
        )
    paid_total = money_sum(p.amount for p in record.payments)
    if quantize(record.paid_amount) != paid_total:
        raise InvariantError(
            "Paid amount does not match the sum of payments",
            code="PAID_MISMATCH",
            record_id=record.id,
            paid_amount=quantize(record.paid_amount),
            payments_total=paid_total,
        )


class LedgerStore:
    def __init__(self, db: AsyncSession, max_retries: Optional[int] = None) -> None:
        self.db = db
        self.max_retries = max_retries or settings.ledger_update_max_retries

    async def load(self, tenant_id: UUID, record_id: UUID) -> FeeCollection:
        """Fresh read of one record with student, class and fee structure attached."""
        result = await self.db.execute(
            select(FeeCollection)
            .options(
                joinedload(FeeCollection.student).joinedload(Student.school_class),
                joinedload(FeeCollection.fee_structure),
            )
            .where(FeeCollection.id == record_id)
            .execution_options(populate_existing=True)
        )
        record = result.unique().scalar_one_or_none()
        if not record:
            raise NotFoundError("Fee collection not found", code="FEE_COLLECTION_NOT_FOUND")
        if record.tenant_id != tenant_id:
            raise AuthorizationError("Not authorized to access this fee collection")
        return record

    async def atomic_update(
        self,
        tenant_id: UUID,
        record_id: UUID,
        mutation: Mutation,
        precondition: Optional[Precondition] = None,
    ) -> FeeCollection:
        for attempt in range(1, self.max_retries + 1):
            record = await self.load(tenant_id, record_id)
            try:
                if precondition is not None:
                    precondition(record)
                await mutation(record)
                check_invariants(record)
                await self.db.commit()
            except StaleDataError:
                await self.db.rollback()
                logger.warning(
                    "Concurrent update on fee collection %s (attempt %s/%s), retrying",
                    record_id, attempt, self.max_retries,
                )
                continue
            except IntegrityError:
                await self.db.rollback()
                raise ConflictError(
                    "An active fee collection already exists for this student, fee and period",
                    code="DUPLICATE_PERIOD",
                )
            except ServiceError:
                await self.db.rollback()
                raise
            return record
        raise ConflictError(
            "Fee collection was modified concurrently; please retry",
            code="CONCURRENT_UPDATE",
            attempts=self.max_retries,
        )
