"""Fee collections router: ledger records, payments and arrears reports."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    CancelRequest,
    FeeCollectionCreate,
    FeeCollectionListResponse,
    FeeCollectionResponse,
    FeeCollectionStats,
    FeeCollectionUpdate,
    OverdueItem,
    PaymentCreate,
    ReminderRequest,
    StudentDuesItem,
)
from . import service

router = APIRouter(prefix="/api/v1/fee-collections", tags=["fee-collections"])


@router.post(
    "",
    response_model=FeeCollectionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_fee_collection(
    payload: FeeCollectionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionResponse:
    try:
        return await service.create_fee_collection(
            db, current_user.tenant_id, payload, created_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "",
    response_model=FeeCollectionListResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_fee_collections(
    student_id: Optional[UUID] = Query(None),
    status_filter: Optional[str] = Query(
        None, alias="status", description="pending, partial, paid, cancelled, unpaid or overdue"
    ),
    academic_year: Optional[str] = Query(None),
    month: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Student name, admission or roll number"),
    class_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionListResponse:
    try:
        return await service.list_fee_collections(
            db,
            current_user.tenant_id,
            student_id=student_id,
            status_filter=status_filter,
            academic_year=academic_year,
            month=month,
            search=search,
            class_id=class_id,
            page=page,
            limit=limit,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/due/list",
    response_model=List[StudentDuesItem],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_dues(
    academic_year: Optional[str] = Query(None, description="Required, e.g. 2024-2025"),
    search: Optional[str] = Query(None),
    class_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentDuesItem]:
    try:
        report = await service.compute_dues(
            db, current_user.tenant_id, academic_year=academic_year, search=search, class_id=class_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return list(report)


@router.get(
    "/overdue/list",
    response_model=List[OverdueItem],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_overdue(
    academic_year: Optional[str] = Query(None, description="Required, e.g. 2024-2025"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[OverdueItem]:
    try:
        return await service.list_overdue(db, current_user.tenant_id, academic_year=academic_year)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/stats",
    response_model=FeeCollectionStats,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_stats(
    academic_year: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, description="Filter by creation time"),
    end_date: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionStats:
    return await service.compute_stats(
        db, current_user.tenant_id, academic_year=academic_year, start_date=start_date, end_date=end_date
    )


@router.get(
    "/student/{student_id}",
    response_model=List[FeeCollectionResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_student_ledger(
    student_id: UUID,
    academic_year: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FeeCollectionResponse]:
    try:
        return await service.get_student_ledger(
            db, current_user.tenant_id, student_id, academic_year=academic_year
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/{fee_collection_id}",
    response_model=FeeCollectionResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_fee_collection(
    fee_collection_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionResponse:
    try:
        return await service.get_fee_collection(db, current_user.tenant_id, fee_collection_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put(
    "/{fee_collection_id}",
    response_model=FeeCollectionResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def update_fee_collection(
    fee_collection_id: UUID,
    payload: FeeCollectionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionResponse:
    try:
        return await service.update_fee_collection(
            db, current_user.tenant_id, fee_collection_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put(
    "/{fee_collection_id}/cancel",
    response_model=FeeCollectionResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def cancel_fee_collection(
    fee_collection_id: UUID,
    payload: Optional[CancelRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionResponse:
    try:
        return await service.cancel_fee_collection(
            db,
            current_user.tenant_id,
            fee_collection_id,
            reason=payload.reason if payload else None,
            changed_by=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.delete(
    "/{fee_collection_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission("fees", "delete"))],
)
async def delete_fee_collection(
    fee_collection_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    try:
        await service.delete_fee_collection(
            db, current_user.tenant_id, fee_collection_id, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/{fee_collection_id}/payment",
    response_model=FeeCollectionResponse,
    dependencies=[Depends(check_permission("fees", "collect"))],
)
async def record_payment(
    fee_collection_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionResponse:
    try:
        return await service.apply_payment(
            db, current_user.tenant_id, fee_collection_id, payload, collected_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/{fee_collection_id}/late-fee",
    response_model=FeeCollectionResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def apply_late_fee(
    fee_collection_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionResponse:
    try:
        return await service.apply_late_fee(
            db, current_user.tenant_id, fee_collection_id, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/{fee_collection_id}/reminder",
    response_model=FeeCollectionResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def send_reminder(
    fee_collection_id: UUID,
    payload: Optional[ReminderRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeCollectionResponse:
    try:
        return await service.send_reminder(
            db,
            current_user.tenant_id,
            fee_collection_id,
            payload or ReminderRequest(),
            sent_by=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
