"""Promo codes router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import PromoTargetType
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    PromoCodeAvailability,
    PromoCodeCreate,
    PromoCodeListResponse,
    PromoCodeResponse,
    PromoCodeStats,
    PromoCodeUpdate,
    PromoRedeemRequest,
    PromoRedeemResult,
    PromoValidateRequest,
    PromoValidationResult,
)
from . import service

router = APIRouter(prefix="/api/v1/promo-codes", tags=["promo-codes"])


@router.post(
    "",
    response_model=PromoCodeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("promo_codes", "create"))],
)
async def create_promo_code(
    payload: PromoCodeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromoCodeResponse:
    try:
        return await service.create_promo_code(db, current_user.tenant_id, payload, created_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "",
    response_model=PromoCodeListResponse,
    dependencies=[Depends(check_permission("promo_codes", "read"))],
)
async def list_promo_codes(
    search: Optional[str] = Query(None, description="Match code or description"),
    is_active: Optional[bool] = Query(None),
    target_type: Optional[PromoTargetType] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromoCodeListResponse:
    return await service.list_promo_codes(
        db,
        current_user.tenant_id,
        search=search,
        is_active=is_active,
        target_type=target_type.value if target_type else None,
        page=page,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=PromoCodeStats,
    dependencies=[Depends(check_permission("promo_codes", "read"))],
)
async def get_promo_code_stats(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromoCodeStats:
    return await service.get_promo_code_stats(db, current_user.tenant_id)


@router.post(
    "/validate",
    response_model=PromoValidationResult,
    dependencies=[Depends(check_permission("promo_codes", "read"))],
)
async def validate_promo_code(
    payload: PromoValidateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromoValidationResult:
    try:
        return await service.validate_promo_code(
            db, current_user.tenant_id, payload.code, payload.product_id, payload.order_amount
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/validate/{code}",
    response_model=PromoCodeAvailability,
    dependencies=[Depends(check_permission("promo_codes", "read"))],
)
async def validate_promo_code_by_code(
    code: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromoCodeAvailability:
    try:
        return await service.validate_promo_code_by_code(db, current_user.tenant_id, code)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/redeem",
    response_model=PromoRedeemResult,
    dependencies=[Depends(check_permission("promo_codes", "redeem"))],
)
async def redeem_promo_code(
    payload: PromoRedeemRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromoRedeemResult:
    try:
        return await service.redeem_promo_code(db, current_user.tenant_id, payload, user_id=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/{promo_code_id}",
    response_model=PromoCodeResponse,
    dependencies=[Depends(check_permission("promo_codes", "read"))],
)
async def get_promo_code(
    promo_code_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromoCodeResponse:
    try:
        return await service.get_promo_code(db, current_user.tenant_id, promo_code_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put(
    "/{promo_code_id}",
    response_model=PromoCodeResponse,
    dependencies=[Depends(check_permission("promo_codes", "update"))],
)
async def update_promo_code(
    promo_code_id: UUID,
    payload: PromoCodeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromoCodeResponse:
    try:
        return await service.update_promo_code(
            db, current_user.tenant_id, promo_code_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.delete(
    "/{promo_code_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission("promo_codes", "delete"))],
)
async def delete_promo_code(
    promo_code_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    try:
        await service.delete_promo_code(db, current_user.tenant_id, promo_code_id, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
