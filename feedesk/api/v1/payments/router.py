"""Payments router: record, list, receipt, correct and void payments."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.auth.dependencies import get_current_user
from feedesk.auth.rbac import ensure_student_access, require_admin, require_staff
from feedesk.auth.schemas import CurrentUser
from feedesk.core.enums import PaymentMethod
from feedesk.core.exceptions import ServiceError
from feedesk.core.schemas import PaginatedResponse
from feedesk.db.session import get_db

from .schemas import (
    BulkPaymentRequest,
    BulkPaymentResponse,
    PaymentCreate,
    PaymentResponse,
    PaymentStats,
    PaymentUpdate,
    ReceiptResponse,
    VoidPaymentRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.get(
    "",
    response_model=PaginatedResponse[PaymentResponse],
    dependencies=[Depends(require_staff)],
)
async def list_payments(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    student_id: Optional[UUID] = Query(None),
    fee_structure_id: Optional[UUID] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    is_void: Optional[bool] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[PaymentResponse]:
    return await service.list_payments(
        db,
        page=page,
        page_size=page_size,
        student_id=student_id,
        fee_structure_id=fee_structure_id,
        payment_method=payment_method.value if payment_method else None,
        is_void=is_void,
        start_date=start_date,
        end_date=end_date,
    )


@router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment(
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> PaymentResponse:
    try:
        return await service.create_payment(db, payload, received_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/bulk",
    response_model=BulkPaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_bulk_payments(
    payload: BulkPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> BulkPaymentResponse:
    try:
        return await service.create_bulk_payments(db, payload, received_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/stats",
    response_model=PaymentStats,
    dependencies=[Depends(require_staff)],
)
async def get_payment_stats(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> PaymentStats:
    return await service.get_payment_stats(db, start_date=start_date, end_date=end_date)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResponse:
    try:
        payment, student = await service.get_payment_with_student(db, payment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    ensure_student_access(current_user, student)
    return service.payment_to_response(payment)


@router.get("/{payment_id}/receipt", response_model=ReceiptResponse)
async def get_receipt(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ReceiptResponse:
    try:
        payment, student = await service.get_payment_with_student(db, payment_id)
        ensure_student_access(current_user, student)
        return await service.build_receipt(db, payment, student)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{payment_id}", response_model=PaymentResponse)
async def update_payment(
    payment_id: UUID,
    payload: PaymentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> PaymentResponse:
    try:
        return await service.update_payment(db, payment_id, payload, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{payment_id}/void", response_model=PaymentResponse)
async def void_payment(
    payment_id: UUID,
    payload: VoidPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> PaymentResponse:
    try:
        return await service.void_payment(db, payment_id, payload, voided_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
