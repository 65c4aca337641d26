"""Fee structures router: structures, assignment to students, waivers, stats."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.auth.dependencies import get_current_user
from feedesk.auth.rbac import require_admin, require_staff
from feedesk.auth.schemas import CurrentUser
from feedesk.core.enums import FeeAssignmentStatus, FeeType
from feedesk.core.exceptions import ServiceError
from feedesk.core.schemas import PaginatedResponse
from feedesk.db.session import get_db

from .schemas import (
    AssignFeeRequest,
    AssignFeeResponse,
    FeeAssignmentResponse,
    FeeStructureCreate,
    FeeStructureResponse,
    FeeStructureStats,
    FeeStructureUpdate,
    WaiveFeeRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/fee-structures", tags=["fee-structures"])


# --- Fee Structures ---
@router.get(
    "",
    response_model=PaginatedResponse[FeeStructureResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_fee_structures(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    class_name: Optional[str] = Query(None),
    fee_type: Optional[FeeType] = Query(None),
    academic_year: Optional[str] = Query(None, pattern=r"^\d{4}-\d{4}$"),
    is_active: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[FeeStructureResponse]:
    return await service.list_fee_structures(
        db,
        page=page,
        page_size=page_size,
        class_name=class_name,
        fee_type=fee_type.value if fee_type else None,
        academic_year=academic_year,
        is_active=is_active,
    )


@router.post(
    "",
    response_model=FeeStructureResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_structure(
    payload: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> FeeStructureResponse:
    try:
        return await service.create_fee_structure(db, payload, created_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Assignments (must stay above /{fee_structure_id}) ---
@router.get(
    "/assignments",
    response_model=PaginatedResponse[FeeAssignmentResponse],
    dependencies=[Depends(require_staff)],
)
async def list_assignments(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    student_id: Optional[UUID] = Query(None),
    fee_structure_id: Optional[UUID] = Query(None),
    status_filter: Optional[FeeAssignmentStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[FeeAssignmentResponse]:
    return await service.list_assignments(
        db,
        page=page,
        page_size=page_size,
        student_id=student_id,
        fee_structure_id=fee_structure_id,
        status_filter=status_filter.value if status_filter else None,
    )


@router.put(
    "/assignments/{assignment_id}/waive",
    response_model=FeeAssignmentResponse,
)
async def waive_assignment(
    assignment_id: UUID,
    payload: WaiveFeeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> FeeAssignmentResponse:
    try:
        return await service.waive_assignment(db, assignment_id, payload, waived_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{fee_structure_id}",
    response_model=FeeStructureResponse,
    dependencies=[Depends(get_current_user)],
)
async def get_fee_structure(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> FeeStructureResponse:
    try:
        return await service.get_fee_structure(db, fee_structure_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{fee_structure_id}", response_model=FeeStructureResponse)
async def update_fee_structure(
    fee_structure_id: UUID,
    payload: FeeStructureUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> FeeStructureResponse:
    try:
        return await service.update_fee_structure(db, fee_structure_id, payload, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{fee_structure_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_fee_structure(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> None:
    try:
        await service.delete_fee_structure(db, fee_structure_id, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{fee_structure_id}/assign",
    response_model=AssignFeeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_fee_structure(
    fee_structure_id: UUID,
    payload: AssignFeeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> AssignFeeResponse:
    try:
        return await service.assign_fee_structure(db, fee_structure_id, payload, created_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{fee_structure_id}/stats",
    response_model=FeeStructureStats,
    dependencies=[Depends(require_staff)],
)
async def get_fee_structure_stats(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> FeeStructureStats:
    try:
        return await service.get_fee_structure_stats(db, fee_structure_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
