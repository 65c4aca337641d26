"""Students router: CRUD, class rosters and per-student fee views."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.api.v1.payments.schemas import PaymentResponse
from feedesk.auth.dependencies import get_current_user
from feedesk.auth.rbac import ensure_student_access, require_staff
from feedesk.auth.schemas import CurrentUser
from feedesk.core.enums import StudentStatus
from feedesk.core.exceptions import ServiceError
from feedesk.core.schemas import PaginatedResponse
from feedesk.db.session import get_db

from .schemas import (
    StudentBalanceResponse,
    StudentCreate,
    StudentFeeItem,
    StudentResponse,
    StudentStats,
    StudentUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/students", tags=["students"])


async def _load_accessible_student(db: AsyncSession, student_id: UUID, current_user: CurrentUser):
    try:
        student = await service.get_student_or_404(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    ensure_student_access(current_user, student)
    return student


@router.get(
    "",
    response_model=PaginatedResponse[StudentResponse],
    dependencies=[Depends(require_staff)],
)
async def list_students(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    class_name: Optional[str] = Query(None),
    section: Optional[str] = Query(None),
    status_filter: Optional[StudentStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, description="Matches first/last name or student code"),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[StudentResponse]:
    return await service.list_students(
        db,
        page=page,
        page_size=page_size,
        class_name=class_name,
        section=section,
        status_filter=status_filter.value if status_filter else None,
        search=search,
    )


@router.post(
    "",
    response_model=StudentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_staff)],
)
async def create_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
) -> StudentResponse:
    try:
        return await service.create_student(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/class/{class_name}",
    response_model=List[StudentResponse],
    dependencies=[Depends(require_staff)],
)
async def list_students_by_class(
    class_name: str,
    section: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[StudentResponse]:
    return await service.list_students_by_class(db, class_name, section=section)


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentResponse:
    student = await _load_accessible_student(db, student_id, current_user)
    return service.student_to_response(student)


@router.put(
    "/{student_id}",
    response_model=StudentResponse,
    dependencies=[Depends(require_staff)],
)
async def update_student(
    student_id: UUID,
    payload: StudentUpdate,
    db: AsyncSession = Depends(get_db),
) -> StudentResponse:
    try:
        return await service.update_student(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{student_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_staff)],
)
async def delete_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_student(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{student_id}/fees", response_model=List[StudentFeeItem])
async def get_student_fees(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentFeeItem]:
    await _load_accessible_student(db, student_id, current_user)
    return await service.get_student_fees(db, student_id)


@router.get("/{student_id}/payments", response_model=List[PaymentResponse])
async def get_student_payments(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentResponse]:
    await _load_accessible_student(db, student_id, current_user)
    return await service.get_student_payments(db, student_id)


@router.get("/{student_id}/balance", response_model=StudentBalanceResponse)
async def get_student_balance(
    student_id: UUID,
    academic_year: Optional[str] = Query(None, pattern=r"^\d{4}-\d{4}$"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentBalanceResponse:
    await _load_accessible_student(db, student_id, current_user)
    return await service.get_student_balance(db, student_id, academic_year=academic_year)


@router.get("/{student_id}/stats", response_model=StudentStats)
async def get_student_stats(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentStats:
    student = await _load_accessible_student(db, student_id, current_user)
    return await service.get_student_stats(db, student)
