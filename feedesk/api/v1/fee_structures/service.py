"""Fee structures service: structure CRUD, assignment to students, waivers, collection stats. Financial writes are audited."""

import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.core.audit_service import log_fee_audit
from feedesk.core.balance_service import apply_waiver, initialize_balance
from feedesk.core.enums import FeeAssignmentStatus, StudentStatus
from feedesk.core.exceptions import ConflictError, NotFoundError, ServiceError
from feedesk.core.models import FeeAssignment, FeeBalance, FeeStructure, Payment, Student
from feedesk.core.money import to_decimal
from feedesk.core.schemas import PaginatedResponse, total_pages_for

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

logger = logging.getLogger(__name__)


def _fs_to_response(fs: FeeStructure) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=fs.id,
        class_name=fs.class_name,
        fee_type=fs.fee_type,
        display_name=fs.display_name,
        amount=to_decimal(fs.amount),
        academic_year=fs.academic_year,
        due_date=fs.due_date,
        late_fee_amount=to_decimal(fs.late_fee_amount),
        description=fs.description,
        is_mandatory=fs.is_mandatory,
        is_active=fs.is_active,
        created_by=fs.created_by,
        created_at=fs.created_at,
        updated_at=fs.updated_at,
    )


def _fa_to_response(fa: FeeAssignment) -> FeeAssignmentResponse:
    return FeeAssignmentResponse(
        id=fa.id,
        student_id=fa.student_id,
        fee_structure_id=fa.fee_structure_id,
        assigned_date=fa.assigned_date,
        status=fa.status,
        custom_amount=fa.custom_amount,
        waived_reason=fa.waived_reason,
        waived_by=fa.waived_by,
        waived_at=fa.waived_at,
        notes=fa.notes,
        created_at=fa.created_at,
    )


def _fs_snapshot(fs: FeeStructure) -> dict:
    return {
        "class_name": fs.class_name,
        "fee_type": fs.fee_type,
        "amount": str(fs.amount),
        "academic_year": fs.academic_year,
        "due_date": fs.due_date.isoformat() if fs.due_date else None,
        "late_fee_amount": str(fs.late_fee_amount),
        "is_active": fs.is_active,
    }


async def _find_duplicate(
    db: AsyncSession,
    class_name: str,
    fee_type: str,
    academic_year: str,
    exclude_id: Optional[UUID] = None,
) -> Optional[UUID]:
    stmt = select(FeeStructure.id).where(
        FeeStructure.class_name == class_name,
        FeeStructure.fee_type == fee_type,
        FeeStructure.academic_year == academic_year,
    )
    if exclude_id is not None:
        stmt = stmt.where(FeeStructure.id != exclude_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_fee_structure_or_404(db: AsyncSession, fee_structure_id: UUID) -> FeeStructure:
    fs = await db.get(FeeStructure, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")
    return fs


# --- Fee Structure CRUD ---
async def create_fee_structure(
    db: AsyncSession,
    payload: FeeStructureCreate,
    created_by: Optional[UUID],
) -> FeeStructureResponse:
    class_name = payload.class_name.strip()
    if await _find_duplicate(db, class_name, payload.fee_type.value, payload.academic_year):
        raise ConflictError("Fee structure already exists for this class, fee type and academic year")
    fs = FeeStructure(
        class_name=class_name,
        fee_type=payload.fee_type.value,
        amount=payload.amount,
        academic_year=payload.academic_year,
        due_date=payload.due_date,
        late_fee_amount=payload.late_fee_amount,
        description=payload.description,
        is_mandatory=payload.is_mandatory,
        is_active=True,
        created_by=created_by,
    )
    try:
        db.add(fs)
        await db.flush()
        await log_fee_audit(db, "fee_structures", fs.id, "CREATE", None, _fs_snapshot(fs), created_by)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(
            "Fee structure already exists for this class, fee type and academic year"
        ) from e
    await db.refresh(fs)
    logger.info("Created fee structure %s (%s %s)", fs.id, fs.display_name, fs.academic_year)
    return _fs_to_response(fs)


async def list_fee_structures(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    class_name: Optional[str] = None,
    fee_type: Optional[str] = None,
    academic_year: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> PaginatedResponse[FeeStructureResponse]:
    stmt = select(FeeStructure)
    if class_name:
        stmt = stmt.where(FeeStructure.class_name == class_name)
    if fee_type:
        stmt = stmt.where(FeeStructure.fee_type == fee_type)
    if academic_year:
        stmt = stmt.where(FeeStructure.academic_year == academic_year)
    if is_active is not None:
        stmt = stmt.where(FeeStructure.is_active.is_(is_active))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = stmt.order_by(FeeStructure.academic_year.desc(), FeeStructure.class_name, FeeStructure.fee_type)
    stmt = stmt.offset((page - 1) * page_size).limit(page_size)
    rows = (await db.execute(stmt)).scalars().all()
    return PaginatedResponse[FeeStructureResponse](
        items=[_fs_to_response(fs) for fs in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages_for(total, page_size),
    )


async def get_fee_structure(db: AsyncSession, fee_structure_id: UUID) -> FeeStructureResponse:
    return _fs_to_response(await get_fee_structure_or_404(db, fee_structure_id))


async def update_fee_structure(
    db: AsyncSession,
    fee_structure_id: UUID,
    payload: FeeStructureUpdate,
    changed_by: Optional[UUID],
) -> FeeStructureResponse:
    """Existing balances keep the total they were created with; only new assignments see a new amount."""
    fs = await get_fee_structure_or_404(db, fee_structure_id)
    data = payload.model_dump(exclude_unset=True)
    if "fee_type" in data and data["fee_type"] is not None:
        data["fee_type"] = data["fee_type"].value
    if "class_name" in data and data["class_name"]:
        data["class_name"] = data["class_name"].strip()

    if {"class_name", "fee_type", "academic_year"} & data.keys():
        duplicate = await _find_duplicate(
            db,
            data.get("class_name") or fs.class_name,
            data.get("fee_type") or fs.fee_type,
            data.get("academic_year") or fs.academic_year,
            exclude_id=fs.id,
        )
        if duplicate:
            raise ConflictError("Fee structure already exists for this class, fee type and academic year")

    old = _fs_snapshot(fs)
    for field, value in data.items():
        if value is None and field not in ("description",):
            continue
        setattr(fs, field, value)
    try:
        await db.flush()
        await log_fee_audit(db, "fee_structures", fs.id, "UPDATE", old, _fs_snapshot(fs), changed_by)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(
            "Fee structure already exists for this class, fee type and academic year"
        ) from e
    await db.refresh(fs)
    return _fs_to_response(fs)


async def delete_fee_structure(
    db: AsyncSession,
    fee_structure_id: UUID,
    changed_by: Optional[UUID],
) -> None:
    fs = await get_fee_structure_or_404(db, fee_structure_id)
    assignment_count = (
        await db.execute(
            select(func.count(FeeAssignment.id)).where(FeeAssignment.fee_structure_id == fee_structure_id)
        )
    ).scalar() or 0
    if assignment_count:
        raise ServiceError(
            f"Cannot delete fee structure assigned to {assignment_count} student(s); deactivate it instead",
            status.HTTP_400_BAD_REQUEST,
        )
    await log_fee_audit(db, "fee_structures", fs.id, "DELETE", _fs_snapshot(fs), None, changed_by)
    await db.delete(fs)
    await db.commit()
    logger.info("Deleted fee structure %s", fee_structure_id)


# --- Assignment ---
async def assign_fee_structure(
    db: AsyncSession,
    fee_structure_id: UUID,
    payload: AssignFeeRequest,
    created_by: Optional[UUID],
) -> AssignFeeResponse:
    """
    Assign a fee to students and open their balances, all in one transaction.
    Students that already have the fee are skipped.
    """
    fs = await get_fee_structure_or_404(db, fee_structure_id)
    if not fs.is_active:
        raise ServiceError("Cannot assign an inactive fee structure", status.HTTP_400_BAD_REQUEST)

    if payload.student_ids:
        stmt = select(Student).where(Student.id.in_(payload.student_ids))
    else:
        stmt = select(Student).where(
            Student.class_name == payload.class_name,
            Student.status == StudentStatus.active.value,
        )
        if payload.section:
            stmt = stmt.where(Student.section == payload.section.upper())
    students = (await db.execute(stmt)).scalars().all()
    if not students:
        raise ServiceError("No students found for assignment", status.HTTP_400_BAD_REQUEST)

    already = set(
        (
            await db.execute(
                select(FeeAssignment.student_id).where(
                    FeeAssignment.fee_structure_id == fs.id,
                    FeeAssignment.student_id.in_([s.id for s in students]),
                )
            )
        ).scalars().all()
    )

    created: List[FeeAssignment] = []
    try:
        for student in students:
            if student.id in already:
                continue
            fa = FeeAssignment(
                student_id=student.id,
                fee_structure_id=fs.id,
                assigned_date=date.today(),
                status=FeeAssignmentStatus.assigned.value,
                notes=payload.notes,
                created_by=created_by,
            )
            db.add(fa)
            await db.flush()
            await initialize_balance(db, student.id, fs)
            await log_fee_audit(
                db, "fee_assignments", fa.id, "CREATE", None,
                {"student_id": str(student.id), "fee_structure_id": str(fs.id), "amount": str(fs.amount)},
                created_by,
            )
            created.append(fa)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Fee was assigned to one of these students concurrently; retry") from e

    for fa in created:
        await db.refresh(fa)
    logger.info(
        "Assigned fee structure %s to %d student(s), skipped %d",
        fs.id,
        len(created),
        len(students) - len(created),
    )
    return AssignFeeResponse(
        assigned=[_fa_to_response(fa) for fa in created],
        assigned_count=len(created),
        skipped_count=len(students) - len(created),
    )


async def list_assignments(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    student_id: Optional[UUID] = None,
    fee_structure_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
) -> PaginatedResponse[FeeAssignmentResponse]:
    stmt = select(FeeAssignment)
    if student_id:
        stmt = stmt.where(FeeAssignment.student_id == student_id)
    if fee_structure_id:
        stmt = stmt.where(FeeAssignment.fee_structure_id == fee_structure_id)
    if status_filter:
        stmt = stmt.where(FeeAssignment.status == status_filter)

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = stmt.order_by(FeeAssignment.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    rows = (await db.execute(stmt)).scalars().all()
    return PaginatedResponse[FeeAssignmentResponse](
        items=[_fa_to_response(fa) for fa in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages_for(total, page_size),
    )


async def waive_assignment(
    db: AsyncSession,
    assignment_id: UUID,
    payload: WaiveFeeRequest,
    waived_by: Optional[UUID],
) -> FeeAssignmentResponse:
    fa = await db.get(FeeAssignment, assignment_id)
    if not fa:
        raise NotFoundError("Fee assignment not found")
    if fa.status == FeeAssignmentStatus.waived.value:
        raise ServiceError("Fee is already waived", status.HTTP_400_BAD_REQUEST)

    old_status = fa.status
    fa.status = FeeAssignmentStatus.waived.value
    fa.waived_reason = payload.reason.strip()
    fa.waived_by = waived_by
    fa.waived_at = datetime.now(timezone.utc)
    try:
        await db.flush()
        await apply_waiver(db, fa.student_id, fa.fee_structure_id)
        await log_fee_audit(
            db, "fee_assignments", fa.id, "WAIVE",
            {"status": old_status},
            {"status": fa.status, "reason": fa.waived_reason},
            waived_by,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    await db.refresh(fa)
    logger.info("Waived fee assignment %s (student=%s)", fa.id, fa.student_id)
    return _fa_to_response(fa)


# --- Stats ---
async def get_fee_structure_stats(db: AsyncSession, fee_structure_id: UUID) -> FeeStructureStats:
    fs = await get_fee_structure_or_404(db, fee_structure_id)

    counts = (
        await db.execute(
            select(FeeAssignment.status, func.count(FeeAssignment.id))
            .where(FeeAssignment.fee_structure_id == fs.id)
            .group_by(FeeAssignment.status)
        )
    ).all()
    by_status = {row[0]: row[1] for row in counts}
    active = by_status.get(FeeAssignmentStatus.assigned.value, 0)
    waived = by_status.get(FeeAssignmentStatus.waived.value, 0)

    collected = to_decimal(
        (
            await db.execute(
                select(func.coalesce(func.sum(Payment.amount_paid), 0)).where(
                    Payment.fee_structure_id == fs.id,
                    Payment.is_void.is_(False),
                )
            )
        ).scalar()
    )
    outstanding, overdue = (
        await db.execute(
            select(
                func.coalesce(func.sum(FeeBalance.balance_amount), 0),
                func.coalesce(func.sum(case((FeeBalance.is_overdue.is_(True), 1), else_=0)), 0),
            ).where(FeeBalance.fee_structure_id == fs.id)
        )
    ).one()

    expected = to_decimal(fs.amount) * active
    rate = Decimal("0.00")
    if expected > 0:
        rate = (collected / expected * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    return FeeStructureStats(
        fee_structure_id=fs.id,
        total_assignments=sum(by_status.values()),
        active_assignments=active,
        waived_assignments=waived,
        total_expected=expected,
        total_collected=collected,
        total_outstanding=to_decimal(outstanding),
        collection_rate=rate,
        overdue_count=overdue or 0,
    )
