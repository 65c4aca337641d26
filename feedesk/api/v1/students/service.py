"""Student service: CRUD plus per-student fee, payment and balance views."""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.api.v1.payments.schemas import PaymentResponse
from feedesk.api.v1.payments.service import payment_to_response
from feedesk.core.exceptions import ConflictError, NotFoundError, ServiceError
from feedesk.core.models import FeeAssignment, FeeBalance, FeeStructure, Payment, Student, User
from feedesk.core.money import to_decimal
from feedesk.core.schemas import PaginatedResponse, total_pages_for

from .schemas import (
    StudentBalanceItem,
    StudentBalanceResponse,
    StudentBalanceSummary,
    StudentCreate,
    StudentFeeItem,
    StudentLastPayment,
    StudentResponse,
    StudentStats,
    StudentUpdate,
)

logger = logging.getLogger(__name__)


def student_to_response(s: Student) -> StudentResponse:
    return StudentResponse(
        id=s.id,
        student_code=s.student_code,
        first_name=s.first_name,
        last_name=s.last_name,
        full_name=s.full_name,
        class_name=s.class_name,
        section=s.section,
        roll_number=s.roll_number,
        email=s.email,
        phone=s.phone,
        address=s.address,
        date_of_birth=s.date_of_birth,
        gender=s.gender,
        admission_date=s.admission_date,
        status=s.status,
        parent_id=s.parent_id,
        user_id=s.user_id,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


def generate_student_code(class_name: str, section: str, roll_number: str, today: Optional[date] = None) -> str:
    """<YY><CLASS><SECTION><ROLL:03>, e.g. 24 + 10 + A + 007 -> '2410A007'."""
    today = today or date.today()
    class_code = "".join(class_name.split()).upper()
    roll = roll_number.strip()
    roll_code = roll.zfill(3) if roll.isdigit() else roll.upper()
    return f"{today:%y}{class_code}{section.strip().upper()}{roll_code}"[:20]


async def _check_linked_user(db: AsyncSession, user_id: Optional[UUID], role: str, field: str) -> None:
    if user_id is None:
        return
    user = await db.get(User, user_id)
    if not user or user.role != role:
        raise ServiceError(f"{field} must reference an existing {role} account", status.HTTP_400_BAD_REQUEST)


async def get_student_or_404(db: AsyncSession, student_id: UUID) -> Student:
    student = await db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")
    return student


async def create_student(db: AsyncSession, payload: StudentCreate) -> StudentResponse:
    await _check_linked_user(db, payload.parent_id, "parent", "parent_id")
    await _check_linked_user(db, payload.user_id, "student", "user_id")
    code = (payload.student_code or "").strip().upper() or generate_student_code(
        payload.class_name, payload.section, payload.roll_number
    )
    student = Student(
        student_code=code,
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        class_name=payload.class_name.strip(),
        section=payload.section.strip().upper(),
        roll_number=payload.roll_number.strip(),
        email=(payload.email or "").strip() or None,
        phone=payload.phone,
        address=payload.address,
        date_of_birth=payload.date_of_birth,
        gender=payload.gender.value if payload.gender else None,
        admission_date=payload.admission_date or date.today(),
        parent_id=payload.parent_id,
        user_id=payload.user_id,
    )
    db.add(student)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(
            "Student with this student code or class/section/roll number already exists"
        ) from e
    await db.refresh(student)
    logger.info("Created student %s (%s)", student.id, student.student_code)
    return student_to_response(student)


async def list_students(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    class_name: Optional[str] = None,
    section: Optional[str] = None,
    status_filter: Optional[str] = None,
    search: Optional[str] = None,
) -> PaginatedResponse[StudentResponse]:
    stmt = select(Student)
    if class_name:
        stmt = stmt.where(Student.class_name == class_name)
    if section:
        stmt = stmt.where(Student.section == section.upper())
    if status_filter:
        stmt = stmt.where(Student.status == status_filter)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Student.first_name).like(pattern),
                func.lower(Student.last_name).like(pattern),
                func.lower(Student.student_code).like(pattern),
            )
        )

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = stmt.order_by(Student.class_name, Student.section, Student.roll_number)
    stmt = stmt.offset((page - 1) * page_size).limit(page_size)
    rows = (await db.execute(stmt)).scalars().all()
    return PaginatedResponse[StudentResponse](
        items=[student_to_response(s) for s in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages_for(total, page_size),
    )


async def list_students_by_class(
    db: AsyncSession, class_name: str, section: Optional[str] = None
) -> List[StudentResponse]:
    """Class roster ordered by section and roll number."""
    stmt = select(Student).where(Student.class_name == class_name.strip())
    if section:
        stmt = stmt.where(Student.section == section.strip().upper())
    stmt = stmt.order_by(Student.section, Student.roll_number)
    rows = (await db.execute(stmt)).scalars().all()
    return [student_to_response(s) for s in rows]


async def update_student(db: AsyncSession, student_id: UUID, payload: StudentUpdate) -> StudentResponse:
    student = await get_student_or_404(db, student_id)
    data = payload.model_dump(exclude_unset=True)
    if "parent_id" in data:
        await _check_linked_user(db, data["parent_id"], "parent", "parent_id")
    if "user_id" in data:
        await _check_linked_user(db, data["user_id"], "student", "user_id")
    for field, value in data.items():
        if hasattr(value, "value"):
            value = value.value
        if field == "section" and value:
            value = value.strip().upper()
        setattr(student, field, value)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Another student already has this class/section/roll number") from e
    await db.refresh(student)
    return student_to_response(student)


async def delete_student(db: AsyncSession, student_id: UUID) -> None:
    student = await get_student_or_404(db, student_id)
    has_payments = (
        await db.execute(select(Payment.id).where(Payment.student_id == student_id).limit(1))
    ).scalar_one_or_none()
    if has_payments:
        raise ServiceError(
            "Cannot delete a student with recorded payments; set status to inactive instead",
            status.HTTP_400_BAD_REQUEST,
        )
    await db.delete(student)
    await db.commit()
    logger.info("Deleted student %s", student_id)


async def get_student_fees(db: AsyncSession, student_id: UUID) -> List[StudentFeeItem]:
    stmt = (
        select(FeeAssignment, FeeStructure)
        .join(FeeStructure, FeeAssignment.fee_structure_id == FeeStructure.id)
        .where(FeeAssignment.student_id == student_id)
        .order_by(FeeStructure.due_date)
    )
    rows = (await db.execute(stmt)).all()
    return [
        StudentFeeItem(
            assignment_id=fa.id,
            fee_structure_id=fs.id,
            fee_type=fs.fee_type,
            class_name=fs.class_name,
            academic_year=fs.academic_year,
            amount=to_decimal(fs.amount),
            due_date=fs.due_date,
            status=fa.status,
            assigned_date=fa.assigned_date,
            custom_amount=fa.custom_amount,
        )
        for fa, fs in rows
    ]


async def get_student_payments(db: AsyncSession, student_id: UUID) -> List[PaymentResponse]:
    result = await db.execute(
        select(Payment).where(Payment.student_id == student_id).order_by(Payment.payment_date.desc())
    )
    return [payment_to_response(p) for p in result.scalars().all()]


async def get_student_balance(
    db: AsyncSession,
    student_id: UUID,
    academic_year: Optional[str] = None,
    today: Optional[date] = None,
) -> StudentBalanceResponse:
    """Stored balances for a student. Reads the projection only; it never recomputes."""
    today = today or date.today()
    stmt = (
        select(FeeBalance, FeeStructure.fee_type, FeeAssignment.status)
        .join(FeeStructure, FeeBalance.fee_structure_id == FeeStructure.id)
        .outerjoin(
            FeeAssignment,
            (FeeAssignment.student_id == FeeBalance.student_id)
            & (FeeAssignment.fee_structure_id == FeeBalance.fee_structure_id),
        )
        .where(FeeBalance.student_id == student_id)
    )
    if academic_year:
        stmt = stmt.where(FeeBalance.academic_year == academic_year)
    stmt = stmt.order_by(FeeBalance.due_date)
    rows = (await db.execute(stmt)).all()

    items: List[StudentBalanceItem] = []
    for fb, fee_type, assignment_status in rows:
        items.append(
            StudentBalanceItem(
                id=fb.id,
                fee_structure_id=fb.fee_structure_id,
                fee_type=fee_type,
                academic_year=fb.academic_year,
                total_amount=to_decimal(fb.total_amount),
                paid_amount=to_decimal(fb.paid_amount),
                balance_amount=to_decimal(fb.balance_amount),
                due_date=fb.due_date,
                is_overdue=fb.is_overdue,
                days_overdue=fb.days_overdue(today),
                last_payment_date=fb.last_payment_date,
                assignment_status=assignment_status,
            )
        )

    summary = StudentBalanceSummary(
        total_amount=sum((i.total_amount for i in items), Decimal("0")),
        total_paid=sum((i.paid_amount for i in items), Decimal("0")),
        total_balance=sum((i.balance_amount for i in items), Decimal("0")),
        overdue_count=sum(1 for i in items if i.is_overdue),
        total_fees=len(items),
    )
    return StudentBalanceResponse(student_id=student_id, balances=items, summary=summary)


async def get_student_stats(db: AsyncSession, student: Student) -> StudentStats:
    valid = (Payment.student_id == student.id) & Payment.is_void.is_(False)
    total_payments, total_paid = (
        await db.execute(
            select(func.count(Payment.id), func.coalesce(func.sum(Payment.amount_paid), 0)).where(valid)
        )
    ).one()
    total_balance, overdue_fees = (
        await db.execute(
            select(
                func.coalesce(func.sum(FeeBalance.balance_amount), 0),
                func.coalesce(func.sum(case((FeeBalance.is_overdue.is_(True), 1), else_=0)), 0),
            ).where(FeeBalance.student_id == student.id)
        )
    ).one()

    last = (
        await db.execute(
            select(Payment, FeeStructure.fee_type)
            .join(FeeStructure, Payment.fee_structure_id == FeeStructure.id)
            .where(valid)
            .order_by(Payment.payment_date.desc())
            .limit(1)
        )
    ).first()
    last_payment = None
    if last is not None:
        payment, fee_type = last
        last_payment = StudentLastPayment(
            amount_paid=to_decimal(payment.amount_paid),
            payment_date=payment.payment_date,
            fee_type=fee_type,
            receipt_number=payment.receipt_number,
        )

    return StudentStats(
        student_id=student.id,
        student_code=student.student_code,
        full_name=student.full_name,
        class_name=student.class_name,
        section=student.section,
        total_payments=total_payments or 0,
        total_paid=to_decimal(total_paid),
        total_balance=to_decimal(total_balance),
        overdue_fees=overdue_fees or 0,
        last_payment=last_payment,
    )
