"""Payments service: record, bulk record, correct and void payments.

Every payment write and the balance reconciliation it triggers commit together;
if either fails, neither is kept.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.auth.schemas import CurrentUser
from feedesk.core.audit_service import log_fee_audit
from feedesk.core.balance_service import sync_balance
from feedesk.core.config import settings
from feedesk.core.enums import FeeAssignmentStatus
from feedesk.core.exceptions import ConflictError, NotFoundError, PersistenceError, ServiceError
from feedesk.core.models import FeeAssignment, FeeStructure, Payment, Student, User
from feedesk.core.money import to_decimal
from feedesk.core.schemas import PaginatedResponse, total_pages_for

from .schemas import (
    BulkPaymentError,
    BulkPaymentRequest,
    BulkPaymentResponse,
    PaymentCreate,
    PaymentMethodBreakdown,
    PaymentResponse,
    PaymentStats,
    PaymentUpdate,
    ReceiptFee,
    ReceiptResponse,
    ReceiptStudent,
    VoidPaymentRequest,
)

logger = logging.getLogger(__name__)

RECEIPT_RETRIES = 5
UPDATABLE_FIELDS = ("notes", "bank_reference", "cheque_number", "cheque_date", "bank_name")


def payment_to_response(p: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=p.id,
        student_id=p.student_id,
        fee_structure_id=p.fee_structure_id,
        amount_paid=to_decimal(p.amount_paid),
        payment_date=p.payment_date,
        payment_method=p.payment_method,
        transaction_id=p.transaction_id,
        receipt_number=p.receipt_number,
        late_fee_paid=to_decimal(p.late_fee_paid),
        discount_applied=to_decimal(p.discount_applied),
        discount_reason=p.discount_reason,
        received_by=p.received_by,
        notes=p.notes,
        bank_reference=p.bank_reference,
        cheque_number=p.cheque_number,
        cheque_date=p.cheque_date,
        bank_name=p.bank_name,
        is_void=p.is_void,
        void_reason=p.void_reason,
        voided_by=p.voided_by,
        voided_at=p.voided_at,
        net_total=p.net_total,
        created_at=p.created_at,
    )


def _payment_snapshot(p: Payment) -> dict:
    return {
        "amount_paid": str(p.amount_paid),
        "late_fee_paid": str(p.late_fee_paid),
        "discount_applied": str(p.discount_applied),
        "payment_method": p.payment_method,
        "receipt_number": p.receipt_number,
        "is_void": bool(p.is_void),
        "notes": p.notes,
        "bank_reference": p.bank_reference,
        "cheque_number": p.cheque_number,
        "cheque_date": p.cheque_date.isoformat() if p.cheque_date else None,
        "bank_name": p.bank_name,
    }


def compute_late_fee(fee_structure: FeeStructure, payment_date: datetime) -> Decimal:
    """The structure's flat late fee when the payment lands after the due date, else 0."""
    if payment_date.date() > fee_structure.due_date:
        return to_decimal(fee_structure.late_fee_amount)
    return Decimal("0")


async def generate_receipt_number(db: AsyncSession, today: Optional[date] = None) -> str:
    """<PREFIX>-YYYYMMDD-NNNN, NNNN = receipts already issued today + 1 (skipping any taken number)."""
    today = today or datetime.now(timezone.utc).date()
    day_prefix = f"{settings.receipt_prefix}-{today:%Y%m%d}-"
    issued = (
        await db.execute(
            select(func.count(Payment.id)).where(Payment.receipt_number.like(f"{day_prefix}%"))
        )
    ).scalar() or 0
    sequence = issued + 1
    while True:
        candidate = f"{day_prefix}{sequence:04d}"
        taken = (
            await db.execute(select(Payment.id).where(Payment.receipt_number == candidate))
        ).scalar_one_or_none()
        if not taken:
            return candidate
        sequence += 1


async def _record_payment(
    db: AsyncSession,
    payload: PaymentCreate,
    received_by: Optional[UUID],
) -> Payment:
    """Validate, insert and reconcile one payment inside the caller's transaction."""
    student = await db.get(Student, payload.student_id)
    if not student:
        raise NotFoundError("Student not found")
    fee_structure = await db.get(FeeStructure, payload.fee_structure_id)
    if not fee_structure:
        raise NotFoundError("Fee structure not found")

    assignment_id = (
        await db.execute(
            select(FeeAssignment.id).where(
                FeeAssignment.student_id == payload.student_id,
                FeeAssignment.fee_structure_id == payload.fee_structure_id,
                FeeAssignment.status == FeeAssignmentStatus.assigned.value,
            )
        )
    ).scalar_one_or_none()
    if not assignment_id:
        raise ServiceError("Fee is not assigned to this student", status.HTTP_400_BAD_REQUEST)

    transaction_id = (payload.transaction_id or "").strip() or None
    if transaction_id:
        duplicate = (
            await db.execute(select(Payment.id).where(Payment.transaction_id == transaction_id))
        ).scalar_one_or_none()
        if duplicate:
            raise ConflictError("A payment with this transaction_id already exists")

    payment_date = payload.payment_date or datetime.now(timezone.utc)
    late_fee = compute_late_fee(fee_structure, payment_date)

    payment: Optional[Payment] = None
    for attempt in range(1, RECEIPT_RETRIES + 1):
        receipt_number = await generate_receipt_number(db)
        candidate = Payment(
            student_id=payload.student_id,
            fee_structure_id=payload.fee_structure_id,
            amount_paid=payload.amount_paid,
            payment_date=payment_date,
            payment_method=payload.payment_method.value,
            transaction_id=transaction_id,
            receipt_number=receipt_number,
            late_fee_paid=late_fee,
            discount_applied=payload.discount_applied,
            discount_reason=payload.discount_reason,
            received_by=received_by,
            notes=payload.notes,
            bank_reference=payload.bank_reference,
            cheque_number=payload.cheque_number,
            cheque_date=payload.cheque_date,
            bank_name=payload.bank_name,
            is_void=False,
        )
        try:
            async with db.begin_nested():
                db.add(candidate)
        except IntegrityError:
            logger.warning("Receipt number %s collided (attempt %d), regenerating", receipt_number, attempt)
            continue
        payment = candidate
        break
    if payment is None:
        raise ConflictError("Could not allocate a receipt number; retry the payment")

    await sync_balance(db, payment.student_id, payment.fee_structure_id)
    await log_fee_audit(db, "payments", payment.id, "CREATE", None, _payment_snapshot(payment), received_by)
    logger.info(
        "Recorded payment %s receipt=%s student=%s fee_structure=%s amount=%s late_fee=%s",
        payment.id,
        payment.receipt_number,
        payment.student_id,
        payment.fee_structure_id,
        payment.amount_paid,
        payment.late_fee_paid,
    )
    return payment


async def _commit(db: AsyncSession, action: str) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Payment conflicts with an existing receipt or transaction id") from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Failed to commit %s", action)
        raise PersistenceError(f"Failed to {action}") from e


async def create_payment(
    db: AsyncSession,
    payload: PaymentCreate,
    received_by: Optional[UUID],
) -> PaymentResponse:
    try:
        payment = await _record_payment(db, payload, received_by)
    except ServiceError:
        await db.rollback()
        raise
    await _commit(db, "record payment")
    await db.refresh(payment)
    return payment_to_response(payment)


async def create_bulk_payments(
    db: AsyncSession,
    payload: BulkPaymentRequest,
    received_by: Optional[UUID],
) -> BulkPaymentResponse:
    """Each item succeeds or fails alone; the successful ones commit together at the end."""
    recorded: List[Payment] = []
    errors: List[BulkPaymentError] = []
    for index, item in enumerate(payload.payments):
        try:
            async with db.begin_nested():
                payment = await _record_payment(db, item, received_by)
        except ServiceError as e:
            logger.warning("Bulk payment item %d rejected: %s", index, e.message)
            errors.append(BulkPaymentError(index=index, error=e.message))
            continue
        except IntegrityError:
            logger.warning("Bulk payment item %d rejected: duplicate receipt or transaction id", index)
            errors.append(BulkPaymentError(index=index, error="Duplicate receipt or transaction id"))
            continue
        recorded.append(payment)

    await _commit(db, "record bulk payments")
    for payment in recorded:
        await db.refresh(payment)
    logger.info("Bulk payments: %d recorded, %d rejected", len(recorded), len(errors))
    return BulkPaymentResponse(
        successful=[payment_to_response(p) for p in recorded],
        errors=errors,
        success_count=len(recorded),
        error_count=len(errors),
    )


async def list_payments(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    student_id: Optional[UUID] = None,
    fee_structure_id: Optional[UUID] = None,
    payment_method: Optional[str] = None,
    is_void: Optional[bool] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> PaginatedResponse[PaymentResponse]:
    stmt = select(Payment)
    if student_id:
        stmt = stmt.where(Payment.student_id == student_id)
    if fee_structure_id:
        stmt = stmt.where(Payment.fee_structure_id == fee_structure_id)
    if payment_method:
        stmt = stmt.where(Payment.payment_method == payment_method)
    if is_void is not None:
        stmt = stmt.where(Payment.is_void.is_(is_void))
    stmt = _within_dates(stmt, start_date, end_date)

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = stmt.order_by(Payment.payment_date.desc()).offset((page - 1) * page_size).limit(page_size)
    rows = (await db.execute(stmt)).scalars().all()
    return PaginatedResponse[PaymentResponse](
        items=[payment_to_response(p) for p in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages_for(total, page_size),
    )


def _within_dates(stmt, start_date: Optional[date], end_date: Optional[date]):
    # end_date is inclusive
    if start_date:
        stmt = stmt.where(Payment.payment_date >= datetime.combine(start_date, time.min))
    if end_date:
        stmt = stmt.where(Payment.payment_date < datetime.combine(end_date + timedelta(days=1), time.min))
    return stmt


async def get_payment_or_404(db: AsyncSession, payment_id: UUID) -> Payment:
    payment = await db.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


async def get_payment_with_student(db: AsyncSession, payment_id: UUID) -> Tuple[Payment, Student]:
    payment = await get_payment_or_404(db, payment_id)
    student = await db.get(Student, payment.student_id)
    if not student:
        raise NotFoundError("Student not found")
    return payment, student


async def build_receipt(db: AsyncSession, payment: Payment, student: Student) -> ReceiptResponse:
    fs = await db.get(FeeStructure, payment.fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")
    received_by_name = None
    if payment.received_by:
        receiver = await db.get(User, payment.received_by)
        received_by_name = receiver.full_name if receiver else None
    return ReceiptResponse(
        receipt_number=payment.receipt_number,
        payment=payment_to_response(payment),
        student=ReceiptStudent(
            id=student.id,
            student_code=student.student_code,
            full_name=student.full_name,
            class_name=student.class_name,
            section=student.section,
            roll_number=student.roll_number,
        ),
        fee_structure=ReceiptFee(
            id=fs.id,
            fee_type=fs.fee_type,
            academic_year=fs.academic_year,
            amount=to_decimal(fs.amount),
            due_date=fs.due_date,
        ),
        received_by_name=received_by_name,
        net_total=payment.net_total,
        generated_at=datetime.now(timezone.utc),
    )


async def update_payment(
    db: AsyncSession,
    payment_id: UUID,
    payload: PaymentUpdate,
    current_user: CurrentUser,
) -> PaymentResponse:
    payment = await get_payment_or_404(db, payment_id)
    if payment.is_void:
        raise ServiceError("Cannot update voided payment", status.HTTP_400_BAD_REQUEST)

    data = payload.model_dump(exclude_unset=True)
    old = _payment_snapshot(payment)
    for field in UPDATABLE_FIELDS:
        if field in data:
            setattr(payment, field, data[field])
    try:
        await db.flush()
        await sync_balance(db, payment.student_id, payment.fee_structure_id)
        await log_fee_audit(db, "payments", payment.id, "UPDATE", old, _payment_snapshot(payment), current_user.id)
    except ServiceError:
        await db.rollback()
        raise
    await _commit(db, "update payment")
    await db.refresh(payment)
    logger.info("Updated payment %s by %s", payment.id, current_user.id)
    return payment_to_response(payment)


async def void_payment(
    db: AsyncSession,
    payment_id: UUID,
    payload: VoidPaymentRequest,
    voided_by: UUID,
) -> PaymentResponse:
    """Void is one-way: a voided payment is frozen and stops counting toward the balance."""
    payment = await get_payment_or_404(db, payment_id)
    if payment.is_void:
        raise ServiceError("Payment is already voided", status.HTTP_400_BAD_REQUEST)

    old = _payment_snapshot(payment)
    payment.is_void = True
    payment.void_reason = payload.reason.strip()
    payment.voided_by = voided_by
    payment.voided_at = datetime.now(timezone.utc)
    try:
        await db.flush()
        await sync_balance(db, payment.student_id, payment.fee_structure_id)
        await log_fee_audit(
            db, "payments", payment.id, "VOID", old,
            {**_payment_snapshot(payment), "void_reason": payment.void_reason},
            voided_by,
        )
    except ServiceError:
        await db.rollback()
        raise
    await _commit(db, "void payment")
    await db.refresh(payment)
    logger.info("Voided payment %s receipt=%s by %s", payment.id, payment.receipt_number, voided_by)
    return payment_to_response(payment)


async def get_payment_stats(
    db: AsyncSession,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> PaymentStats:
    """Totals over non-void payments in an optional date window."""
    base = select(Payment).where(Payment.is_void.is_(False))
    base = _within_dates(base, start_date, end_date).subquery()

    count, total = (
        await db.execute(select(func.count(base.c.id), func.coalesce(func.sum(base.c.amount_paid), 0)))
    ).one()
    total = to_decimal(total)
    average = (total / count).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) if count else Decimal("0.00")

    method_rows = (
        await db.execute(
            select(base.c.payment_method, func.count(base.c.id), func.coalesce(func.sum(base.c.amount_paid), 0))
            .group_by(base.c.payment_method)
            .order_by(base.c.payment_method)
        )
    ).all()

    day = func.date(base.c.payment_date)
    daily_rows = (
        await db.execute(select(day, func.sum(base.c.amount_paid)).group_by(day).order_by(day))
    ).all()

    return PaymentStats(
        total_payments=count,
        total_amount=total,
        average_amount=average,
        by_method=[
            PaymentMethodBreakdown(payment_method=m, count=c, total=to_decimal(t)) for m, c, t in method_rows
        ],
        daily_totals={str(d): to_decimal(t) for d, t in daily_rows},
    )
