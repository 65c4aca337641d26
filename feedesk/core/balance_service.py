"""Fee balance maintenance. The only module that writes FeeBalance rows.

Payments are the source of truth; FeeBalance is a projection of them.
Every function here runs inside the caller's transaction: it flushes, never commits.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.core.enums import FeeAssignmentStatus
from feedesk.core.exceptions import NotFoundError, PersistenceError
from feedesk.core.models import FeeAssignment, FeeBalance, FeeStructure, Payment, Student
from feedesk.core.money import to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def compute_balance_amount(total_amount, paid_amount) -> Decimal:
    """max(0, total - paid)."""
    return max(ZERO, to_decimal(total_amount) - to_decimal(paid_amount))


def compute_is_overdue(balance_amount, due_date: date, today: date) -> bool:
    return today > due_date and to_decimal(balance_amount) > 0


async def _lock_balance(
    db: AsyncSession,
    student_id: UUID,
    fee_structure_id: UUID,
) -> Optional[FeeBalance]:
    # FOR UPDATE serializes concurrent reconciles of one pair (ignored by SQLite).
    result = await db.execute(
        select(FeeBalance)
        .where(
            FeeBalance.student_id == student_id,
            FeeBalance.fee_structure_id == fee_structure_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def sum_valid_payments(
    db: AsyncSession,
    student_id: UUID,
    fee_structure_id: UUID,
) -> Decimal:
    """Sum of amount_paid over non-void payments for the pair; 0 when there are none."""
    total = (
        await db.execute(
            select(func.coalesce(func.sum(Payment.amount_paid), 0)).where(
                Payment.student_id == student_id,
                Payment.fee_structure_id == fee_structure_id,
                Payment.is_void.is_(False),
            )
        )
    ).scalar()
    return to_decimal(total)


async def initialize_balance(
    db: AsyncSession,
    student_id: UUID,
    fee_structure: FeeStructure,
    today: Optional[date] = None,
) -> FeeBalance:
    """
    Create the balance row for a newly assigned fee: total = nominal amount, nothing paid.
    Returns the existing row untouched when one is already there.
    """
    today = today or date.today()
    existing = await _lock_balance(db, student_id, fee_structure.id)
    if existing is not None:
        return existing

    amount = to_decimal(fee_structure.amount)
    balance = FeeBalance(
        student_id=student_id,
        fee_structure_id=fee_structure.id,
        total_amount=amount,
        paid_amount=ZERO,
        balance_amount=amount,
        due_date=fee_structure.due_date,
        academic_year=fee_structure.academic_year,
        is_overdue=compute_is_overdue(amount, fee_structure.due_date, today),
    )
    # Savepoint so a concurrent insert of the same pair only loses this row, not the caller's work.
    try:
        async with db.begin_nested():
            db.add(balance)
    except IntegrityError:
        logger.info(
            "Balance for student=%s fee_structure=%s created concurrently; reusing it",
            student_id,
            fee_structure.id,
        )
        existing = await _lock_balance(db, student_id, fee_structure.id)
        if existing is None:
            raise PersistenceError("Could not create fee balance")
        return existing
    return balance


async def reconcile_balance(
    db: AsyncSession,
    student_id: UUID,
    fee_structure_id: UUID,
    today: Optional[date] = None,
) -> FeeBalance:
    """
    Recompute the balance of one (student, fee structure) pair from its non-void payments.

    Creates the row at the nominal amount if it does not exist yet. The stored
    total_amount is kept, so later edits of the fee structure's amount never resize
    an existing balance; due_date is refreshed from the structure on every call.
    last_payment_date moves to now only when something is paid.
    Idempotent: a second call with no payment change writes the same values.
    """
    today = today or date.today()
    if await db.get(Student, student_id) is None:
        raise NotFoundError("Student not found")
    fee_structure = await db.get(FeeStructure, fee_structure_id)
    if fee_structure is None:
        raise NotFoundError("Fee structure not found")

    try:
        balance = await initialize_balance(db, student_id, fee_structure, today=today)
        # Read the sum only while holding the row lock so it reflects every committed payment.
        total_paid = await sum_valid_payments(db, student_id, fee_structure_id)

        new_balance = compute_balance_amount(balance.total_amount, total_paid)
        balance.paid_amount = total_paid
        balance.balance_amount = new_balance
        balance.due_date = fee_structure.due_date
        balance.is_overdue = compute_is_overdue(new_balance, fee_structure.due_date, today)
        if total_paid > 0:
            balance.last_payment_date = datetime.now(timezone.utc)
        await db.flush()
    except SQLAlchemyError as e:
        logger.exception(
            "Failed to reconcile balance for student=%s fee_structure=%s", student_id, fee_structure_id
        )
        raise PersistenceError("Failed to update fee balance") from e

    logger.info(
        "Reconciled balance student=%s fee_structure=%s paid=%s balance=%s overdue=%s",
        student_id,
        fee_structure_id,
        balance.paid_amount,
        balance.balance_amount,
        balance.is_overdue,
    )
    return balance


async def apply_waiver(
    db: AsyncSession,
    student_id: UUID,
    fee_structure_id: UUID,
) -> Optional[FeeBalance]:
    """
    Waiver write path: force balance_amount to 0 and clear is_overdue.
    paid_amount and total_amount are left as they are. Returns None when the pair has no balance row.
    """
    try:
        balance = await _lock_balance(db, student_id, fee_structure_id)
        if balance is None:
            return None
        balance.balance_amount = ZERO
        balance.is_overdue = False
        await db.flush()
    except SQLAlchemyError as e:
        logger.exception(
            "Failed to apply waiver for student=%s fee_structure=%s", student_id, fee_structure_id
        )
        raise PersistenceError("Failed to update fee balance") from e
    logger.info("Waived balance student=%s fee_structure=%s", student_id, fee_structure_id)
    return balance


async def sync_balance(
    db: AsyncSession,
    student_id: UUID,
    fee_structure_id: UUID,
    today: Optional[date] = None,
) -> FeeBalance:
    """
    Entry point for payment writes: reconcile from payments, then hold a waived fee at zero.
    Whether a zero balance means fully paid or waived is decided by the assignment status.
    """
    balance = await reconcile_balance(db, student_id, fee_structure_id, today=today)
    assignment_status = (
        await db.execute(
            select(FeeAssignment.status).where(
                FeeAssignment.student_id == student_id,
                FeeAssignment.fee_structure_id == fee_structure_id,
            )
        )
    ).scalar_one_or_none()
    if assignment_status == FeeAssignmentStatus.waived.value:
        await apply_waiver(db, student_id, fee_structure_id)
    return balance
