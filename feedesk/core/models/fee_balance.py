"""Fee balance: materialized view of owed vs paid per (student, fee structure).

Written only by feedesk.core.balance_service.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from feedesk.db.session import Base


class FeeBalance(Base):
    """
    balance_amount = max(0, total_amount - paid_amount), except after a waiver (forced to 0).
    total_amount is copied from the fee structure once, at creation.
    """

    __tablename__ = "fee_balances"
    __table_args__ = (
        UniqueConstraint("student_id", "fee_structure_id", name="uq_fee_balance_student_structure"),
        CheckConstraint("total_amount >= 0", name="chk_fee_balance_total"),
        CheckConstraint("paid_amount >= 0", name="chk_fee_balance_paid"),
        CheckConstraint("balance_amount >= 0", name="chk_fee_balance_balance"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="CASCADE"), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    paid_amount = Column(Numeric(10, 2), nullable=False, default=0)
    balance_amount = Column(Numeric(10, 2), nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    is_overdue = Column(Boolean, nullable=False, default=False, index=True)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    academic_year = Column(String(10), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("Student")
    fee_structure = relationship("FeeStructure")

    def days_overdue(self, today: date) -> int:
        if not self.is_overdue:
            return 0
        return max(0, (today - self.due_date).days)
