"""Payment: one payment event against a (student, fee structure) pair."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from feedesk.core.enums import PaymentMethod
from feedesk.core.money import to_decimal
from feedesk.db.session import Base


class Payment(Base):
    """
    Payments are the source of truth for balances.
    Once is_void is true the row is frozen and contributes nothing to the balance.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount_paid > 0", name="chk_payment_amount_positive"),
        CheckConstraint("late_fee_paid >= 0", name="chk_payment_late_fee"),
        CheckConstraint("discount_applied >= 0", name="chk_payment_discount"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_paid = Column(Numeric(10, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    payment_method = Column(String(20), nullable=False, default=PaymentMethod.cash.value)
    transaction_id = Column(String(100), nullable=True, unique=True)
    receipt_number = Column(String(50), nullable=False, unique=True, index=True)
    late_fee_paid = Column(Numeric(10, 2), nullable=False, default=0)
    discount_applied = Column(Numeric(10, 2), nullable=False, default=0)
    discount_reason = Column(String(255), nullable=True)
    received_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    bank_reference = Column(String(100), nullable=True)
    cheque_number = Column(String(50), nullable=True)
    cheque_date = Column(Date, nullable=True)
    bank_name = Column(String(100), nullable=True)
    is_void = Column(Boolean, nullable=False, default=False, index=True)
    void_reason = Column(Text, nullable=True)
    voided_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("Student")
    fee_structure = relationship("FeeStructure")
    received_by_user = relationship("User", foreign_keys=[received_by])
    voided_by_user = relationship("User", foreign_keys=[voided_by])

    @property
    def net_total(self) -> Decimal:
        """Amount actually handed over: principal + late fee - discount."""
        return to_decimal(self.amount_paid) + to_decimal(self.late_fee_paid) - to_decimal(self.discount_applied)
