"""Fee assignment: this student owes this fee structure."""

import uuid
from datetime import date, datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from feedesk.core.enums import FeeAssignmentStatus
from feedesk.db.session import Base


class FeeAssignment(Base):
    """
    One row per (student, fee structure). Never deleted.
    status=waived is terminal for the balance: the balance is held at zero.
    """

    __tablename__ = "fee_assignments"
    __table_args__ = (
        UniqueConstraint("student_id", "fee_structure_id", name="uq_fee_assignment_student_structure"),
        CheckConstraint(
            "status IN ('assigned','waived','cancelled')",
            name="chk_fee_assignment_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_date = Column(Date, nullable=False, default=date.today)
    status = Column(String(20), nullable=False, default=FeeAssignmentStatus.assigned.value, index=True)
    custom_amount = Column(Numeric(10, 2), nullable=True)
    waived_reason = Column(Text, nullable=True)
    waived_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    waived_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("Student")
    fee_structure = relationship("FeeStructure")
