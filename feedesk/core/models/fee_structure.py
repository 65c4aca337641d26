"""Fee structure: what a class owes for one fee type in one academic year."""

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from feedesk.db.session import Base


class FeeStructure(Base):
    """Nominal amount, due date and late fee for (class, fee type, academic year)."""

    __tablename__ = "fee_structures"
    __table_args__ = (
        UniqueConstraint(
            "class_name",
            "fee_type",
            "academic_year",
            name="uq_fee_structure_class_type_year",
        ),
        CheckConstraint("amount >= 0", name="chk_fee_structure_amount"),
        CheckConstraint("late_fee_amount >= 0", name="chk_fee_structure_late_fee"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    class_name = Column(String(20), nullable=False, index=True)
    fee_type = Column(String(20), nullable=False, index=True)  # tuition, transport, library, exam, sports, lab, other
    amount = Column(Numeric(10, 2), nullable=False)
    academic_year = Column(String(10), nullable=False)  # e.g. "2024-2025"
    due_date = Column(Date, nullable=False)
    late_fee_amount = Column(Numeric(10, 2), nullable=False, default=0)
    description = Column(Text, nullable=True)
    is_mandatory = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    creator = relationship("User", foreign_keys=[created_by])

    @property
    def display_name(self) -> str:
        return f"{self.fee_type.capitalize()} Fee - {self.class_name}"

    def is_past_due(self, today: date) -> bool:
        return today > self.due_date
