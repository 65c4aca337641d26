"""Student master record. Fees, payments and balances hang off student.id."""

import uuid
from datetime import date, datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from feedesk.core.enums import StudentStatus
from feedesk.db.session import Base


class Student(Base):
    """
    Enrolled student.

    - parent_id: parent login that may view this student's fees and payments.
    - user_id: the student's own login, if any.
    """

    __tablename__ = "students"
    __table_args__ = (
        # A roll number is unique inside one class section
        UniqueConstraint("class_name", "section", "roll_number", name="uq_student_class_section_roll"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_code = Column(String(20), nullable=False, unique=True, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    class_name = Column(String(20), nullable=False, index=True)
    section = Column(String(10), nullable=False)
    roll_number = Column(String(20), nullable=False)
    email = Column(String(100), nullable=True)
    phone = Column(String(15), nullable=True)
    address = Column(Text, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(10), nullable=True)  # male, female, other
    admission_date = Column(Date, nullable=False, default=date.today)
    status = Column(String(20), nullable=False, default=StudentStatus.active.value)
    parent_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    parent = relationship("User", back_populates="children", foreign_keys=[parent_id])
    user = relationship("User", foreign_keys=[user_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
