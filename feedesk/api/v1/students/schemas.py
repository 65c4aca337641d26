"""Student schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from feedesk.core.enums import FeeAssignmentStatus, Gender, StudentStatus


class StudentCreate(BaseModel):
    student_code: Optional[str] = Field(None, max_length=20, description="Generated from year/class/section/roll when omitted")
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    class_name: str = Field(..., min_length=1, max_length=20)
    section: str = Field(..., min_length=1, max_length=10)
    roll_number: str = Field(..., min_length=1, max_length=20)
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{0,14}$")
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    admission_date: Optional[date] = None
    parent_id: Optional[UUID] = None
    user_id: Optional[UUID] = None


class StudentUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    class_name: Optional[str] = Field(None, min_length=1, max_length=20)
    section: Optional[str] = Field(None, min_length=1, max_length=10)
    roll_number: Optional[str] = Field(None, min_length=1, max_length=20)
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{0,14}$")
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    status: Optional[StudentStatus] = None
    parent_id: Optional[UUID] = None
    user_id: Optional[UUID] = None


class StudentResponse(BaseModel):
    id: UUID
    student_code: str
    first_name: str
    last_name: str
    full_name: str
    class_name: str
    section: str
    roll_number: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    admission_date: date
    status: str
    parent_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StudentFeeItem(BaseModel):
    """Fee assigned to a student, with the structure it points at."""

    assignment_id: UUID
    fee_structure_id: UUID
    fee_type: str
    class_name: str
    academic_year: str
    amount: Decimal
    due_date: date
    status: FeeAssignmentStatus
    assigned_date: date
    custom_amount: Optional[Decimal] = None


class StudentBalanceItem(BaseModel):
    id: UUID
    fee_structure_id: UUID
    fee_type: str
    academic_year: str
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    due_date: date
    is_overdue: bool
    days_overdue: int
    last_payment_date: Optional[datetime] = None
    assignment_status: Optional[FeeAssignmentStatus] = None


class StudentBalanceSummary(BaseModel):
    total_amount: Decimal
    total_paid: Decimal
    total_balance: Decimal
    overdue_count: int
    total_fees: int


class StudentBalanceResponse(BaseModel):
    student_id: UUID
    balances: List[StudentBalanceItem]
    summary: StudentBalanceSummary


class StudentLastPayment(BaseModel):
    amount_paid: Decimal
    payment_date: datetime
    fee_type: str
    receipt_number: str


class StudentStats(BaseModel):
    """Payment and balance counters for one student; voided payments are left out."""

    student_id: UUID
    student_code: str
    full_name: str
    class_name: str
    section: str
    total_payments: int
    total_paid: Decimal
    total_balance: Decimal
    overdue_fees: int
    last_payment: Optional[StudentLastPayment] = None
