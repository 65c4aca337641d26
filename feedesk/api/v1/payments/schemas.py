"""Payment schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from feedesk.core.enums import PaymentMethod


class PaymentCreate(BaseModel):
    student_id: UUID
    fee_structure_id: UUID
    amount_paid: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    payment_date: Optional[datetime] = Field(None, description="Defaults to now")
    payment_method: PaymentMethod = PaymentMethod.cash
    transaction_id: Optional[str] = Field(None, max_length=100)
    discount_applied: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    discount_reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    bank_reference: Optional[str] = Field(None, max_length=100)
    cheque_number: Optional[str] = Field(None, max_length=50)
    cheque_date: Optional[date] = None
    bank_name: Optional[str] = Field(None, max_length=100)


class BulkPaymentRequest(BaseModel):
    payments: List[PaymentCreate] = Field(..., min_length=1, max_length=200)


class PaymentUpdate(BaseModel):
    """Only reference fields are editable; amounts are corrected by voiding and re-recording."""

    notes: Optional[str] = None
    bank_reference: Optional[str] = Field(None, max_length=100)
    cheque_number: Optional[str] = Field(None, max_length=50)
    cheque_date: Optional[date] = None
    bank_name: Optional[str] = Field(None, max_length=100)

    class Config:
        extra = "forbid"


class VoidPaymentRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class PaymentResponse(BaseModel):
    id: UUID
    student_id: UUID
    fee_structure_id: UUID
    amount_paid: Decimal
    payment_date: datetime
    payment_method: str
    transaction_id: Optional[str] = None
    receipt_number: str
    late_fee_paid: Decimal
    discount_applied: Decimal
    discount_reason: Optional[str] = None
    received_by: Optional[UUID] = None
    notes: Optional[str] = None
    bank_reference: Optional[str] = None
    cheque_number: Optional[str] = None
    cheque_date: Optional[date] = None
    bank_name: Optional[str] = None
    is_void: bool
    void_reason: Optional[str] = None
    voided_by: Optional[UUID] = None
    voided_at: Optional[datetime] = None
    net_total: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class BulkPaymentError(BaseModel):
    index: int
    error: str


class BulkPaymentResponse(BaseModel):
    successful: List[PaymentResponse]
    errors: List[BulkPaymentError]
    success_count: int
    error_count: int


class ReceiptStudent(BaseModel):
    id: UUID
    student_code: str
    full_name: str
    class_name: str
    section: str
    roll_number: str


class ReceiptFee(BaseModel):
    id: UUID
    fee_type: str
    academic_year: str
    amount: Decimal
    due_date: date


class ReceiptResponse(BaseModel):
    receipt_number: str
    payment: PaymentResponse
    student: ReceiptStudent
    fee_structure: ReceiptFee
    received_by_name: Optional[str] = None
    net_total: Decimal
    generated_at: datetime


class PaymentMethodBreakdown(BaseModel):
    payment_method: str
    count: int
    total: Decimal


class PaymentStats(BaseModel):
    total_payments: int
    total_amount: Decimal
    average_amount: Decimal
    by_method: List[PaymentMethodBreakdown]
    daily_totals: Dict[str, Decimal] = Field(default_factory=dict, description="ISO date -> amount collected")
