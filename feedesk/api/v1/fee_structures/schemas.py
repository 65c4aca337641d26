"""Fee structure and fee assignment schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from feedesk.core.enums import FeeAssignmentStatus, FeeType


def _check_academic_year(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    parts = value.split("-")
    if len(parts) != 2 or not all(p.isdigit() and len(p) == 4 for p in parts):
        raise ValueError("academic_year must be in format YYYY-YYYY")
    if int(parts[1]) != int(parts[0]) + 1:
        raise ValueError("academic_year must span consecutive years, e.g. 2024-2025")
    return value


class FeeStructureCreate(BaseModel):
    class_name: str = Field(..., min_length=1, max_length=20)
    fee_type: FeeType
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    academic_year: str = Field(..., description="YYYY-YYYY")
    due_date: date
    late_fee_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    description: Optional[str] = None
    is_mandatory: bool = True

    @field_validator("academic_year")
    @classmethod
    def validate_academic_year(cls, v: str) -> str:
        return _check_academic_year(v)


class FeeStructureUpdate(BaseModel):
    class_name: Optional[str] = Field(None, min_length=1, max_length=20)
    fee_type: Optional[FeeType] = None
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    academic_year: Optional[str] = None
    due_date: Optional[date] = None
    late_fee_amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    description: Optional[str] = None
    is_mandatory: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("academic_year")
    @classmethod
    def validate_academic_year(cls, v: Optional[str]) -> Optional[str]:
        return _check_academic_year(v)


class FeeStructureResponse(BaseModel):
    id: UUID
    class_name: str
    fee_type: str
    display_name: str
    amount: Decimal
    academic_year: str
    due_date: date
    late_fee_amount: Decimal
    description: Optional[str] = None
    is_mandatory: bool
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AssignFeeRequest(BaseModel):
    """Assign to an explicit list of students, or to every active student of a class (optionally one section)."""

    student_ids: Optional[List[UUID]] = None
    class_name: Optional[str] = None
    section: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_selector(self) -> "AssignFeeRequest":
        if not self.student_ids and not self.class_name:
            raise ValueError("Provide student_ids or class_name")
        return self


class FeeAssignmentResponse(BaseModel):
    id: UUID
    student_id: UUID
    fee_structure_id: UUID
    assigned_date: date
    status: FeeAssignmentStatus
    custom_amount: Optional[Decimal] = None
    waived_reason: Optional[str] = None
    waived_by: Optional[UUID] = None
    waived_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssignFeeResponse(BaseModel):
    assigned: List[FeeAssignmentResponse]
    assigned_count: int
    skipped_count: int = Field(..., description="Students that already had this fee")


class WaiveFeeRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class FeeStructureStats(BaseModel):
    fee_structure_id: UUID
    total_assignments: int
    active_assignments: int
    waived_assignments: int
    total_expected: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    collection_rate: Decimal = Field(..., description="Percent of expected collected, 2 dp")
    overdue_count: int
