from feedesk.auth.models import User
from feedesk.core.models.student import Student
from feedesk.core.models.fee_structure import FeeStructure
from feedesk.core.models.fee_assignment import FeeAssignment
from feedesk.core.models.payment import Payment
from feedesk.core.models.fee_balance import FeeBalance
from feedesk.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "User",
    "Student",
    "FeeStructure",
    "FeeAssignment",
    "Payment",
    "FeeBalance",
    "FeeAuditLog",
]
