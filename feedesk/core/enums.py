from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    ACCOUNTANT = "accountant"
    STUDENT = "student"
    PARENT = "parent"


class StudentStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    graduated = "graduated"
    transferred = "transferred"


class Gender(str, Enum):
    male = "male"
    female = "female"
    other = "other"


class FeeType(str, Enum):
    tuition = "tuition"
    transport = "transport"
    library = "library"
    exam = "exam"
    sports = "sports"
    lab = "lab"
    other = "other"


class FeeAssignmentStatus(str, Enum):
    assigned = "assigned"
    waived = "waived"
    cancelled = "cancelled"


class PaymentMethod(str, Enum):
    cash = "cash"
    card = "card"
    bank_transfer = "bank_transfer"
    online = "online"
    cheque = "cheque"
    other = "other"


STAFF_ROLES = (UserRole.ADMIN.value, UserRole.ACCOUNTANT.value)
