from fastapi import Depends, HTTPException, status

from feedesk.auth.dependencies import get_current_user
from feedesk.auth.schemas import CurrentUser
from feedesk.core.enums import STAFF_ROLES, UserRole
from feedesk.core.models import Student


def require_roles(*roles: str):
    """
    Dependency factory to restrict an endpoint to the given roles.

    Example:
        Depends(require_roles("admin", "accountant"))
    """
    allowed = {r.value if isinstance(r, UserRole) else r for r in roles}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker


require_admin = require_roles(UserRole.ADMIN)
require_staff = require_roles(UserRole.ADMIN, UserRole.ACCOUNTANT)


def can_access_student(current_user: CurrentUser, student: Student) -> bool:
    """Staff see every student; a student sees their own record; a parent sees their children."""
    if current_user.role in STAFF_ROLES:
        return True
    if current_user.role == UserRole.STUDENT.value:
        return student.user_id == current_user.id
    if current_user.role == UserRole.PARENT.value:
        return student.parent_id == current_user.id
    return False


def ensure_student_access(current_user: CurrentUser, student: Student) -> None:
    if not can_access_student(current_user, student):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this student record",
        )
