import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.auth.models import User
from feedesk.auth.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    UpdateProfileRequest,
    UserInfo,
)
from feedesk.auth.security import create_access_token, hash_password, verify_password
from feedesk.core.exceptions import ConflictError, NotFoundError, ServiceError

logger = logging.getLogger(__name__)


def _to_user_info(user: User) -> UserInfo:
    return UserInfo(
        id=user.id,
        full_name=user.full_name,
        email=user.email,
        role=user.role,
        is_active=user.is_active,
        last_login=user.last_login,
        created_at=user.created_at,
    )


async def register_user(db: AsyncSession, payload: RegisterRequest) -> UserInfo:
    email = payload.email.strip().lower()
    existing = (
        await db.execute(select(User.id).where(func.lower(User.email) == email))
    ).scalar_one_or_none()
    if existing:
        raise ConflictError("User with this email already exists")

    user = User(
        full_name=payload.full_name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        role=payload.role.value,
        is_active=True,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("User with this email already exists") from e
    await db.refresh(user)
    logger.info("Registered user %s with role %s", user.id, user.role)
    return _to_user_info(user)


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    # 1. Find user by email (case-insensitive)
    user_result = await db.execute(
        select(User).where(func.lower(User.email) == payload.email.strip().lower())
    )
    user: Optional[User] = user_result.scalar_one_or_none()
    if not user:
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)

    # 2. Inactive accounts cannot log in
    if not user.is_active:
        raise ServiceError("Account is deactivated", status.HTTP_401_UNAUTHORIZED)

    # 3. Verify password hash
    if not verify_password(payload.password, user.password_hash):
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)

    issued_at = datetime.now(timezone.utc)
    access_token = create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "email": user.email,
            "role": user.role,
            "iat": int(issued_at.timestamp()),
        }
    )

    user.last_login = issued_at
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise ServiceError(
            "Failed to persist authentication state",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        ) from e
    await db.refresh(user)

    return LoginResponse(
        access_token=access_token,
        user=_to_user_info(user),
        issued_at=issued_at,
    )


async def get_user_profile(db: AsyncSession, user_id: UUID) -> UserInfo:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return _to_user_info(user)


async def _get_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def update_profile(db: AsyncSession, user_id: UUID, payload: UpdateProfileRequest) -> UserInfo:
    user = await _get_user_or_404(db, user_id)
    if payload.full_name is not None:
        user.full_name = payload.full_name.strip()
    if payload.email is not None:
        email = payload.email.strip().lower()
        taken = (
            await db.execute(select(User.id).where(func.lower(User.email) == email, User.id != user.id))
        ).scalar_one_or_none()
        if taken:
            raise ConflictError("User with this email already exists")
        user.email = email
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("User with this email already exists") from e
    await db.refresh(user)
    return _to_user_info(user)


async def change_password(db: AsyncSession, user_id: UUID, payload: ChangePasswordRequest) -> None:
    user = await _get_user_or_404(db, user_id)
    if not verify_password(payload.current_password, user.password_hash):
        raise ServiceError("Current password is incorrect", status.HTTP_400_BAD_REQUEST)
    user.password_hash = hash_password(payload.new_password)
    await db.commit()
    logger.info("Password changed for user %s", user.id)


async def deactivate_user(db: AsyncSession, user_id: UUID, acting_user_id: UUID) -> UserInfo:
    """Admins switch a login off; the row and its history stay."""
    if user_id == acting_user_id:
        raise ServiceError("You cannot deactivate your own account", status.HTTP_400_BAD_REQUEST)
    user = await _get_user_or_404(db, user_id)
    user.is_active = False
    await db.commit()
    await db.refresh(user)
    logger.info("Deactivated user %s by %s", user.id, acting_user_id)
    return _to_user_info(user)
