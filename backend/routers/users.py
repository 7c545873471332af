# routers/users.py — Profile, password and HR/admin user management
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, ChangePasswordRequest, CurrentUser, get_current_user,
    require_permission, require_user_access, check_role_assignment,
    check_higher_or_equal, sanitize_user,
)
from database import get_db_session
from errors import Conflict, NotFound, ValidationFailed
from models import User, UserRole

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


# --- Schemas ---

class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    department: Optional[str] = None


class UserUpdate(ProfileUpdate):
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None


# --- Helpers ---

async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    target = result.scalar_one_or_none()
    if not target:
        raise NotFound("User not found")
    return target


NULLABLE_FIELDS = {"department"}


async def _apply_update(db: AsyncSession, target: User, changes: dict) -> dict:
    for field, value in changes.items():
        # Explicit nulls only clear nullable columns
        if value is None and field not in NULLABLE_FIELDS:
            continue
        setattr(target, field, value)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(target)
    return sanitize_user(target)


# --- Self-service ---

@router.get("/profile")
async def get_profile(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get the caller's own profile"""
    return {"user": sanitize_user(await _get_user_or_404(db, user.id))}


@router.put("/profile")
async def update_profile(
    update: ProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update the caller's name or department"""
    target = await _get_user_or_404(db, user.id)
    changes = update.model_dump(exclude_unset=True)
    return {"message": "Profile updated successfully", "user": await _apply_update(db, target, changes)}


@router.post("/change-password")
async def change_password(
    password_data: ChangePasswordRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change the caller's password and sign out every other session"""
    await AuthService(db).change_password(
        user.id, password_data.current_password, password_data.new_password, user.session_id,
    )
    return {"status": "password_changed", "message": "Password updated successfully"}


# --- Management ---

@router.get("")
async def list_users(
    user: CurrentUser = Depends(require_permission("users:read:all")),
    db: AsyncSession = Depends(get_db_session),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
):
    """List users (HR and admin)"""
    filters = []
    if role is not None:
        filters.append(User.role == role)
    if is_active is not None:
        filters.append(User.is_active == is_active)
    if search:
        pattern = f"%{search}%"
        filters.append(
            User.email.ilike(pattern) | User.first_name.ilike(pattern) | User.last_name.ilike(pattern)
        )

    total = (await db.execute(select(func.count(User.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(User).where(*filters).order_by(User.created_at.desc()).offset(offset).limit(limit)
    )
    users: List[dict] = [sanitize_user(u) for u in result.scalars().all()]
    return {"users": users, "total": total, "limit": limit, "offset": offset}


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    current_user: CurrentUser = Depends(require_user_access("view")),
    db: AsyncSession = Depends(get_db_session),
):
    """Get a specific user (self, or HR and admin)"""
    return {"user": sanitize_user(await _get_user_or_404(db, user_id))}


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    update: UserUpdate,
    current_user: CurrentUser = Depends(require_user_access("edit")),
    db: AsyncSession = Depends(get_db_session),
):
    """Update a user; role changes are gated by the assigner's role"""
    target = await _get_user_or_404(db, user_id)
    if target.id != current_user.id:
        check_higher_or_equal(current_user, target.role.value)

    changes = update.model_dump(exclude_unset=True)
    if changes.get("role") is not None and changes["role"] != target.role:
        check_role_assignment(current_user, changes["role"].value)

    if changes.get("email"):
        changes["email"] = changes["email"].strip().lower()
        clash = await db.execute(
            select(User.id).where(User.email == changes["email"], User.id != user_id)
        )
        if clash.scalar_one_or_none():
            raise Conflict("Email is already in use by another account")

    return {"message": "User updated successfully", "user": await _apply_update(db, target, changes)}


@router.post("/{user_id}/deactivate")
async def deactivate_user(
    user_id: str,
    current_user: CurrentUser = Depends(require_user_access("delete")),
    db: AsyncSession = Depends(get_db_session),
):
    """Deactivate a user and revoke all of their sessions (admin)"""
    if user_id == current_user.id:
        raise ValidationFailed("You cannot deactivate your own account")
    user = await AuthService(db).deactivate_user(user_id)
    return {"message": "User deactivated successfully", "user": user}
