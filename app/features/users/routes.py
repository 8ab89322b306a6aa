"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.errors import InvalidRequest, NotFound
from app.core.services import Services, get_services
from app.features.audit.recorder import snapshot
from app.features.permissions.dependencies import require_permission
from app.features.permissions.models import RoleCode
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.features.users.schemas import TokenResponse, UserCreate, UserPublic, UserResponse, UserUpdate
from app.features.users.dependencies import get_current_user, get_current_admin_user


router = APIRouter(tags=["users"])

AUDIT_FIELDS = ("username", "email", "real_name", "phone", "department", "role", "is_active")


async def _get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("user", user_id)
    return user


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.get("/", response_model=list[UserPublic])
async def list_users(
    user: Annotated[User, Depends(require_permission("user:view"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    role: RoleCode | None = None,
    keyword: str | None = None,
    skip: int = 0,
    limit: int = 50
):
    """List active users, e.g. dev engineers to pick an assignee from."""
    stmt = select(User).where(User.is_active == True)  # noqa: E712
    if role is not None:
        stmt = stmt.where(User.role == role)
    if keyword:
        pattern = f"%{keyword}%"
        stmt = stmt.where(or_(User.username.ilike(pattern), User.real_name.ilike(pattern)))
    result = await db.execute(stmt.order_by(User.username).offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_by_id(
    user_id: str,
    user: Annotated[User, Depends(require_permission("user:view"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get user by ID."""
    return await _get_user(db, user_id)


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    admin: Annotated[User, Depends(require_permission("user:create"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Create a user with a system role."""
    result = await db.execute(
        select(User.id).where(or_(User.username == user_data.username, User.email == user_data.email))
    )
    if result.first() is not None:
        raise InvalidRequest("Username or email already in use")

    user = User(**user_data.model_dump())
    db.add(user)
    await db.flush()
    services.audit.record(db, admin.id, "user", user.id, "create", after=snapshot(user, AUDIT_FIELDS))
    await db.commit()
    await db.refresh(user)
    return user


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    update_data: UserUpdate,
    admin: Annotated[User, Depends(require_permission("user:edit"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Update a user's profile fields or role."""
    user = await _get_user(db, user_id)
    before = snapshot(user, AUDIT_FIELDS)

    # Update only provided fields
    for field, value in update_data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)

    services.audit.record(db, admin.id, "user", user.id, "update", before=before, after=snapshot(user, AUDIT_FIELDS))
    await db.commit()
    await db.refresh(user)
    return user


@router.post("/{user_id}/toggle-status", response_model=UserResponse)
async def toggle_user_status(
    user_id: str,
    admin: Annotated[User, Depends(require_permission("user:edit"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Enable or disable a user account."""
    user = await _get_user(db, user_id)

    # Prevent self-deactivation
    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change the status of your own account"
        )

    before = snapshot(user, AUDIT_FIELDS)
    user.is_active = not user.is_active
    services.audit.record(
        db, admin.id, "user", user.id, "enable" if user.is_active else "disable",
        before=before, after=snapshot(user, AUDIT_FIELDS),
    )
    await db.commit()
    await db.refresh(user)
    return user


@router.post("/{user_id}/token", response_model=TokenResponse)
async def issue_token(
    user_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Mint a bearer token for a user (super admin only)."""
    user = await _get_user(db, user_id)
    if not user.is_active:
        raise InvalidRequest("User account is deactivated")
    return TokenResponse(
        access_token=create_access_token(user),
        expires_in=config.JWT_EXPIRE_HOURS * 3600,
    )
