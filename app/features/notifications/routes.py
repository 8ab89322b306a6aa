"""
Notification inbox routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFound
from app.core.services import Services, get_services
from app.features.notifications.models import Notification
from app.features.notifications.schemas import NotificationListResponse, NotificationResponse
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter(tags=["notifications"])


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50
):
    """List the current user's notifications, newest first."""
    stmt = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        stmt = stmt.where(Notification.is_read == False)  # noqa: E712

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    unread = (await db.execute(
        select(func.count(Notification.id)).where(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
    )).scalar() or 0

    result = await db.execute(stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(skip).limit(limit))
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in result.scalars().all()],
        total=total,
        unread=unread,
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Mark one of the current user's notifications as read."""
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user.id)
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFound("notification", notification_id)

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = services.clock.now()
        await db.commit()
    return notification


@router.post("/read-all")
async def mark_all_read(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """Mark every unread notification of the current user as read."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True, read_at=services.clock.now())
    )
    await db.commit()
    return {"updated": result.rowcount}
