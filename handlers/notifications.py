"""Notification routes - polled by the client"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import ok
from middleware.auth_security import get_current_user
from models import User
from services.notification_service import notification_service, serialize_notification
from utils.helpers import clamp_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    limit: Optional[int] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    notifications = await notification_service.list_recent(session, user.id, clamp_limit(limit, 10, 100))
    return ok([serialize_notification(n) for n in notifications])


@router.get("/unread-count")
async def unread_count(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)):
    return ok({"count": await notification_service.unread_count(session, user.id)})


@router.put("/mark-all-read")
async def mark_all_read(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)):
    updated = await notification_service.mark_all_read(session, user.id)
    await session.commit()
    return ok({"updated": updated}, "All notifications marked as read")


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    notification = await notification_service.mark_read(session, user.id, notification_id)
    data = serialize_notification(notification)
    await session.commit()
    return ok(data, "Notification marked as read")
