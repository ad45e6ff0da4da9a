"""Favorites routes"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import ok, read_json, require_int
from middleware.auth_security import get_current_user
from models import User
from services.favorites_service import favorites_service
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/favorites", tags=["favorites"])


@router.get("")
async def list_favorites(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)):
    return ok(await favorites_service.list_favorites(session, user.id))


@router.get("/check/{project_id}")
async def check_favorite(
    project_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return ok({"isFavorite": await favorites_service.is_favorite(session, user.id, project_id)})


@router.post("")
async def add_favorite(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    body = await read_json(request)
    if body.get("projectId") is None:
        raise ValidationError("projectId is required")
    project_id = require_int(body["projectId"], "projectId")

    await favorites_service.add(session, user.id, project_id)
    await session.commit()
    return ok({"projectId": project_id}, "Project added to favorites", status_code=201)


@router.delete("/{project_id}")
async def remove_favorite(
    project_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    await favorites_service.remove(session, user.id, project_id)
    await session.commit()
    return ok(message="Project removed from favorites")
