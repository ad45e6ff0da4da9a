"""Comment routes"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import ok, read_json, require_int
from middleware.auth_security import get_current_user
from models import User
from services.comment_service import comment_service, serialize_comment
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/comments", tags=["comments"])


@router.get("/{project_id}")
async def list_comments(project_id: int, session: AsyncSession = Depends(get_db_session)):
    comments = await comment_service.list_for_project(session, project_id)
    return ok([serialize_comment(c) for c in comments])


@router.post("")
async def create_comment(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    body = await read_json(request)
    if body.get("projectId") is None:
        raise ValidationError("projectId is required")
    content = body.get("content")
    if not isinstance(content, str):
        raise ValidationError("content is required")

    comment = await comment_service.create(session, user, require_int(body["projectId"], "projectId"), content)
    data = serialize_comment(comment)
    await session.commit()
    return ok(data, "Comment created", status_code=201)


@router.delete("/{comment_id}")
async def delete_comment(
    comment_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    await comment_service.delete(session, user, comment_id)
    await session.commit()
    return ok(message="Comment deleted")
